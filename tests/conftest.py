from __future__ import annotations

import itertools
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SANDBOX_HOME = ROOT / ".test_place" / "global-home"
os.environ.setdefault("MCPSHELF_HOME", str(SANDBOX_HOME))
SANDBOX_HOME.mkdir(parents=True, exist_ok=True)
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mcpshelf.app.backup.manager import BackupManager  # noqa: E402
from mcpshelf.app.mcp.store import EntityStore  # noqa: E402
from mcpshelf.domain.backup import BackupSnapshot  # noqa: E402
from mcpshelf.domain.mcp import StoreState  # noqa: E402
from mcpshelf.ports.backup_repository import BackupRepository  # noqa: E402
from mcpshelf.ports.state_repository import StateRepository  # noqa: E402


class FakeClock:
    """Monotonic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{self._prefix}-{next(self._counter)}"


class MemoryStateRepository(StateRepository):
    def __init__(self, initial: StoreState | None = None) -> None:
        self.saved: StoreState | None = initial
        self.saves = 0
        self.fail_next = False

    def load(self) -> StoreState | None:
        return self.saved.copy() if self.saved is not None else None

    def save(self, state: StoreState) -> None:
        if self.fail_next:
            self.fail_next = False
            raise OSError("disk full")
        self.saved = state.copy()
        self.saves += 1


class MemoryBackupRepository(BackupRepository):
    def __init__(self, snapshots: Sequence[BackupSnapshot] = ()) -> None:
        self.snapshots: List[BackupSnapshot] = list(snapshots)
        self.fail = False

    def load(self) -> List[BackupSnapshot]:
        return list(self.snapshots)

    def save(self, snapshots: Sequence[BackupSnapshot]) -> None:
        if self.fail:
            raise OSError("backup volume unavailable")
        self.snapshots = list(snapshots)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def state_repo() -> MemoryStateRepository:
    return MemoryStateRepository()


@pytest.fixture()
def backup_repo() -> MemoryBackupRepository:
    return MemoryBackupRepository()


@pytest.fixture()
def backups(backup_repo: MemoryBackupRepository, clock: FakeClock) -> BackupManager:
    return BackupManager(backup_repo, id_factory=SequentialIds("bk"), clock=clock)


@pytest.fixture()
def store(state_repo: MemoryStateRepository, backups: BackupManager, clock: FakeClock) -> EntityStore:
    entity_store = EntityStore(state_repo, backups, id_factory=SequentialIds(), clock=clock)
    entity_store.load()
    return entity_store


@pytest.fixture()
def make_store(state_repo: MemoryStateRepository, backups: BackupManager, clock: FakeClock):
    def factory(**kwargs) -> EntityStore:
        entity_store = EntityStore(state_repo, backups, id_factory=SequentialIds(), clock=clock, **kwargs)
        entity_store.load()
        return entity_store

    return factory
