"""Bounded ring of store snapshots."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime
from typing import Callable, List

from mcpshelf.domain.backup import BackupSnapshot, BackupSummary
from mcpshelf.domain.mcp import BackupNotFoundError, PersistenceError, RestoreError, StoreState
from mcpshelf.domain.mcp.value_objects import utc_now
from mcpshelf.ports.backup_repository import BackupRepository

DEFAULT_MAX_BACKUPS = 10


def _default_id() -> str:
    return uuid.uuid4().hex


class BackupManager:
    """Creates, lists and restores snapshots, evicting the oldest past ``max_backups``."""

    def __init__(
        self,
        repository: BackupRepository,
        *,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self._repository = repository
        self._max_backups = max_backups
        self._id_factory = id_factory or _default_id
        self._clock = clock or utc_now
        # Oldest first; list() reverses.
        self._ring: List[BackupSnapshot] = list(repository.load())[-max_backups:]

    @property
    def max_backups(self) -> int:
        return self._max_backups

    def snapshot(self, state: StoreState, label: str) -> str:
        snapshot = BackupSnapshot(
            backup_id=self._id_factory(),
            label=label.strip() or "Backup",
            created_at=self._clock(),
            state=copy.deepcopy(state),
        )
        ring = (self._ring + [snapshot])[-self._max_backups:]
        self._write(ring)
        self._ring = ring
        return snapshot.backup_id

    def restore(self, backup_id: str) -> StoreState:
        snapshot = self._find(backup_id)
        problems = snapshot.state.validate()
        if problems:
            raise RestoreError(f"Backup {backup_id} is corrupt: {'; '.join(problems)}")
        return copy.deepcopy(snapshot.state)

    def get(self, backup_id: str) -> BackupSnapshot:
        """Return a detached copy; changes to it never reach the ring."""

        return copy.deepcopy(self._find(backup_id))

    def summary(self, backup_id: str) -> BackupSummary:
        return self._find(backup_id).summary()

    def _find(self, backup_id: str) -> BackupSnapshot:
        for snapshot in self._ring:
            if snapshot.backup_id == backup_id:
                return snapshot
        raise BackupNotFoundError(backup_id)

    def list(self) -> List[BackupSummary]:
        return [snapshot.summary() for snapshot in reversed(self._ring)]

    def remove(self, backup_id: str) -> BackupSummary:
        snapshot = self._find(backup_id)
        ring = [item for item in self._ring if item.backup_id != backup_id]
        self._write(ring)
        self._ring = ring
        return snapshot.summary()

    def _write(self, ring: List[BackupSnapshot]) -> None:
        try:
            self._repository.save(ring)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to write backups: {exc}") from exc


__all__ = ["BackupManager", "DEFAULT_MAX_BACKUPS"]
