"""Port definition for persisting the backup ring."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from mcpshelf.domain.backup import BackupSnapshot


class BackupRepository(ABC):
    """Abstraction over durable storage for backup snapshots."""

    @abstractmethod
    def load(self) -> List[BackupSnapshot]:
        """Return stored snapshots, oldest first."""

    @abstractmethod
    def save(self, snapshots: Sequence[BackupSnapshot]) -> None:
        """Replace the stored ring with ``snapshots`` (oldest first); raise on failure."""


__all__ = ["BackupRepository"]
