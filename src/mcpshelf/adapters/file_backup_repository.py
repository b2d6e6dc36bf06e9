"""Filesystem-backed storage for the backup ring."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from mcpshelf.domain.backup import BackupSnapshot
from mcpshelf.ports.backup_repository import BackupRepository

from .json_files import read_json, write_json_atomic


class FileBackupRepository(BackupRepository):
    """Stores every snapshot of the ring in one JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[BackupSnapshot]:
        raw = read_json(self._path)
        entries = raw.get("backups", []) if isinstance(raw, dict) else []
        return [BackupSnapshot.from_dict(item) for item in entries]

    def save(self, snapshots: Sequence[BackupSnapshot]) -> None:
        payload = {"backups": [snapshot.to_dict() for snapshot in snapshots]}
        write_json_atomic(self._path, payload)


__all__ = ["FileBackupRepository"]
