"""Value objects representing store backups."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping

from mcpshelf.domain.mcp.errors import InvalidRecordError
from mcpshelf.domain.mcp.value_objects import StoreState, format_timestamp, parse_timestamp


@dataclass(frozen=True)
class BackupSummary:
    backup_id: str
    label: str
    created_at: datetime
    mcp_count: int
    profile_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.backup_id,
            "label": self.label,
            "created_at": format_timestamp(self.created_at),
            "mcp_count": self.mcp_count,
            "profile_count": self.profile_count,
        }


@dataclass(frozen=True)
class BackupSnapshot:
    """Point-in-time copy of the whole store; never mutated after creation."""

    backup_id: str
    label: str
    created_at: datetime
    state: StoreState

    def summary(self) -> BackupSummary:
        return BackupSummary(
            backup_id=self.backup_id,
            label=self.label,
            created_at=self.created_at,
            mcp_count=len(self.state.entities),
            profile_count=len(self.state.profiles),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.backup_id,
            "label": self.label,
            "created_at": format_timestamp(self.created_at),
            "data": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BackupSnapshot":
        if not isinstance(data, Mapping) or not data.get("id"):
            raise InvalidRecordError("Backup record must be a mapping with an id")
        created_at = parse_timestamp(data.get("created_at"))
        if created_at is None:
            raise InvalidRecordError(f"Backup {data['id']} has no timestamp")
        return cls(
            backup_id=str(data["id"]),
            label=str(data.get("label") or ""),
            created_at=created_at,
            state=StoreState.from_dict(data.get("data") or {}),
        )


__all__ = ["BackupSnapshot", "BackupSummary"]
