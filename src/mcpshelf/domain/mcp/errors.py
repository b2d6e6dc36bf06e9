"""Error taxonomy for the MCP store."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .value_objects import MCPEntity


class MCPStoreError(RuntimeError):
    """Base class for every failure surfaced by the store."""


class DuplicateError(MCPStoreError):
    """Raised when an exact duplicate is added without ``allow_duplicate``."""

    def __init__(self, existing: "MCPEntity") -> None:
        super().__init__(f"MCP server '{existing.name}' already exists with the same command and arguments")
        self.existing = existing


class NameConflictError(MCPStoreError):
    """Raised when a rename collides and auto-rename is disallowed."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Name '{name}' is already in use")
        self.name = name


class NotFoundError(MCPStoreError, KeyError):
    """Raised when an operation targets a missing identifier."""

    kind = "MCP server"

    def __init__(self, identifier: str) -> None:
        super().__init__(f"{self.kind} '{identifier}' not found")
        self.identifier = identifier

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0])


class ProfileNotFoundError(NotFoundError):
    kind = "Profile"


class PersistenceError(MCPStoreError):
    """Raised when a durable write fails; in-memory state has been rolled back."""


class RestoreError(MCPStoreError):
    """Raised when a snapshot is missing or its contents are corrupt."""


class BackupNotFoundError(RestoreError, NotFoundError):
    kind = "Backup"


class StoreBusyError(MCPStoreError):
    """Raised when a mutation is attempted while another one is in flight on the same thread."""


class InvalidRecordError(MCPStoreError, ValueError):
    """Raised when a draft or an imported record is malformed."""


__all__ = [
    "BackupNotFoundError",
    "DuplicateError",
    "InvalidRecordError",
    "MCPStoreError",
    "NameConflictError",
    "NotFoundError",
    "PersistenceError",
    "ProfileNotFoundError",
    "RestoreError",
    "StoreBusyError",
]
