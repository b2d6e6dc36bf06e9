"""Domain primitives for MCP server management."""

from .duplicates import DuplicateCheck, DuplicateStatus, classify
from .errors import (
    BackupNotFoundError,
    DuplicateError,
    InvalidRecordError,
    MCPStoreError,
    NameConflictError,
    NotFoundError,
    PersistenceError,
    ProfileNotFoundError,
    RestoreError,
    StoreBusyError,
)
from .naming import name_key, resolve_unique_name
from .profile_index import ProfileIndex
from .value_objects import MCPDraft, MCPEntity, MCPPatch, Profile, StoreState

__all__ = [
    "BackupNotFoundError",
    "DuplicateCheck",
    "DuplicateError",
    "DuplicateStatus",
    "InvalidRecordError",
    "MCPDraft",
    "MCPEntity",
    "MCPPatch",
    "MCPStoreError",
    "NameConflictError",
    "NotFoundError",
    "PersistenceError",
    "Profile",
    "ProfileIndex",
    "ProfileNotFoundError",
    "RestoreError",
    "StoreBusyError",
    "StoreState",
    "classify",
    "name_key",
    "resolve_unique_name",
]
