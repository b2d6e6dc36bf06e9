"""Application service owning the MCP server collection and its profiles.

Every mutating operation runs through :meth:`EntityStore._mutate`: it takes
the store lock, applies the change to a copy of the committed state, persists
that copy and only then swaps it in. A failed write therefore leaves the live
state exactly as it was before the call (rollback policy), and the failure is
kept in :attr:`EntityStore.status` until the next successful write.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Set, TypeVar

from mcpshelf.adapters.file_backup_repository import FileBackupRepository
from mcpshelf.adapters.file_state_repository import FileStateRepository
from mcpshelf.app.backup.manager import BackupManager
from mcpshelf.domain.backup import BackupSummary
from mcpshelf.domain.mcp import (
    DuplicateError,
    DuplicateStatus,
    MCPDraft,
    MCPEntity,
    MCPPatch,
    MCPStoreError,
    NameConflictError,
    NotFoundError,
    PersistenceError,
    Profile,
    ProfileIndex,
    ProfileNotFoundError,
    StoreBusyError,
    StoreState,
    classify,
    resolve_unique_name,
)
from mcpshelf.domain.mcp.value_objects import utc_now
from mcpshelf.ports.state_repository import StateRepository
from mcpshelf.settings import RuntimeSettings

from . import transfer

T = TypeVar("T")

DEFAULT_PROFILE_NAME = "Default Profile"
_ID_ATTEMPTS = 8


def _default_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class StoreStatus:
    mutating: bool
    mcp_count: int
    profile_count: int
    backup_count: int
    last_saved_at: datetime | None = None
    last_save_error: str | None = None
    last_backup_error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.last_save_error is not None or self.last_backup_error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mutating": self.mutating,
            "mcp_count": self.mcp_count,
            "profile_count": self.profile_count,
            "backup_count": self.backup_count,
            "last_saved_at": self.last_saved_at.isoformat() if self.last_saved_at else None,
            "last_save_error": self.last_save_error,
            "last_backup_error": self.last_backup_error,
        }


@dataclass(frozen=True)
class ImportItemResult:
    index: int
    entity: MCPEntity | None = None
    error: MCPStoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"index": self.index, "status": "ok" if self.ok else "error"}
        if self.entity is not None:
            payload["mcp"] = {"id": self.entity.mcp_id, "name": self.entity.name}
        if self.error is not None:
            payload["error"] = str(self.error)
        return payload


@dataclass(frozen=True)
class ImportReport:
    results: List[ImportItemResult] = field(default_factory=list)

    @property
    def added(self) -> List[MCPEntity]:
        return [item.entity for item in self.results if item.entity is not None]

    @property
    def failed(self) -> List[ImportItemResult]:
        return [item for item in self.results if not item.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": len(self.added),
            "failed": len(self.failed),
            "results": [item.to_dict() for item in self.results],
        }


class EntityStore:
    """Owns the live state tree and serialises every mutation."""

    def __init__(
        self,
        repository: StateRepository,
        backups: BackupManager | None = None,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
        auto_backup: bool = True,
    ) -> None:
        self._repository = repository
        self._backups = backups
        self._id_factory = id_factory or _default_id
        self._clock = clock or utc_now
        self._auto_backup = auto_backup
        self._state = StoreState()
        self._lock = threading.Lock()
        self._owner: int | None = None
        self._last_saved_at: datetime | None = None
        self._last_save_error: str | None = None
        self._last_backup_error: str | None = None

    @classmethod
    def open(cls, settings: RuntimeSettings) -> "EntityStore":
        """Build a store over the JSON files configured in ``settings`` and load it."""

        backups = BackupManager(FileBackupRepository(settings.backups_file), max_backups=settings.max_backups)
        store = cls(FileStateRepository(settings.state_file), backups, auto_backup=settings.auto_backup)
        store.load()
        return store

    # ------------------------------------------------------------------
    # Reads (never take the mutation lock)
    # ------------------------------------------------------------------

    @property
    def mutating(self) -> bool:
        return self._owner is not None

    @property
    def status(self) -> StoreStatus:
        state = self._state
        return StoreStatus(
            mutating=self.mutating,
            mcp_count=len(state.entities),
            profile_count=len(state.profiles),
            backup_count=len(self._backups.list()) if self._backups is not None else 0,
            last_saved_at=self._last_saved_at,
            last_save_error=self._last_save_error,
            last_backup_error=self._last_backup_error,
        )

    def list(self) -> List[MCPEntity]:
        return list(self._state.entities.values())

    def get(self, mcp_id: str) -> MCPEntity:
        entity = self._state.entities.get(mcp_id)
        if entity is None:
            raise NotFoundError(mcp_id)
        return entity

    def find_by_name(self, name: str) -> MCPEntity | None:
        key = name.strip().lower()
        for entity in self._state.entities.values():
            if entity.name.lower() == key:
                return entity
        return None

    def search(self, query: str) -> List[MCPEntity]:
        needle = query.strip().lower()
        return [
            entity
            for entity in self._state.entities.values()
            if needle in entity.name.lower()
            or needle in (entity.description or "").lower()
            or needle in entity.command.lower()
        ]

    def list_profiles(self) -> List[Profile]:
        return list(self._state.profiles.values())

    def get_profile(self, profile_id: str) -> Profile:
        profile = self._state.profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    def find_profile(self, name: str) -> Profile | None:
        key = name.strip().lower()
        for profile in self._state.profiles.values():
            if profile.name.lower() == key:
                return profile
        return None

    def members_of(self, profile_id: str) -> List[str]:
        state = self._state
        return ProfileIndex(state.profiles, state.entities).members_of(profile_id)

    def profiles_of(self, mcp_id: str) -> Set[str]:
        state = self._state
        return ProfileIndex(state.profiles, state.entities).profiles_of(mcp_id)

    def has_unsaved_profile_changes(self, profile_id: str) -> bool:
        """True when the enabled servers differ from the profile's membership."""

        state = self._state
        profile = self.get_profile(profile_id)
        enabled = sorted(mcp_id for mcp_id, entity in state.entities.items() if entity.enabled)
        return enabled != sorted(profile.member_ids)

    def snapshot_state(self) -> StoreState:
        return self._state.copy()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self) -> StoreState:
        """Replace live state with the repository contents, repairing broken invariants."""

        with self._exclusive():
            loaded = self._repository.load()
            state = loaded.copy() if loaded is not None else StoreState()
            changed = self._repair(state)
            if state.entities and not state.profiles:
                now = self._clock()
                profile = Profile(
                    profile_id=self._new_id(state.profiles),
                    name=DEFAULT_PROFILE_NAME,
                    description="Automatically created default profile with all your MCP servers",
                    member_ids=tuple(state.entities),
                    is_default=True,
                    created_at=now,
                    updated_at=now,
                )
                state.profiles[profile.profile_id] = profile
                changed = True
            if changed:
                self._commit(state)
            else:
                self._state = state
            return self._state.copy()

    # ------------------------------------------------------------------
    # MCP server mutations
    # ------------------------------------------------------------------

    def add(
        self,
        draft: MCPDraft | Mapping[str, Any],
        *,
        allow_duplicate: bool = False,
        profile_ids: Sequence[str] = (),
    ) -> MCPEntity:
        draft = _as_draft(draft)
        return self._mutate(
            lambda state: self._add(state, draft, allow_duplicate=allow_duplicate, profile_ids=profile_ids),
            label=lambda entity: f"Added MCP: {entity.name}",
        )

    def update(
        self,
        mcp_id: str,
        patch: MCPPatch | Mapping[str, Any],
        *,
        auto_rename: bool = True,
    ) -> MCPEntity:
        if not isinstance(patch, MCPPatch):
            patch = MCPPatch.from_dict(patch)
        return self._mutate(lambda state: self._update(state, mcp_id, patch, auto_rename=auto_rename))

    def remove(self, mcp_id: str) -> MCPEntity:
        return self._mutate(
            lambda state: self._remove(state, mcp_id),
            label=lambda entity: f"Deleted MCP: {entity.name}",
        )

    def remove_many(self, mcp_ids: Iterable[str]) -> List[MCPEntity]:
        ids = list(dict.fromkeys(mcp_ids))

        def operation(state: StoreState) -> List[MCPEntity]:
            for mcp_id in ids:
                _require_entity(state, mcp_id)
            return [self._remove(state, mcp_id) for mcp_id in ids]

        return self._mutate(operation, label=lambda removed: f"Bulk deleted {len(removed)} MCPs")

    def duplicate(self, mcp_id: str) -> MCPEntity:
        def operation(state: StoreState) -> MCPEntity:
            source = _require_entity(state, mcp_id)
            name = resolve_unique_name(source.name, state.entity_names(), clock=self._clock)
            return self._add(state, source.to_draft().with_name(name), allow_duplicate=True)

        return self._mutate(operation, label=lambda entity: f"Duplicated MCP: {entity.name}")

    def import_many(
        self,
        items: Iterable[MCPDraft | Mapping[str, Any]],
        *,
        allow_duplicate: bool = False,
    ) -> ImportReport:
        """Add each item in order, collecting per-item outcomes instead of aborting."""

        records = list(items)
        return self._mutate(
            lambda state: self._import(state, records, allow_duplicate=allow_duplicate),
            label=lambda report: f"Imported {len(report.added)} MCPs" if report.added else None,
        )

    def import_payload(self, text: str, fmt: str = "json", *, allow_duplicate: bool = False) -> ImportReport:
        payload = transfer.parse_text(text, fmt)
        return self.import_many(transfer.extract_records(payload), allow_duplicate=allow_duplicate)

    def toggle(self, mcp_id: str) -> MCPEntity:
        def operation(state: StoreState) -> MCPEntity:
            entity = _require_entity(state, mcp_id)
            return self._update(state, mcp_id, MCPPatch(enabled=not entity.enabled), auto_rename=True)

        return self._mutate(operation)

    def set_enabled(self, mcp_ids: Iterable[str], enabled: bool) -> List[MCPEntity]:
        ids = list(dict.fromkeys(mcp_ids))

        def operation(state: StoreState) -> List[MCPEntity]:
            for mcp_id in ids:
                _require_entity(state, mcp_id)
            return [self._update(state, mcp_id, MCPPatch(enabled=enabled), auto_rename=True) for mcp_id in ids]

        return self._mutate(operation)

    def enable_all(self) -> List[MCPEntity]:
        return self.set_enabled(list(self._state.entities), True)

    def record_usage(self, mcp_id: str, *, at: datetime | None = None) -> MCPEntity:
        def operation(state: StoreState) -> MCPEntity:
            entity = _require_entity(state, mcp_id)
            patch = MCPPatch(usage_count=entity.usage_count + 1, last_used=at or self._clock())
            return self._update(state, mcp_id, patch, auto_rename=True)

        return self._mutate(operation)

    # ------------------------------------------------------------------
    # Profile mutations
    # ------------------------------------------------------------------

    def create_profile(
        self,
        name: str,
        *,
        description: str = "",
        member_ids: Sequence[str] = (),
        is_default: bool = False,
        auto_rename: bool = True,
    ) -> Profile:
        def operation(state: StoreState) -> Profile:
            now = self._clock()
            profile = Profile(
                profile_id=self._new_id(state.profiles),
                name=name,
                description=description,
                is_default=is_default,
                created_at=now,
                updated_at=now,
            )
            profile = replace(profile, name=self._profile_name(state, profile.name, None, auto_rename))
            state.profiles[profile.profile_id] = profile
            self._index(state).set_members(profile.profile_id, list(dict.fromkeys(member_ids)))
            if is_default:
                _clear_other_defaults(state, profile.profile_id)
            return state.profiles[profile.profile_id]

        return self._mutate(operation)

    def update_profile(
        self,
        profile_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        member_ids: Sequence[str] | None = None,
        is_default: bool | None = None,
        auto_rename: bool = True,
    ) -> Profile:
        def operation(state: StoreState) -> Profile:
            profile = _require_profile(state, profile_id)
            changes: Dict[str, Any] = {"updated_at": self._clock()}
            if name is not None:
                cleaned = replace(profile, name=name).name
                changes["name"] = self._profile_name(state, cleaned, profile_id, auto_rename)
            if description is not None:
                changes["description"] = description
            if is_default is not None:
                changes["is_default"] = is_default
            state.profiles[profile_id] = replace(profile, **changes)
            if member_ids is not None:
                self._index(state).set_members(profile_id, list(dict.fromkeys(member_ids)))
            if is_default:
                _clear_other_defaults(state, profile_id)
            return state.profiles[profile_id]

        return self._mutate(operation)

    def remove_profile(self, profile_id: str) -> Profile:
        return self._mutate(lambda state: self._index(state).on_profile_removed(profile_id))

    def add_to_profile(self, profile_id: str, mcp_id: str) -> bool:
        return self._mutate(lambda state: self._index(state).add_member(profile_id, mcp_id))

    def remove_from_profile(self, profile_id: str, mcp_id: str) -> bool:
        return self._mutate(lambda state: self._index(state).remove_member(profile_id, mcp_id))

    def activate_profile(self, profile_id: str) -> List[MCPEntity]:
        """Enable exactly the profile's members and disable every other server."""

        def operation(state: StoreState) -> List[MCPEntity]:
            members = set(_require_profile(state, profile_id).member_ids)
            changed: List[MCPEntity] = []
            for mcp_id, entity in list(state.entities.items()):
                wanted = mcp_id in members
                if entity.enabled != wanted:
                    changed.append(self._update(state, mcp_id, MCPPatch(enabled=wanted), auto_rename=True))
            return changed

        return self._mutate(operation)

    def capture_profile(self, profile_id: str) -> Profile:
        """Store the currently enabled servers as the profile's membership."""

        def operation(state: StoreState) -> Profile:
            enabled = [mcp_id for mcp_id, entity in state.entities.items() if entity.enabled]
            self._index(state).set_members(profile_id, enabled)
            return state.profiles[profile_id]

        return self._mutate(operation)

    def import_profile(self, payload: Any, *, allow_duplicate: bool = False) -> tuple[Profile, ImportReport]:
        """Import a profile bundle; exact duplicates join the profile as their existing entry."""

        profile_data, records = transfer.read_profile_bundle(payload)

        def operation(state: StoreState) -> tuple[Profile, ImportReport]:
            report = self._import(state, records, allow_duplicate=allow_duplicate)
            member_ids: List[str] = []
            for item in report.results:
                if item.entity is not None:
                    member_ids.append(item.entity.mcp_id)
                elif isinstance(item.error, DuplicateError):
                    member_ids.append(item.error.existing.mcp_id)
            now = self._clock()
            profile = Profile(
                profile_id=self._new_id(state.profiles),
                name=profile_data.get("name") or "Imported Profile",
                description=profile_data.get("description") or "",
                created_at=now,
                updated_at=now,
            )
            profile = replace(profile, name=self._profile_name(state, profile.name, None, True))
            state.profiles[profile.profile_id] = profile
            self._index(state).set_members(profile.profile_id, list(dict.fromkeys(member_ids)))
            return state.profiles[profile.profile_id], report

        return self._mutate(operation, label=lambda result: f"Imported profile: {result[0].name}")

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_records(self, mcp_ids: Sequence[str] | None = None) -> List[Dict[str, Any]]:
        return transfer.export_records(self._select(mcp_ids))

    def export_servers(self, mcp_ids: Sequence[str] | None = None) -> Dict[str, Any]:
        """Client configuration map; without ids only enabled servers are exported."""

        if mcp_ids is None:
            entities = [entity for entity in self._state.entities.values() if entity.enabled]
        else:
            entities = self._select(mcp_ids)
        return transfer.servers_payload(entities)

    def export_profile(self, profile_id: str) -> Dict[str, Any]:
        state = self._state
        profile = _require_profile(state, profile_id)
        return transfer.profile_bundle(profile, [state.entities[mcp_id] for mcp_id in profile.member_ids])

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def create_backup(self, label: str = "Manual backup") -> BackupSummary:
        backups = self._require_backups()
        with self._exclusive():
            backup_id = backups.snapshot(self._state, label)
            self._last_backup_error = None
            return backups.summary(backup_id)

    def list_backups(self) -> List[BackupSummary]:
        return self._backups.list() if self._backups is not None else []

    def remove_backup(self, backup_id: str) -> BackupSummary:
        backups = self._require_backups()
        with self._exclusive():
            return backups.remove(backup_id)

    def restore_backup(self, backup_id: str) -> BackupSummary:
        """Swap the snapshot in as the live state in one step and persist it."""

        backups = self._require_backups()
        with self._exclusive():
            restored = backups.restore(backup_id)
            self._commit(restored)
            return backups.summary(backup_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        ident = threading.get_ident()
        if self._owner == ident:
            raise StoreBusyError("A store mutation is already in flight")
        with self._lock:
            self._owner = ident
            try:
                yield
            finally:
                self._owner = None

    def _mutate(
        self,
        operation: Callable[[StoreState], T],
        *,
        label: Callable[[T], str | None] | None = None,
    ) -> T:
        with self._exclusive():
            working = self._state.copy()
            result = operation(working)
            self._commit(working)
            if label is not None:
                self._after_commit_backup(label(result))
            return result

    def _commit(self, state: StoreState) -> None:
        try:
            self._repository.save(state)
        except Exception as exc:
            self._last_save_error = str(exc) or exc.__class__.__name__
            raise PersistenceError(f"Failed to save store: {self._last_save_error}") from exc
        self._state = state
        self._last_save_error = None
        self._last_saved_at = self._clock()

    def _after_commit_backup(self, label: str | None) -> None:
        # The mutation is already durable; a failed snapshot only degrades status.
        if label is None or not self._auto_backup or self._backups is None:
            return
        try:
            self._backups.snapshot(self._state, label)
        except PersistenceError as exc:
            self._last_backup_error = str(exc)
            return
        self._last_backup_error = None

    def _require_backups(self) -> BackupManager:
        if self._backups is None:
            raise MCPStoreError("Backups are not configured for this store")
        return self._backups

    def _index(self, state: StoreState) -> ProfileIndex:
        return ProfileIndex(state.profiles, state.entities, clock=self._clock)

    def _new_id(self, taken: Mapping[str, Any]) -> str:
        for _ in range(_ID_ATTEMPTS):
            candidate = self._id_factory()
            if candidate and candidate not in taken:
                return candidate
        raise MCPStoreError("Identifier factory keeps returning identifiers already in use")

    def _add(
        self,
        state: StoreState,
        draft: MCPDraft,
        *,
        allow_duplicate: bool,
        profile_ids: Sequence[str] = (),
    ) -> MCPEntity:
        check = classify(draft, state.entities.values(), force=allow_duplicate)
        if check.status is DuplicateStatus.EXACT_DUPLICATE and not allow_duplicate:
            assert check.match is not None
            raise DuplicateError(check.match)
        for profile_id in profile_ids:
            _require_profile(state, profile_id)
        name = draft.name
        if check.name_clash:
            name = check.suggested_name or resolve_unique_name(draft.name, state.entity_names(), clock=self._clock)
        entity = MCPEntity.from_draft(
            self._new_id(state.entities),
            draft.with_name(name),
            created_at=self._clock(),
        )
        state.entities[entity.mcp_id] = entity
        index = self._index(state)
        for profile_id in profile_ids:
            index.add_member(profile_id, entity.mcp_id)
        return entity

    def _update(self, state: StoreState, mcp_id: str, patch: MCPPatch, *, auto_rename: bool) -> MCPEntity:
        current = _require_entity(state, mcp_id)
        updated = patch.apply(current)
        if patch.renames:
            others = state.entity_names(exclude=mcp_id)
            if updated.name.lower() in others:
                if not auto_rename:
                    raise NameConflictError(updated.name)
                updated = replace(updated, name=resolve_unique_name(updated.name, others, clock=self._clock))
        state.entities[mcp_id] = updated
        return updated

    def _remove(self, state: StoreState, mcp_id: str) -> MCPEntity:
        entity = _require_entity(state, mcp_id)
        del state.entities[mcp_id]
        self._index(state).on_entity_removed(mcp_id)
        return entity

    def _import(self, state: StoreState, records: Sequence[Any], *, allow_duplicate: bool) -> ImportReport:
        results: List[ImportItemResult] = []
        for index, record in enumerate(records):
            try:
                draft = _as_draft(record)
                entity = self._add(state, draft, allow_duplicate=allow_duplicate)
            except MCPStoreError as exc:
                results.append(ImportItemResult(index=index, error=exc))
            else:
                results.append(ImportItemResult(index=index, entity=entity))
        return ImportReport(results)

    def _profile_name(self, state: StoreState, name: str, profile_id: str | None, auto_rename: bool) -> str:
        others = state.profile_names(exclude=profile_id)
        if name.lower() not in others:
            return name
        if not auto_rename:
            raise NameConflictError(name)
        return resolve_unique_name(name, others, clock=self._clock)

    def _repair(self, state: StoreState) -> bool:
        """Rename clashing servers and drop dangling memberships; return True if anything changed."""

        changed = False
        seen: Set[str] = set()
        for mcp_id, entity in list(state.entities.items()):
            if entity.name.lower() in seen:
                entity = replace(entity, name=resolve_unique_name(entity.name, seen, clock=self._clock))
                state.entities[mcp_id] = entity
                changed = True
            seen.add(entity.name.lower())
        profile_names: Set[str] = set()
        for profile_id, profile in list(state.profiles.items()):
            members = tuple(member for member in profile.member_ids if member in state.entities)
            name = profile.name
            if name.lower() in profile_names:
                name = resolve_unique_name(name, profile_names, clock=self._clock)
            profile_names.add(name.lower())
            if members != profile.member_ids or name != profile.name:
                state.profiles[profile_id] = replace(profile, member_ids=members, name=name)
                changed = True
        return changed

    def _select(self, mcp_ids: Sequence[str] | None) -> List[MCPEntity]:
        state = self._state
        if mcp_ids is None:
            return list(state.entities.values())
        return [_require_entity(state, mcp_id) for mcp_id in mcp_ids]


def _as_draft(item: MCPDraft | Mapping[str, Any]) -> MCPDraft:
    if isinstance(item, MCPDraft):
        return item
    if isinstance(item, MCPEntity):
        return item.to_draft()
    return MCPDraft.from_dict(item)


def _require_entity(state: StoreState, mcp_id: str) -> MCPEntity:
    entity = state.entities.get(mcp_id)
    if entity is None:
        raise NotFoundError(mcp_id)
    return entity


def _require_profile(state: StoreState, profile_id: str) -> Profile:
    profile = state.profiles.get(profile_id)
    if profile is None:
        raise ProfileNotFoundError(profile_id)
    return profile


def _clear_other_defaults(state: StoreState, profile_id: str) -> None:
    for other_id, other in list(state.profiles.items()):
        if other_id != profile_id and other.is_default:
            state.profiles[other_id] = replace(other, is_default=False)


__all__ = ["EntityStore", "ImportItemResult", "ImportReport", "StoreStatus"]
