"""Value objects describing MCP servers, profiles and the store state tree."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Set, Tuple

from .errors import InvalidRecordError

TRANSPORTS = ("stdio", "http", "sse")

# Keys accepted on import; record-only keys come from our own exports and are ignored.
DRAFT_KEYS = frozenset({"name", "command", "args", "description", "enabled", "disabled", "type", "url", "env", "headers"})
RECORD_ONLY_KEYS = frozenset({"id", "usage_count", "last_used", "created_at"})

Pairs = Tuple[Tuple[str, str], ...]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidRecordError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean_name(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRecordError(f"{label} name must be a non-empty string")
    return value.strip()


def _clean_args(values: Any) -> Tuple[str, ...]:
    if values is None:
        return ()
    if not isinstance(values, (list, tuple)):
        raise InvalidRecordError("args must be a list of strings")
    return tuple(str(item) for item in values)


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_pairs(values: Any, label: str) -> Pairs:
    if values is None:
        return ()
    if isinstance(values, Mapping):
        items: Iterable[Any] = values.items()
    elif isinstance(values, tuple) and all(isinstance(item, tuple) and len(item) == 2 for item in values):
        items = values
    else:
        raise InvalidRecordError(f"{label} must be a mapping of strings")
    return tuple((str(key), str(value)) for key, value in items)


def _clean_transport(value: Any, command: str, url: str | None) -> str:
    if value is None or value == "":
        return "http" if url and not command else "stdio"
    transport = str(value).strip().lower()
    if transport not in TRANSPORTS:
        raise InvalidRecordError(f"Unsupported transport {value!r}; expected one of {', '.join(TRANSPORTS)}")
    if transport != "stdio" and not url:
        raise InvalidRecordError(f"{transport} servers require a url")
    return transport


def _clean_count(value: Any) -> int:
    try:
        count = int(value or 0)
    except (TypeError, ValueError) as exc:
        raise InvalidRecordError(f"usage_count must be an integer, got {value!r}") from exc
    if count < 0:
        raise InvalidRecordError("usage_count must not be negative")
    return count


@dataclass(frozen=True)
class MCPDraft:
    """Caller-supplied fields of an MCP server before the store assigns identity."""

    name: str
    command: str = ""
    args: Tuple[str, ...] = ()
    description: str | None = None
    enabled: bool = True
    transport: str | None = None
    url: str | None = None
    env: Pairs = ()
    headers: Pairs = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _clean_name(self.name, "MCP server"))
        object.__setattr__(self, "command", str(self.command or "").strip())
        object.__setattr__(self, "args", _clean_args(self.args))
        object.__setattr__(self, "description", _clean_optional(self.description))
        object.__setattr__(self, "enabled", bool(self.enabled))
        object.__setattr__(self, "url", _clean_optional(self.url))
        object.__setattr__(self, "transport", _clean_transport(self.transport, self.command, self.url))
        object.__setattr__(self, "env", _clean_pairs(self.env, "env"))
        object.__setattr__(self, "headers", _clean_pairs(self.headers, "headers"))

    def with_name(self, name: str) -> "MCPDraft":
        return replace(self, name=name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MCPDraft":
        if not isinstance(data, Mapping):
            raise InvalidRecordError("MCP record must be a mapping")
        unknown = set(data).difference(DRAFT_KEYS, RECORD_ONLY_KEYS)
        if unknown:
            raise InvalidRecordError(f"Unsupported fields in MCP record: {sorted(unknown)}")
        enabled = data.get("enabled")
        if enabled is None:
            enabled = not bool(data.get("disabled", False))
        return cls(
            name=data.get("name"),  # type: ignore[arg-type]
            command=data.get("command") or "",
            args=_clean_args(data.get("args")),
            description=data.get("description"),
            enabled=bool(enabled),
            transport=data.get("type"),
            url=data.get("url"),
            env=_clean_pairs(data.get("env"), "env"),
            headers=_clean_pairs(data.get("headers"), "headers"),
        )


@dataclass(frozen=True)
class MCPEntity:
    """Immutable record of a registered MCP server."""

    mcp_id: str
    name: str
    command: str = ""
    args: Tuple[str, ...] = ()
    description: str | None = None
    enabled: bool = True
    usage_count: int = 0
    last_used: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    transport: str | None = None
    url: str | None = None
    env: Pairs = ()
    headers: Pairs = ()

    def __post_init__(self) -> None:
        if not self.mcp_id or not str(self.mcp_id).strip():
            raise InvalidRecordError("MCP server id must be a non-empty string")
        object.__setattr__(self, "mcp_id", str(self.mcp_id).strip())
        object.__setattr__(self, "name", _clean_name(self.name, "MCP server"))
        object.__setattr__(self, "command", str(self.command or "").strip())
        object.__setattr__(self, "args", _clean_args(self.args))
        object.__setattr__(self, "description", _clean_optional(self.description))
        object.__setattr__(self, "enabled", bool(self.enabled))
        object.__setattr__(self, "usage_count", _clean_count(self.usage_count))
        object.__setattr__(self, "url", _clean_optional(self.url))
        object.__setattr__(self, "transport", _clean_transport(self.transport, self.command, self.url))
        object.__setattr__(self, "env", _clean_pairs(self.env, "env"))
        object.__setattr__(self, "headers", _clean_pairs(self.headers, "headers"))

    @classmethod
    def from_draft(cls, mcp_id: str, draft: MCPDraft, *, created_at: datetime) -> "MCPEntity":
        return cls(
            mcp_id=mcp_id,
            name=draft.name,
            command=draft.command,
            args=draft.args,
            description=draft.description,
            enabled=draft.enabled,
            created_at=created_at,
            transport=draft.transport,
            url=draft.url,
            env=draft.env,
            headers=draft.headers,
        )

    def to_draft(self) -> MCPDraft:
        return MCPDraft(
            name=self.name,
            command=self.command,
            args=self.args,
            description=self.description,
            enabled=self.enabled,
            transport=self.transport,
            url=self.url,
            env=self.env,
            headers=self.headers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.mcp_id,
            "name": self.name,
            "type": self.transport,
            "command": self.command,
            "args": list(self.args),
            "url": self.url,
            "env": dict(self.env),
            "headers": dict(self.headers),
            "description": self.description,
            "enabled": self.enabled,
            "usage_count": self.usage_count,
            "last_used": format_timestamp(self.last_used),
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MCPEntity":
        if not isinstance(data, Mapping):
            raise InvalidRecordError("MCP record must be a mapping")
        created_at = parse_timestamp(data.get("created_at")) or utc_now()
        return cls(
            mcp_id=str(data.get("id") or ""),
            name=data.get("name"),  # type: ignore[arg-type]
            command=data.get("command") or "",
            args=_clean_args(data.get("args")),
            description=data.get("description"),
            enabled=bool(data.get("enabled", True)),
            usage_count=_clean_count(data.get("usage_count")),
            last_used=parse_timestamp(data.get("last_used")),
            created_at=created_at,
            transport=data.get("type"),
            url=data.get("url"),
            env=_clean_pairs(data.get("env"), "env"),
            headers=_clean_pairs(data.get("headers"), "headers"),
        )


_UNSET: Any = object()


@dataclass(frozen=True)
class MCPPatch:
    """Partial update for an MCP server; unset fields are left untouched."""

    name: Any = _UNSET
    command: Any = _UNSET
    args: Any = _UNSET
    description: Any = _UNSET
    enabled: Any = _UNSET
    usage_count: Any = _UNSET
    last_used: Any = _UNSET
    transport: Any = _UNSET
    url: Any = _UNSET
    env: Any = _UNSET
    headers: Any = _UNSET

    _FIELDS = (
        "name",
        "command",
        "args",
        "description",
        "enabled",
        "usage_count",
        "last_used",
        "transport",
        "url",
        "env",
        "headers",
    )

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self._FIELDS if getattr(self, name) is not _UNSET}

    @property
    def renames(self) -> bool:
        return self.name is not _UNSET

    def with_name(self, name: str) -> "MCPPatch":
        return replace(self, name=name)

    def apply(self, entity: MCPEntity) -> MCPEntity:
        changes = self.changes()
        if "usage_count" in changes:
            changes["usage_count"] = _clean_count(changes["usage_count"])
            if changes["usage_count"] < entity.usage_count:
                raise InvalidRecordError("usage_count is monotonic and cannot decrease")
        if "last_used" in changes:
            changes["last_used"] = parse_timestamp(changes["last_used"])
        return replace(entity, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MCPPatch":
        unknown = set(data).difference(cls._FIELDS)
        if unknown:
            raise InvalidRecordError(f"Unsupported fields in patch: {sorted(unknown)}")
        return cls(**dict(data))


@dataclass(frozen=True)
class Profile:
    """Named grouping referencing a subset of MCP servers by id."""

    profile_id: str
    name: str
    description: str = ""
    member_ids: Tuple[str, ...] = ()
    is_default: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.profile_id or not str(self.profile_id).strip():
            raise InvalidRecordError("Profile id must be a non-empty string")
        object.__setattr__(self, "name", _clean_name(self.name, "Profile"))
        object.__setattr__(self, "description", str(self.description or "").strip())
        ordered: List[str] = []
        for member in self.member_ids:
            if member not in ordered:
                ordered.append(str(member))
        object.__setattr__(self, "member_ids", tuple(ordered))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.profile_id,
            "name": self.name,
            "description": self.description,
            "mcp_ids": list(self.member_ids),
            "is_default": self.is_default,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Profile":
        if not isinstance(data, Mapping):
            raise InvalidRecordError("Profile record must be a mapping")
        created_at = parse_timestamp(data.get("created_at")) or utc_now()
        return cls(
            profile_id=str(data.get("id") or ""),
            name=data.get("name"),  # type: ignore[arg-type]
            description=data.get("description") or "",
            member_ids=tuple(str(item) for item in data.get("mcp_ids") or ()),
            is_default=bool(data.get("is_default", False)),
            created_at=created_at,
            updated_at=parse_timestamp(data.get("updated_at")) or created_at,
        )


@dataclass
class StoreState:
    """The single state tree owned by the store: ordered entity and profile maps."""

    entities: Dict[str, MCPEntity] = field(default_factory=dict)
    profiles: Dict[str, Profile] = field(default_factory=dict)

    def copy(self) -> "StoreState":
        # Records are frozen, so copying the maps is enough to isolate a working copy.
        return StoreState(entities=dict(self.entities), profiles=dict(self.profiles))

    def entity_names(self, *, exclude: str | None = None) -> Set[str]:
        return {entity.name.lower() for mcp_id, entity in self.entities.items() if mcp_id != exclude}

    def profile_names(self, *, exclude: str | None = None) -> Set[str]:
        return {profile.name.lower() for profile_id, profile in self.profiles.items() if profile_id != exclude}

    def validate(self) -> List[str]:
        """Return a list of invariant violations (empty when the tree is consistent)."""

        problems: List[str] = []
        seen: Dict[str, str] = {}
        for mcp_id, entity in self.entities.items():
            if mcp_id != entity.mcp_id:
                problems.append(f"entity key {mcp_id} does not match id {entity.mcp_id}")
            key = entity.name.lower()
            if key in seen:
                problems.append(f"duplicate MCP server name '{entity.name}'")
            seen[key] = mcp_id
        profile_names: Set[str] = set()
        for profile_id, profile in self.profiles.items():
            if profile_id != profile.profile_id:
                problems.append(f"profile key {profile_id} does not match id {profile.profile_id}")
            if profile.name.lower() in profile_names:
                problems.append(f"duplicate profile name '{profile.name}'")
            profile_names.add(profile.name.lower())
            for member in profile.member_ids:
                if member not in self.entities:
                    problems.append(f"profile '{profile.name}' references missing MCP server {member}")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mcps": [entity.to_dict() for entity in self.entities.values()],
            "profiles": [profile.to_dict() for profile in self.profiles.values()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StoreState":
        if not isinstance(data, Mapping):
            raise InvalidRecordError("Store payload must be a mapping")
        entities = [MCPEntity.from_dict(item) for item in data.get("mcps") or []]
        profiles = [Profile.from_dict(item) for item in data.get("profiles") or []]
        return cls.from_records(entities, profiles)

    @classmethod
    def from_records(cls, entities: Iterable[MCPEntity], profiles: Iterable[Profile]) -> "StoreState":
        return cls(
            entities={entity.mcp_id: entity for entity in entities},
            profiles={profile.profile_id: profile for profile in profiles},
        )


__all__ = [
    "TRANSPORTS",
    "MCPDraft",
    "MCPEntity",
    "MCPPatch",
    "Profile",
    "StoreState",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
