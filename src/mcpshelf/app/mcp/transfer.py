"""Export and import payloads for MCP servers and profiles."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from mcpshelf.domain.mcp import InvalidRecordError, MCPEntity, Profile
from mcpshelf.domain.mcp.value_objects import format_timestamp

FORMATS = ("json", "yaml")


def detect_format(path: Path, default: str = "json") -> str:
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        return "yaml"
    if suffix == ".json":
        return "json"
    return default


def parse_text(text: str, fmt: str = "json") -> Any:
    if fmt not in FORMATS:
        raise InvalidRecordError(f"Unsupported format '{fmt}'")
    try:
        if fmt == "yaml":
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise InvalidRecordError(f"Cannot parse {fmt.upper()} payload: {exc}") from exc


def dump_text(payload: Any, fmt: str = "json") -> str:
    if fmt not in FORMATS:
        raise InvalidRecordError(f"Unsupported format '{fmt}'")
    if fmt == "yaml":
        return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
    return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"


def extract_records(payload: Any) -> List[Any]:
    """Flatten any supported import shape into a list of per-server records.

    Accepted shapes: a list of records, ``{"mcps": [...]}`` and the client
    configuration map ``{"mcpServers": {name: {...}}}``. Records are returned
    unvalidated so the caller can report failures per item.
    """

    if isinstance(payload, list):
        return list(payload)
    if isinstance(payload, Mapping):
        if "mcpServers" in payload:
            servers = payload["mcpServers"]
            if not isinstance(servers, Mapping):
                raise InvalidRecordError("'mcpServers' must be a mapping of name to config")
            records: List[Any] = []
            for name, config in servers.items():
                if isinstance(config, Mapping):
                    records.append({"name": name, **config})
                else:
                    records.append(config)
            return records
        if "mcps" in payload:
            items = payload["mcps"]
            if not isinstance(items, list):
                raise InvalidRecordError("'mcps' must be a list")
            return list(items)
    raise InvalidRecordError("Unrecognised import payload; expected a list, 'mcps' or 'mcpServers'")


def export_records(entities: Iterable[MCPEntity]) -> List[Dict[str, Any]]:
    return [entity.to_dict() for entity in entities]


def servers_payload(entities: Iterable[MCPEntity], *, mark_disabled: bool = True) -> Dict[str, Any]:
    servers: Dict[str, Any] = {}
    for entity in entities:
        config: Dict[str, Any] = {}
        if entity.transport and entity.transport != "stdio":
            config["type"] = entity.transport
        if entity.command:
            config["command"] = entity.command
        if entity.args:
            config["args"] = list(entity.args)
        if entity.env:
            config["env"] = dict(entity.env)
        if entity.url:
            config["url"] = entity.url
        if entity.headers:
            config["headers"] = dict(entity.headers)
        if mark_disabled and not entity.enabled:
            config["disabled"] = True
        servers[entity.name] = config
    return {"mcpServers": servers}


def profile_bundle(profile: Profile, members: Iterable[MCPEntity]) -> Dict[str, Any]:
    return {
        "profile": {
            "name": profile.name,
            "description": profile.description,
            "created_at": format_timestamp(profile.created_at),
        },
        "mcps": export_records(members),
    }


def read_profile_bundle(payload: Any) -> tuple[Mapping[str, Any], List[Any]]:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("profile"), Mapping):
        raise InvalidRecordError("Invalid profile bundle: missing 'profile'")
    mcps = payload.get("mcps")
    if not isinstance(mcps, list):
        raise InvalidRecordError("Invalid profile bundle: 'mcps' must be a list")
    return payload["profile"], mcps


__all__ = [
    "FORMATS",
    "detect_format",
    "dump_text",
    "export_records",
    "extract_records",
    "parse_text",
    "profile_bundle",
    "read_profile_bundle",
    "servers_payload",
]
