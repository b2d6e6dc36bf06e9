"""Opt-out JSONL event log for CLI commands and store health.

Every record is checked against ``telemetry.schema.json`` before it is
appended, so a malformed event fails loudly instead of corrupting the log.
Set ``MCPSHELF_TELEMETRY=off`` to disable writing.
"""

from __future__ import annotations

import json
import os
import time
from collections import Counter
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, Mapping

import jsonschema

from mcpshelf.resources import load_schema
from mcpshelf.settings import RuntimeSettings

if TYPE_CHECKING:
    from mcpshelf.app.mcp.store import StoreStatus

EVENT_LOG = "telemetry.jsonl"

_OPT_OUT = frozenset({"0", "false", "no", "off"})
_HEALTH_FIELDS = ("last_save_error", "last_backup_error", "last_saved_at", "mcp_count", "backup_count")


def telemetry_enabled() -> bool:
    return os.getenv("MCPSHELF_TELEMETRY", "1").strip().lower() not in _OPT_OUT


def event_log_path(settings: RuntimeSettings) -> Path:
    return settings.log_dir / EVENT_LOG


@lru_cache(maxsize=None)
def _validator() -> jsonschema.Draft202012Validator:
    return jsonschema.Draft202012Validator(load_schema("telemetry.schema.json"))


def record_structured_event(
    settings: RuntimeSettings,
    event: str,
    *,
    payload: Mapping[str, Any] | None = None,
    level: str = "info",
    status: str | None = None,
    component: str | None = None,
    duration_ms: float | None = None,
) -> None:
    """Append one event; raises ``jsonschema.ValidationError`` for malformed records."""

    if not telemetry_enabled():
        return
    record: Dict[str, Any] = {"ts": time.time(), "event": event, "payload": dict(payload or {}), "level": level}
    optional = {"status": status, "component": component, "durationMs": duration_ms}
    record.update({key: value for key, value in optional.items() if value is not None})
    _validator().validate(record)
    path = event_log_path(settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False) + "\n")


def record_store_health(settings: RuntimeSettings, component: str, status: "StoreStatus") -> bool:
    """Log a warning when the last save or auto-backup failed.

    Returns ``True`` when the store was degraded and an event was written (or
    would have been, with telemetry disabled).
    """

    if not status.degraded:
        return False
    snapshot = status.to_dict()
    record_structured_event(
        settings,
        f"{component}.degraded",
        level="warn",
        status="warning",
        component=component,
        payload={key: snapshot[key] for key in _HEALTH_FIELDS},
    )
    return True


def iter_events(settings: RuntimeSettings) -> Iterator[Dict[str, Any]]:
    path = event_log_path(settings)
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as fh:
        for raw in fh:
            if not raw.strip():
                continue
            try:
                yield json.loads(raw)
            except json.JSONDecodeError:
                # Interrupted append.
                continue


def summarize(events: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    by_event: Counter[str] = Counter()
    by_status: Counter[str] = Counter()
    degraded: Counter[str] = Counter()
    for evt in events:
        by_event[evt.get("event", "unknown")] += 1
        by_status[evt.get("status", "unknown")] += 1
        if evt.get("status") == "warning":
            degraded[evt.get("component", "unknown")] += 1
    return {
        "total": sum(by_event.values()),
        "by_event": dict(by_event),
        "by_status": dict(by_status),
        "degraded": dict(degraded),
    }


def clear(settings: RuntimeSettings) -> None:
    event_log_path(settings).unlink(missing_ok=True)


__all__ = [
    "EVENT_LOG",
    "clear",
    "event_log_path",
    "iter_events",
    "record_store_health",
    "record_structured_event",
    "summarize",
    "telemetry_enabled",
]
