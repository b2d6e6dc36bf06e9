from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import jsonschema
import pytest

from mcpshelf.app.mcp.store import StoreStatus
from mcpshelf.settings import RuntimeSettings
from mcpshelf.utils import telemetry


def make_settings(base: Path) -> RuntimeSettings:
    return RuntimeSettings(home_dir=base, data_dir=base / "data", log_dir=base / "logs")


@pytest.fixture(autouse=True)
def telemetry_on(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MCPSHELF_TELEMETRY", raising=False)


def test_structured_events_are_appended(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    telemetry.record_structured_event(settings, "mcp.add", status="start", component="mcp", payload={"command": "add"})
    telemetry.record_structured_event(settings, "mcp.add", status="success", component="mcp", duration_ms=1.5)
    events = list(telemetry.iter_events(settings))
    assert [event["status"] for event in events] == ["start", "success"]
    assert events[1]["durationMs"] == 1.5
    assert "component" in events[0] and "durationMs" not in events[0]
    assert telemetry.summarize(events) == {
        "total": 2,
        "by_event": {"mcp.add": 2},
        "by_status": {"start": 1, "success": 1},
        "degraded": {},
    }


@pytest.mark.parametrize("value", ["off", "0", "FALSE", " no "])
def test_opt_out_writes_nothing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("MCPSHELF_TELEMETRY", value)
    settings = make_settings(tmp_path)
    telemetry.record_structured_event(settings, "mcp.add")
    assert not telemetry.event_log_path(settings).exists()
    assert list(telemetry.iter_events(settings)) == []


@pytest.mark.parametrize(
    "kwargs",
    [{"level": "debug"}, {"status": "pending"}, {"duration_ms": -1.0}],
)
def test_invalid_records_are_rejected(tmp_path: Path, kwargs: dict) -> None:
    settings = make_settings(tmp_path)
    with pytest.raises(jsonschema.ValidationError):
        telemetry.record_structured_event(settings, "mcp.add", **kwargs)
    with pytest.raises(jsonschema.ValidationError):
        telemetry.record_structured_event(settings, "")
    assert list(telemetry.iter_events(settings)) == []


def test_partial_lines_are_skipped(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    telemetry.record_structured_event(settings, "backup.create")
    with telemetry.event_log_path(settings).open("a", encoding="utf-8") as fh:
        fh.write('{"event": "trunc')
    assert [event["event"] for event in telemetry.iter_events(settings)] == ["backup.create"]
    telemetry.clear(settings)
    telemetry.clear(settings)
    assert list(telemetry.iter_events(settings)) == []


def test_healthy_store_logs_nothing(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    status = StoreStatus(mutating=False, mcp_count=2, profile_count=1, backup_count=1)
    assert telemetry.record_store_health(settings, "mcp", status) is False
    assert list(telemetry.iter_events(settings)) == []


def test_degraded_store_logs_warning(tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    status = StoreStatus(
        mutating=False,
        mcp_count=2,
        profile_count=1,
        backup_count=0,
        last_saved_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        last_backup_error="backup volume unavailable",
    )
    assert telemetry.record_store_health(settings, "mcp", status) is True
    [event] = telemetry.iter_events(settings)
    assert event["event"] == "mcp.degraded"
    assert (event["status"], event["level"], event["component"]) == ("warning", "warn", "mcp")
    assert event["payload"]["last_backup_error"] == "backup volume unavailable"
    assert event["payload"]["last_save_error"] is None
    assert event["payload"]["last_saved_at"] == "2024-01-01T00:00:00+00:00"
    assert telemetry.summarize([event])["degraded"] == {"mcp": 1}
