from __future__ import annotations

from datetime import datetime, timezone

from mcpshelf.domain.mcp import name_key, resolve_unique_name


def test_free_name_is_returned_unchanged() -> None:
    assert resolve_unique_name("Filesystem", {"github"}) == "Filesystem"


def test_clash_is_case_insensitive() -> None:
    assert resolve_unique_name("GitHub", {"github"}) == "GitHub (1)"


def test_first_free_suffix_wins() -> None:
    existing = {"test mcp", "test mcp (1)", "test mcp (3)"}
    assert resolve_unique_name("Test MCP", existing) == "Test MCP (2)"


def test_suffix_candidates_are_checked_lowercased() -> None:
    existing = {"demo", "demo (1)"}
    assert resolve_unique_name("DEMO", existing) == "DEMO (2)"


def test_falls_back_to_timestamp_after_max_attempts() -> None:
    moment = datetime(2024, 5, 1, tzinfo=timezone.utc)
    existing = {"x", "x (1)", "x (2)"}
    name = resolve_unique_name("x", existing, clock=lambda: moment, max_attempts=2)
    assert name == f"x ({int(moment.timestamp() * 1000)})"


def test_name_key_trims_and_lowercases() -> None:
    assert name_key("  Sequential Thinking ") == "sequential thinking"
