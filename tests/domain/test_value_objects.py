from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mcpshelf.domain.mcp import InvalidRecordError, MCPDraft, MCPEntity, MCPPatch, Profile, StoreState
from mcpshelf.domain.mcp.value_objects import parse_timestamp

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_draft_normalises_fields() -> None:
    draft = MCPDraft(name="  Memory ", command=" npx ", args=["-y", "@mcp/memory"], description="   ")
    assert draft.name == "Memory"
    assert draft.command == "npx"
    assert draft.args == ("-y", "@mcp/memory")
    assert draft.description is None


@pytest.mark.parametrize("name", ["", "   ", None, 42])
def test_draft_rejects_blank_names(name) -> None:
    with pytest.raises(InvalidRecordError):
        MCPDraft(name=name)


def test_draft_from_dict_understands_disabled_flag() -> None:
    draft = MCPDraft.from_dict({"name": "gh", "command": "docker", "disabled": True})
    assert draft.enabled is False


def test_draft_from_dict_rejects_string_args() -> None:
    with pytest.raises(InvalidRecordError):
        MCPDraft.from_dict({"name": "gh", "args": "--stdio"})


def test_patch_applies_only_set_fields() -> None:
    entity = MCPEntity(mcp_id="1", name="gh", command="docker", args=("run",), created_at=CREATED)
    updated = MCPPatch(description="GitHub tools").apply(entity)
    assert updated.description == "GitHub tools"
    assert updated.command == "docker"
    assert updated.args == ("run",)
    assert updated.created_at == CREATED


def test_patch_cannot_decrease_usage_count() -> None:
    entity = MCPEntity(mcp_id="1", name="gh", usage_count=3, created_at=CREATED)
    with pytest.raises(InvalidRecordError):
        MCPPatch(usage_count=2).apply(entity)


def test_patch_from_dict_rejects_unknown_fields() -> None:
    with pytest.raises(InvalidRecordError):
        MCPPatch.from_dict({"id": "other"})


@pytest.mark.parametrize("count", ["many", None, [1]])
def test_patch_rejects_non_integer_usage_count(count) -> None:
    entity = MCPEntity(mcp_id="1", name="gh", usage_count=1, created_at=CREATED)
    with pytest.raises(InvalidRecordError):
        MCPPatch(usage_count=count).apply(entity)


def test_entity_from_dict_rejects_non_integer_usage_count() -> None:
    with pytest.raises(InvalidRecordError):
        MCPEntity.from_dict({"id": "1", "name": "gh", "usage_count": "lots"})


def test_draft_from_dict_keeps_remote_and_environment_fields() -> None:
    draft = MCPDraft.from_dict(
        {
            "name": "search",
            "type": "SSE",
            "url": " https://search.example/sse ",
            "headers": {"Authorization": "Bearer abc"},
            "env": {"REGION": "eu", "RETRIES": 3},
        }
    )
    assert draft.transport == "sse"
    assert draft.url == "https://search.example/sse"
    assert dict(draft.headers) == {"Authorization": "Bearer abc"}
    assert dict(draft.env) == {"REGION": "eu", "RETRIES": "3"}
    assert isinstance(hash(draft), int)


def test_transport_defaults_from_command_or_url() -> None:
    assert MCPDraft(name="local", command="npx").transport == "stdio"
    assert MCPDraft(name="remote", url="https://mcp.example").transport == "http"


@pytest.mark.parametrize(
    "record",
    [
        {"name": "x", "type": "websocket", "url": "wss://x"},
        {"name": "x", "type": "http"},
        {"name": "x", "env": ["A=1"]},
        {"name": "x", "headers": "Authorization: token"},
    ],
)
def test_draft_rejects_malformed_transport_fields(record) -> None:
    with pytest.raises(InvalidRecordError):
        MCPDraft.from_dict(record)


def test_draft_from_dict_rejects_unsupported_keys() -> None:
    with pytest.raises(InvalidRecordError) as excinfo:
        MCPDraft.from_dict({"name": "gh", "command": "docker", "alwaysAllow": ["read"], "tags": ["dev"]})
    assert "alwaysAllow" in str(excinfo.value)


def test_exported_record_is_accepted_as_draft() -> None:
    entity = MCPEntity(
        mcp_id="1",
        name="gh",
        command="docker",
        env={"GITHUB_TOKEN": "t"},
        usage_count=4,
        created_at=CREATED,
    )
    draft = MCPDraft.from_dict(entity.to_dict())
    assert draft == entity.to_draft()


def test_parse_timestamp_accepts_zulu_and_naive() -> None:
    assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-01T10:00:00").tzinfo == timezone.utc
    with pytest.raises(InvalidRecordError):
        parse_timestamp("yesterday")


def test_profile_dedupes_members_in_order() -> None:
    profile = Profile(profile_id="p", name="Work", member_ids=("b", "a", "b"))
    assert profile.member_ids == ("b", "a")


def test_state_validate_reports_problems() -> None:
    state = StoreState.from_records(
        [
            MCPEntity(mcp_id="1", name="Dup", created_at=CREATED),
            MCPEntity(mcp_id="2", name="dup", created_at=CREATED),
        ],
        [Profile(profile_id="p", name="P", member_ids=("1", "ghost"))],
    )
    problems = state.validate()
    assert any("duplicate MCP server name" in problem for problem in problems)
    assert any("ghost" in problem for problem in problems)


def test_state_roundtrips_through_dict() -> None:
    state = StoreState.from_records(
        [MCPEntity(mcp_id="1", name="gh", command="docker", args=("run",), created_at=CREATED)],
        [Profile(profile_id="p", name="P", member_ids=("1",), created_at=CREATED, updated_at=CREATED)],
    )
    restored = StoreState.from_dict(state.to_dict())
    assert restored == state
