from __future__ import annotations

from datetime import datetime, timezone

from mcpshelf.domain.mcp import DuplicateStatus, MCPDraft, MCPEntity, classify

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_entity(mcp_id: str, name: str, command: str = "npx", args: tuple[str, ...] = ("-y", "server")) -> MCPEntity:
    return MCPEntity(mcp_id=mcp_id, name=name, command=command, args=args, created_at=CREATED)


def test_new_candidate() -> None:
    check = classify(MCPDraft(name="fresh", command="uvx"), [make_entity("1", "existing")])
    assert check.status is DuplicateStatus.NEW
    assert check.match is None
    assert check.suggested_name is None
    assert not check.name_clash


def test_exact_duplicate_ignores_case_and_whitespace() -> None:
    existing = make_entity("1", "Filesystem", command="npx", args=("-y", "Server"))
    candidate = MCPDraft(name=" filesystem ", command=" NPX ", args=("-Y", " server "))
    check = classify(candidate, [existing])
    assert check.status is DuplicateStatus.EXACT_DUPLICATE
    assert check.match == existing
    assert check.suggested_name is None


def test_forced_exact_duplicate_gets_suggestion() -> None:
    existing = [make_entity("1", "Test MCP"), make_entity("2", "Test MCP (1)")]
    check = classify(MCPDraft(name="Test MCP", command="npx", args=("-y", "server")), existing, force=True)
    assert check.status is DuplicateStatus.EXACT_DUPLICATE
    assert check.suggested_name == "Test MCP (2)"


def test_similar_name_with_different_command() -> None:
    existing = make_entity("1", "github", command="docker", args=("run", "github-mcp"))
    check = classify(MCPDraft(name="GitHub", command="npx", args=("@github/mcp",)), [existing])
    assert check.status is DuplicateStatus.SIMILAR_NAME
    assert check.match == existing
    assert check.suggested_name == "GitHub (1)"
    assert check.to_dict()["status"] == "similar_name"


def test_args_order_matters() -> None:
    existing = make_entity("1", "srv", args=("a", "b"))
    check = classify(MCPDraft(name="srv", command="npx", args=("b", "a")), [existing])
    assert check.status is DuplicateStatus.SIMILAR_NAME


def test_exact_match_preferred_over_earlier_similar() -> None:
    similar = make_entity("1", "Other", command="docker")
    exact = make_entity("2", "other")
    candidate = MCPDraft(name="Other", command="npx", args=("-y", "server"))
    check = classify(candidate, [similar, exact])
    assert check.status is DuplicateStatus.EXACT_DUPLICATE
    assert check.match == exact


def test_remote_servers_compare_by_url() -> None:
    existing = MCPEntity(mcp_id="1", name="docs", url="https://a.example/mcp", created_at=CREATED)
    same = classify(MCPDraft(name="Docs", url="HTTPS://A.EXAMPLE/MCP/"), [existing])
    other = classify(MCPDraft(name="docs", url="https://b.example/mcp"), [existing])
    assert same.status is DuplicateStatus.EXACT_DUPLICATE
    assert other.status is DuplicateStatus.SIMILAR_NAME
    assert other.suggested_name == "docs (1)"
