"""Duplicate classification for incoming MCP servers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple

from .naming import name_key, resolve_unique_name
from .value_objects import MCPDraft, MCPEntity

_ARG_SEPARATOR = "\x1f"


class DuplicateStatus(str, Enum):
    NEW = "new"
    EXACT_DUPLICATE = "exact_duplicate"
    SIMILAR_NAME = "similar_name"


@dataclass(frozen=True)
class DuplicateCheck:
    status: DuplicateStatus
    match: MCPEntity | None = None
    suggested_name: str | None = None

    @property
    def name_clash(self) -> bool:
        return self.status is not DuplicateStatus.NEW

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"status": self.status.value}
        if self.match is not None:
            payload["match"] = {"id": self.match.mcp_id, "name": self.match.name}
        if self.suggested_name is not None:
            payload["suggested_name"] = self.suggested_name
        return payload


ComparisonKey = Tuple[str, str, str, str, str]


def comparison_key(item: MCPDraft | MCPEntity) -> ComparisonKey:
    args = _ARG_SEPARATOR.join(arg.strip().lower() for arg in item.args)
    url = (item.url or "").rstrip("/").lower()
    return (name_key(item.name), item.transport or "stdio", item.command.strip().lower(), args, url)


def classify(
    candidate: MCPDraft | MCPEntity,
    existing: Iterable[MCPEntity],
    *,
    force: bool = False,
) -> DuplicateCheck:
    """Classify ``candidate`` against ``existing`` without touching either.

    ``force`` asks for a suggested name even on an exact duplicate, for callers
    inserting the candidate regardless.
    """

    entities = list(existing)
    key = comparison_key(candidate)
    similar: MCPEntity | None = None
    for entity in entities:
        other = comparison_key(entity)
        if other == key:
            suggestion = _suggest(candidate, entities) if force else None
            return DuplicateCheck(DuplicateStatus.EXACT_DUPLICATE, entity, suggestion)
        if similar is None and other[0] == key[0]:
            similar = entity
    if similar is not None:
        return DuplicateCheck(DuplicateStatus.SIMILAR_NAME, similar, _suggest(candidate, entities))
    return DuplicateCheck(DuplicateStatus.NEW)


def _suggest(candidate: MCPDraft | MCPEntity, entities: Iterable[MCPEntity]) -> str:
    return resolve_unique_name(candidate.name, {entity.name.lower() for entity in entities})


__all__ = ["DuplicateCheck", "DuplicateStatus", "classify", "comparison_key"]
