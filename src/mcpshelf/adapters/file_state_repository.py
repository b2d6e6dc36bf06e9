"""Filesystem-backed storage for MCP servers and profiles."""

from __future__ import annotations

from pathlib import Path

from mcpshelf.domain.mcp import StoreState
from mcpshelf.ports.state_repository import StateRepository

from .json_files import read_json, write_json_atomic

STATE_VERSION = 1


class FileStateRepository(StateRepository):
    """Persists the state tree as a single JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoreState | None:
        raw = read_json(self._path)
        if raw is None:
            return None
        return StoreState.from_dict(raw)

    def save(self, state: StoreState) -> None:
        payload = {"version": STATE_VERSION, **state.to_dict()}
        write_json_atomic(self._path, payload)


__all__ = ["FileStateRepository"]
