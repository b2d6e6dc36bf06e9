"""Port definition for persisting the store state tree."""

from __future__ import annotations

from abc import ABC, abstractmethod

from mcpshelf.domain.mcp import StoreState


class StateRepository(ABC):
    """Abstraction over durable storage for MCP servers and profiles."""

    @abstractmethod
    def load(self) -> StoreState | None:
        """Return the stored state, or ``None`` when nothing was saved yet."""

    @abstractmethod
    def save(self, state: StoreState) -> None:
        """Persist the full state; raise on failure."""


__all__ = ["StateRepository"]
