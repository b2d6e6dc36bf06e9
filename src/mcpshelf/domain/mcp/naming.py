"""Deterministic unique-name generation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AbstractSet, Callable

# Hard ceiling on suffix probing. A consistent finite name set of size n is
# always resolved within n + 1 attempts, so this only trips on corrupted input.
MAX_SUFFIX_ATTEMPTS = 10_000


def name_key(name: str) -> str:
    """Comparison key shared by every name-uniqueness check."""

    return name.strip().lower()


def resolve_unique_name(
    desired: str,
    existing: AbstractSet[str],
    *,
    clock: Callable[[], datetime] | None = None,
    max_attempts: int = MAX_SUFFIX_ATTEMPTS,
) -> str:
    """Return ``desired`` or the first ``"desired (k)"`` absent from ``existing``.

    ``existing`` holds lower-cased names. Each candidate is lower-cased and
    checked in the same iteration it is generated, with ``k`` increasing from
    one. Past ``max_attempts`` the name falls back to a millisecond timestamp
    suffix so the call always returns.
    """

    if desired.lower() not in existing:
        return desired
    for counter in range(1, max_attempts + 1):
        candidate = f"{desired} ({counter})"
        if candidate.lower() not in existing:
            return candidate
    now = (clock or (lambda: datetime.now(timezone.utc)))()
    return f"{desired} ({int(now.timestamp() * 1000)})"


__all__ = ["MAX_SUFFIX_ATTEMPTS", "name_key", "resolve_unique_name"]
