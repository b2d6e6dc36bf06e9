from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import List, Sequence

from hypothesis import given, settings
from hypothesis import strategies as st

from mcpshelf.app.backup.manager import BackupManager
from mcpshelf.app.mcp.store import EntityStore
from mcpshelf.domain.backup import BackupSnapshot
from mcpshelf.domain.mcp import DuplicateError, MCPDraft, StoreState, resolve_unique_name
from mcpshelf.ports.backup_repository import BackupRepository
from mcpshelf.ports.state_repository import StateRepository

_names = st.sampled_from(["alpha", "Alpha", "ALPHA (1)", "beta", "Beta (2)", "gamma"])
_commands = st.sampled_from(["npx", "uvx", "docker"])


class _StateRepo(StateRepository):
    def __init__(self) -> None:
        self.saved: StoreState | None = None

    def load(self) -> StoreState | None:
        return self.saved

    def save(self, state: StoreState) -> None:
        self.saved = state.copy()


class _BackupRepo(BackupRepository):
    def __init__(self) -> None:
        self.snapshots: List[BackupSnapshot] = []

    def load(self) -> List[BackupSnapshot]:
        return list(self.snapshots)

    def save(self, snapshots: Sequence[BackupSnapshot]) -> None:
        self.snapshots = list(snapshots)


def _clock():
    ticks = itertools.count()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return lambda: start + timedelta(seconds=next(ticks))


def _store(max_backups: int = 10) -> EntityStore:
    counter = itertools.count(1)
    clock = _clock()
    backups = BackupManager(_BackupRepo(), max_backups=max_backups, clock=clock)
    store = EntityStore(_StateRepo(), backups, id_factory=lambda: f"id-{next(counter)}", clock=clock)
    store.load()
    return store


@settings(max_examples=200)
@given(
    desired=st.text(min_size=1, max_size=12),
    existing=st.sets(st.text(max_size=16), max_size=30),
)
def test_resolved_name_is_absent_from_existing(desired: str, existing: set[str]) -> None:
    lowered = {name.lower() for name in existing}
    result = resolve_unique_name(desired, lowered)
    assert result.lower() not in lowered
    assert result == desired or result.startswith(f"{desired} (")


@settings(max_examples=75, deadline=None)
@given(
    steps=st.lists(
        st.tuples(st.sampled_from(["add", "force", "rename", "duplicate"]), _names, _commands),
        min_size=1,
        max_size=25,
    )
)
def test_names_stay_unique_across_mutations(steps: list[tuple[str, str, str]]) -> None:
    store = _store()
    for action, name, command in steps:
        entities = store.list()
        if action in {"add", "force"}:
            try:
                store.add(MCPDraft(name=name, command=command), allow_duplicate=action == "force")
            except DuplicateError:
                pass
        elif entities and action == "rename":
            store.update(entities[len(entities) // 2].mcp_id, {"name": name})
        elif entities:
            store.duplicate(entities[-1].mcp_id)
        keys = [entity.name.lower() for entity in store.list()]
        assert len(keys) == len(set(keys))


@settings(max_examples=50, deadline=None)
@given(members=st.lists(st.integers(min_value=0, max_value=4), max_size=12))
def test_membership_edits_are_idempotent(members: list[int]) -> None:
    store = _store()
    ids = [store.add(MCPDraft(name=f"srv{n}", command="npx")).mcp_id for n in range(5)]
    once = store.create_profile("once")
    twice = store.create_profile("twice")
    for index in members:
        store.add_to_profile(once.profile_id, ids[index])
        store.add_to_profile(twice.profile_id, ids[index])
        store.add_to_profile(twice.profile_id, ids[index])
    assert store.members_of(once.profile_id) == store.members_of(twice.profile_id)
    for index in members[::2]:
        store.remove_from_profile(once.profile_id, ids[index])
        store.remove_from_profile(twice.profile_id, ids[index])
        store.remove_from_profile(twice.profile_id, ids[index])
    assert store.members_of(once.profile_id) == store.members_of(twice.profile_id)


@settings(max_examples=30, deadline=None)
@given(max_backups=st.integers(min_value=1, max_value=5), additions=st.integers(min_value=1, max_value=12))
def test_backup_ring_never_exceeds_bound(max_backups: int, additions: int) -> None:
    store = _store(max_backups=max_backups)
    for n in range(additions):
        store.add(MCPDraft(name=f"srv{n}", command="npx"))
        listed = store.list_backups()
        assert len(listed) <= max_backups
        assert listed[0].label == f"Added MCP: srv{n}"
