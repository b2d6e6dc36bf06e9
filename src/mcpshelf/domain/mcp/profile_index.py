"""Many-to-many membership between profiles and MCP servers."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Set

from .errors import NotFoundError, ProfileNotFoundError
from .value_objects import MCPEntity, Profile, utc_now


class ProfileIndex:
    """Keeps ``Profile.member_ids`` consistent with the entity map.

    Membership lives only on the profile records; ``members_of`` and
    ``profiles_of`` are computed from them on every call.
    """

    def __init__(
        self,
        profiles: Dict[str, Profile],
        entities: Dict[str, MCPEntity],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._profiles = profiles
        self._entities = entities
        self._clock = clock

    def add_member(self, profile_id: str, mcp_id: str) -> bool:
        profile = self._require(profile_id)
        if mcp_id not in self._entities:
            raise NotFoundError(mcp_id)
        if mcp_id in profile.member_ids:
            return False
        self._profiles[profile_id] = replace(
            profile,
            member_ids=profile.member_ids + (mcp_id,),
            updated_at=self._clock(),
        )
        return True

    def remove_member(self, profile_id: str, mcp_id: str) -> bool:
        profile = self._require(profile_id)
        if mcp_id not in profile.member_ids:
            return False
        self._profiles[profile_id] = replace(
            profile,
            member_ids=tuple(member for member in profile.member_ids if member != mcp_id),
            updated_at=self._clock(),
        )
        return True

    def set_members(self, profile_id: str, mcp_ids: List[str]) -> None:
        profile = self._require(profile_id)
        missing = [mcp_id for mcp_id in mcp_ids if mcp_id not in self._entities]
        if missing:
            raise NotFoundError(missing[0])
        self._profiles[profile_id] = replace(profile, member_ids=tuple(mcp_ids), updated_at=self._clock())

    def on_entity_removed(self, mcp_id: str) -> List[str]:
        affected = [profile_id for profile_id, profile in self._profiles.items() if mcp_id in profile.member_ids]
        for profile_id in affected:
            self.remove_member(profile_id, mcp_id)
        return affected

    def on_profile_removed(self, profile_id: str) -> Profile:
        self._require(profile_id)
        return self._profiles.pop(profile_id)

    def members_of(self, profile_id: str) -> List[str]:
        return list(self._require(profile_id).member_ids)

    def profiles_of(self, mcp_id: str) -> Set[str]:
        return {profile_id for profile_id, profile in self._profiles.items() if mcp_id in profile.member_ids}

    def _require(self, profile_id: str) -> Profile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile


__all__ = ["ProfileIndex"]
