# User profile collaborator for the userinfo endpoint.
# Created: 2026-10-18
#
# Profiles live in the surrounding booking system. The authorization server
# only reads them, through a UserProfileStore.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0


@dataclass
class UserProfile:
    display_name: str
    email: str | None = None
    role: str | None = None
    preferences: dict[str, Any] = field(default_factory=dict)


class UserProfileStore(Protocol):
    async def fetch_profile(self, subject: str) -> UserProfile | None: ...


DEMO_PROFILE = UserProfile(
    display_name="Demo User",
    email="demo@example.com",
    role="Business Traveler",
    preferences={"tone": "professional", "format": "concise", "travelStyle": "business"},
)


class StaticUserProfileStore:
    """Returns the same profile for every subject."""

    def __init__(self, profile: UserProfile = DEMO_PROFILE):
        self._profile = profile

    async def fetch_profile(self, subject: str) -> UserProfile | None:
        return self._profile


class HttpUserProfileStore:
    """Reads profiles from the booking API's user-profile endpoint.

    ``GET {base_url}/api/user-profiles?user_id=<subject>`` answers
    ``{"success": true, "profile": {...}, "preferences": {...}}`` or 404.
    Network and 5xx failures propagate as ``httpx.HTTPError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    async def fetch_profile(self, subject: str) -> UserProfile | None:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=httpx.Timeout(self._timeout)
        ) as client:
            resp = await client.get(
                f"{self._base_url}/api/user-profiles",
                params={"user_id": subject},
                headers={"Accept": "application/json"},
            )
            if resp.status_code == 404:
                logger.debug("No profile for subject %s", subject)
                return None
            resp.raise_for_status()
            body = resp.json()

        profile = body.get("profile") or {}
        preferences = body.get("preferences")
        return UserProfile(
            display_name=str(profile.get("display_name") or profile.get("first_name") or subject),
            email=profile.get("email"),
            role=profile.get("role"),
            preferences=preferences if isinstance(preferences, dict) else {},
        )
