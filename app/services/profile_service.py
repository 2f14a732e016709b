"""
Profile lookup service — gender and birth year for opponent matching.

Architecture:
  - ProfileProvider (protocol) defines the interface
  - MockProfileProvider serves profiles from an in-memory map
  - HttpProfileProvider calls the profile service over HTTP
  - PROFILE_SERVICE_MOCK=true (default) selects the mock provider

The matching engine is the only consumer.  A provider returns ``None``
when the user has no profile and raises ``ProfileUnavailable`` when the
profile service cannot be reached; the engine treats both as "this
candidate is ineligible right now".
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Protocol

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Profile record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Profile:
    """The slice of a user profile the matcher needs."""
    user_id: uuid.UUID
    gender: str | None
    birth_year: int | None


class ProfileUnavailable(Exception):
    """The profile service could not answer (network error, 5xx, bad payload)."""


# ---------------------------------------------------------------------------
# Provider protocol
# ---------------------------------------------------------------------------


class ProfileProvider(Protocol):
    async def get_profile(self, user_id: uuid.UUID) -> Profile | None: ...

    def session(self) -> AsyncContextManager[None]:
        """Scope in which many lookups may share one connection."""
        ...


# ---------------------------------------------------------------------------
# Mock provider (development / testing)
# ---------------------------------------------------------------------------


class MockProfileProvider:
    """In-memory profiles.  Unknown users have no profile."""

    def __init__(self, profiles: dict[uuid.UUID, Profile] | None = None):
        self._profiles: dict[uuid.UUID, Profile] = dict(profiles or {})
        self._unavailable: set[uuid.UUID] = set()

    def set_profile(
        self,
        user_id: uuid.UUID,
        gender: str | None = None,
        birth_year: int | None = None,
    ) -> Profile:
        profile = Profile(user_id=user_id, gender=gender, birth_year=birth_year)
        self._profiles[user_id] = profile
        return profile

    def mark_unavailable(self, user_id: uuid.UUID) -> None:
        """Make lookups for *user_id* fail as if the service were down."""
        self._unavailable.add(user_id)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[None]:
        yield

    async def get_profile(self, user_id: uuid.UUID) -> Profile | None:
        if user_id in self._unavailable:
            raise ProfileUnavailable(f"profile lookup failed for {user_id}")
        return self._profiles.get(user_id)


# ---------------------------------------------------------------------------
# HTTP provider
# ---------------------------------------------------------------------------


class HttpProfileProvider:
    """
    Calls ``GET {base_url}/profiles/{user_id}`` on the profile service.

    Inside ``async with provider.session():`` every lookup reuses one
    ``httpx.AsyncClient`` (and its connection pool); outside it each
    lookup opens a short-lived client.  Sessions nest: the client is
    closed when the outermost one exits.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._depth = 0

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[None]:
        if self._client is None:
            self._client = self._new_client()
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                client, self._client = self._client, None
                await client.aclose()

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url)
        async with self._new_client() as client:
            return await client.get(url)

    async def get_profile(self, user_id: uuid.UUID) -> Profile | None:
        try:
            resp = await self._get(f"{self._base_url}/profiles/{user_id}")
        except httpx.HTTPError as exc:
            raise ProfileUnavailable(f"profile service unreachable: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise ProfileUnavailable(
                f"profile service returned {resp.status_code} for {user_id}"
            )

        try:
            body = resp.json()
            birth_year = body.get("birth_year")
            return Profile(
                user_id=user_id,
                gender=body.get("gender") or None,
                birth_year=int(birth_year) if birth_year is not None else None,
            )
        except (ValueError, TypeError, AttributeError) as exc:
            raise ProfileUnavailable(f"malformed profile payload for {user_id}") from exc


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _default_provider() -> ProfileProvider:
    if settings.PROFILE_SERVICE_MOCK:
        logger.info("Using MockProfileProvider (PROFILE_SERVICE_MOCK=true)")
        return MockProfileProvider()
    return HttpProfileProvider(
        base_url=settings.PROFILE_SERVICE_URL,
        api_key=settings.PROFILE_SERVICE_API_KEY,
        timeout=settings.PROFILE_SERVICE_TIMEOUT_SECONDS,
    )


_provider: ProfileProvider = _default_provider()


def get_profile_provider() -> ProfileProvider:
    return _provider


def set_profile_provider(provider: ProfileProvider) -> None:
    """Swap the active provider (tests, or wiring a different backend)."""
    global _provider
    _provider = provider
