"""
Reward service — credits challenge XP to a user's aggregate stats.

Architecture:
  - RewardSink (protocol) defines the interface
  - MockRewardSink keeps credits in memory (development / testing)
  - HttpRewardSink posts credits to the stats service
  - REWARD_SERVICE_MOCK=true (default) selects the mock sink

Every credit carries an idempotency key ``"{challenge_id}:{user_id}"``.
Sinks must treat a repeated key as already applied, so a retried judge
pass can never double-credit.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class RewardUnavailable(Exception):
    """The reward service could not apply the credit."""


class RewardSink(Protocol):
    async def credit_xp(self, user_id: uuid.UUID, amount: int, idempotency_key: str) -> None: ...


# ---------------------------------------------------------------------------
# Mock sink
# ---------------------------------------------------------------------------


class MockRewardSink:
    """Records credits per user; repeated idempotency keys are ignored."""

    def __init__(self):
        self.totals: dict[uuid.UUID, int] = {}
        self.applied_keys: set[str] = set()
        self.calls: list[tuple[uuid.UUID, int, str]] = []
        self.fail = False

    async def credit_xp(self, user_id: uuid.UUID, amount: int, idempotency_key: str) -> None:
        self.calls.append((user_id, amount, idempotency_key))
        if self.fail:
            raise RewardUnavailable("reward service unavailable")
        if idempotency_key in self.applied_keys:
            logger.info("Duplicate reward credit ignored: %s", idempotency_key)
            return
        self.applied_keys.add(idempotency_key)
        self.totals[user_id] = self.totals.get(user_id, 0) + amount


# ---------------------------------------------------------------------------
# HTTP sink
# ---------------------------------------------------------------------------


class HttpRewardSink:
    """Calls ``POST {base_url}/users/{user_id}/xp`` on the stats service."""

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

    async def credit_xp(self, user_id: uuid.UUID, amount: int, idempotency_key: str) -> None:
        url = f"{self._base_url}/users/{user_id}/xp"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Idempotency-Key": idempotency_key,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                resp = await client.post(
                    url, headers=headers, json={"amount": amount, "source": "pool_challenge"},
                )
        except httpx.HTTPError as exc:
            raise RewardUnavailable(f"reward service unreachable: {exc}") from exc

        # 409 = key already applied on the other side
        if resp.status_code in (200, 201, 204, 409):
            return
        raise RewardUnavailable(
            f"reward service returned {resp.status_code} for {idempotency_key}"
        )


# ---------------------------------------------------------------------------
# Sink selection
# ---------------------------------------------------------------------------


def _default_sink() -> RewardSink:
    if settings.REWARD_SERVICE_MOCK:
        logger.info("Using MockRewardSink (REWARD_SERVICE_MOCK=true)")
        return MockRewardSink()
    return HttpRewardSink(
        base_url=settings.REWARD_SERVICE_URL,
        api_key=settings.REWARD_SERVICE_API_KEY,
        timeout=settings.REWARD_SERVICE_TIMEOUT_SECONDS,
    )


_sink: RewardSink = _default_sink()


def get_reward_sink() -> RewardSink:
    return _sink


def set_reward_sink(sink: RewardSink) -> None:
    """Swap the active sink (tests, or wiring a different backend)."""
    global _sink
    _sink = sink
