"""Tests for the profile and reward collaborators (HTTP clients and mocks)."""

import json
import uuid

import httpx
import pytest

from app.services.profile_service import (
    HttpProfileProvider,
    MockProfileProvider,
    ProfileUnavailable,
)
from app.services.reward_service import HttpRewardSink, MockRewardSink, RewardUnavailable


def _transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


# ===========================================================================
# PROFILES
# ===========================================================================


class TestHttpProfileProvider:
    @pytest.mark.asyncio
    async def test_returns_profile(self):
        user_id = uuid.uuid4()
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"gender": "female", "birth_year": 1994})

        provider = HttpProfileProvider("https://profiles.test/", "k3y", transport=_transport(handler))
        profile = await provider.get_profile(user_id)

        assert profile.user_id == user_id
        assert profile.gender == "female"
        assert profile.birth_year == 1994
        assert seen["url"] == f"https://profiles.test/profiles/{user_id}"
        assert seen["auth"] == "Bearer k3y"

    @pytest.mark.asyncio
    async def test_missing_fields_are_unknown(self):
        provider = HttpProfileProvider(
            "https://profiles.test", "k",
            transport=_transport(lambda r: httpx.Response(200, json={})),
        )
        profile = await provider.get_profile(uuid.uuid4())
        assert profile.gender is None
        assert profile.birth_year is None

    @pytest.mark.asyncio
    async def test_404_means_no_profile(self):
        provider = HttpProfileProvider(
            "https://profiles.test", "k",
            transport=_transport(lambda r: httpx.Response(404)),
        )
        assert await provider.get_profile(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        provider = HttpProfileProvider(
            "https://profiles.test", "k",
            transport=_transport(lambda r: httpx.Response(503)),
        )
        with pytest.raises(ProfileUnavailable):
            await provider.get_profile(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = HttpProfileProvider("https://profiles.test", "k", transport=_transport(handler))
        with pytest.raises(ProfileUnavailable):
            await provider.get_profile(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_malformed_payload_raises(self):
        provider = HttpProfileProvider(
            "https://profiles.test", "k",
            transport=_transport(lambda r: httpx.Response(200, json={"birth_year": "nineteen"})),
        )
        with pytest.raises(ProfileUnavailable):
            await provider.get_profile(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_session_shares_one_client(self, monkeypatch):
        provider = HttpProfileProvider(
            "https://profiles.test", "k",
            transport=_transport(lambda r: httpx.Response(200, json={"gender": "male"})),
        )
        clients = []
        new_client = provider._new_client

        def counting_client():
            client = new_client()
            clients.append(client)
            return client

        monkeypatch.setattr(provider, "_new_client", counting_client)

        async with provider.session():
            async with provider.session():
                await provider.get_profile(uuid.uuid4())
            assert not clients[0].is_closed
            await provider.get_profile(uuid.uuid4())

        assert len(clients) == 1
        assert clients[0].is_closed
        assert provider._client is None

        # Outside a session every lookup gets its own client
        await provider.get_profile(uuid.uuid4())
        assert len(clients) == 2


class TestMockProfileProvider:
    @pytest.mark.asyncio
    async def test_unknown_user_has_no_profile(self):
        assert await MockProfileProvider().get_profile(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_unavailable_user_raises(self):
        provider = MockProfileProvider()
        user_id = uuid.uuid4()
        provider.set_profile(user_id, gender="male", birth_year=1980)
        provider.mark_unavailable(user_id)
        with pytest.raises(ProfileUnavailable):
            await provider.get_profile(user_id)


# ===========================================================================
# REWARDS
# ===========================================================================


class TestHttpRewardSink:
    @pytest.mark.asyncio
    async def test_posts_credit_with_idempotency_key(self):
        user_id = uuid.uuid4()
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["key"] = request.headers["Idempotency-Key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201)

        sink = HttpRewardSink("https://stats.test", "k", transport=_transport(handler))
        await sink.credit_xp(user_id, 145, "c1:u1")

        assert seen["method"] == "POST"
        assert seen["url"] == f"https://stats.test/users/{user_id}/xp"
        assert seen["key"] == "c1:u1"
        assert seen["body"]["amount"] == 145

    @pytest.mark.asyncio
    async def test_conflict_means_already_applied(self):
        sink = HttpRewardSink(
            "https://stats.test", "k", transport=_transport(lambda r: httpx.Response(409)),
        )
        await sink.credit_xp(uuid.uuid4(), 10, "k")

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        sink = HttpRewardSink(
            "https://stats.test", "k", transport=_transport(lambda r: httpx.Response(500)),
        )
        with pytest.raises(RewardUnavailable):
            await sink.credit_xp(uuid.uuid4(), 10, "k")

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        sink = HttpRewardSink("https://stats.test", "k", transport=_transport(handler))
        with pytest.raises(RewardUnavailable):
            await sink.credit_xp(uuid.uuid4(), 10, "k")


class TestMockRewardSink:
    @pytest.mark.asyncio
    async def test_repeated_key_credited_once(self):
        sink = MockRewardSink()
        user_id = uuid.uuid4()
        await sink.credit_xp(user_id, 100, "c:u")
        await sink.credit_xp(user_id, 100, "c:u")
        assert sink.totals == {user_id: 100}
        assert len(sink.calls) == 2
