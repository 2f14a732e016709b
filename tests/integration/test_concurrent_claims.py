"""
Concurrency tests against real PostgreSQL.

Many matcher, judge and cancel invocations run at once on the same
rows; the conditional writes must still leave every entry in at most
one challenge and every challenge judged exactly once.
"""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select, update

from app.models.pool_challenge import PoolChallenge, PoolParticipant
from app.models.pool_entry import ChallengeCategory, ChallengeType, EntryStatus, PoolEntry
from app.models.reward_grant import RewardGrant
from app.pool_engine import store
from app.pool_engine.engine import MatchingEngine, MatchOutcome
from app.pool_engine.judge import ChallengeJudge, JudgeOutcome
from app.services.profile_service import MockProfileProvider
from app.services.reward_service import MockRewardSink

TERMS = {
    "challenge_category": ChallengeCategory.STRENGTH,
    "challenge_type": ChallengeType.SETS,
    "target_value": Decimal("100"),
    "duration_days": 10,
}


@pytest.fixture
def profiles():
    return MockProfileProvider()


@pytest.fixture
def engine(pg_session_factory, profiles, free_locks):
    return MatchingEngine(
        session_factory=pg_session_factory,
        profile_provider=profiles,
        lock_mgr=free_locks,
        publisher=AsyncMock(),
    )


async def _submit(engine, profiles, **extra):
    user_id = uuid.uuid4()
    profiles.set_profile(user_id, gender="female", birth_year=1990)
    return await engine.submit_entry(user_id=user_id, **TERMS, **extra)


class TestConcurrentMatching:
    @pytest.mark.asyncio
    async def test_no_entry_matched_twice(self, engine, profiles, pg_session_factory):
        results = await asyncio.gather(*(_submit(engine, profiles) for _ in range(20)))

        async with pg_session_factory() as session:
            seeded = (await session.execute(select(PoolParticipant.pool_entry_id))).scalars().all()
            matched = (await session.execute(
                select(PoolEntry.id).where(PoolEntry.status == EntryStatus.MATCHED)
            )).scalars().all()
            challenges = (await session.execute(select(PoolChallenge))).scalars().all()

        assert len(seeded) == len(set(seeded))
        assert set(seeded) == set(matched)
        assert all(len(c.participants) == 2 for c in challenges)
        reported = {r.challenge_id for _, r in results if r.outcome == MatchOutcome.MATCHED}
        assert reported == {c.id for c in challenges}

    @pytest.mark.asyncio
    async def test_sweep_and_triggered_matches_overlap(self, engine, profiles, pg_session_factory):
        for _ in range(6):
            user_id = uuid.uuid4()
            await engine.submit_entry(user_id=user_id, **TERMS)  # no profile yet → waits
            profiles.set_profile(user_id, gender="male", birth_year=1985)

        await asyncio.gather(
            engine.run_sweep(),
            engine.run_sweep(),
            *(_submit(engine, profiles) for _ in range(4)),
        )

        async with pg_session_factory() as session:
            seeded = (await session.execute(select(PoolParticipant.pool_entry_id))).scalars().all()
        assert len(seeded) == len(set(seeded))
        async with pg_session_factory() as session:
            for entry_id in seeded:
                assert (await store.get_entry(session, entry_id)).status == EntryStatus.MATCHED

    @pytest.mark.asyncio
    async def test_cancel_races_match(self, engine, profiles, pg_session_factory):
        entry, _ = await _submit(engine, profiles)

        cancel_outcome, (_, match) = await asyncio.gather(
            engine.cancel_entry(entry.id, entry.user_id),
            _submit(engine, profiles),
        )

        async with pg_session_factory() as session:
            final = (await store.get_entry(session, entry.id)).status
        if cancel_outcome == store.CancelOutcome.CANCELLED:
            assert final == EntryStatus.CANCELLED
            assert match.outcome == MatchOutcome.WAITING
        else:
            assert cancel_outcome == store.CancelOutcome.ALREADY_MATCHED
            assert final == EntryStatus.MATCHED
            assert match.outcome == MatchOutcome.MATCHED


class TestConcurrentJudging:
    @pytest.mark.asyncio
    async def test_challenge_judged_once(self, engine, profiles, pg_session_factory, free_locks):
        first, _ = await _submit(engine, profiles)
        _, result = await _submit(engine, profiles)

        async with pg_session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(PoolParticipant)
                    .where(PoolParticipant.pool_entry_id == first.id)
                    .values(current_value=Decimal("40"))
                )

        sink = MockRewardSink()
        judge = ChallengeJudge(
            session_factory=pg_session_factory,
            reward_sink=sink,
            lock_mgr=free_locks,
            publisher=AsyncMock(),
        )
        after_end = first.created_at + timedelta(days=11)
        outcomes = await asyncio.gather(
            *(judge.judge_challenge(result.challenge_id, now=after_end) for _ in range(8))
        )

        completed = [o for o in outcomes if o.outcome == JudgeOutcome.COMPLETED]
        assert len(completed) == 1
        assert completed[0].winner_id == first.user_id
        assert len(sink.calls) == 1
        assert sink.totals == {first.user_id: completed[0].xp_reward}

        async with pg_session_factory() as session:
            grants = (await session.execute(select(RewardGrant))).scalars().all()
        assert len(grants) == 1
