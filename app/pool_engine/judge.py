"""
Challenge judge — closes out expired challenges and awards XP once.

Per challenge, in one transaction:

1. load participants
2. pick the winner (``determine_winner``)
3. conditional write ``active → completed`` with ``winner_id``
4. if there is a winner, insert the ``pending`` reward grant

If step 3 affects no row another judge run got there first; nothing is
written and no grant is created.  After commit the reward service is
called with the grant's idempotency key; a failure leaves the grant
``pending`` and never reopens the challenge.  Judging an already
completed challenge again retries a ``pending`` grant under the same key.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

from sqlalchemy import select

from app.models.pool_challenge import ChallengeStatus
from app.models.reward_grant import RewardGrant, RewardStatus
from app.pool_engine import events, store
from app.pool_engine.config import LOCK_KEY_JUDGE, SWEEP_BATCH_SIZE
from app.pool_engine.reporter import build_judge_sweep_report
from app.services.reward_service import RewardUnavailable

if TYPE_CHECKING:
    from app.models.pool_challenge import PoolParticipant

logger = logging.getLogger(__name__)


class JudgeOutcome(str, enum.Enum):
    COMPLETED = "completed"
    NOT_DUE = "not_due"
    ALREADY_COMPLETED = "already_completed"
    NOT_FOUND = "not_found"


@dataclass
class JudgeResult:
    challenge_id: uuid.UUID
    outcome: JudgeOutcome
    winner_id: uuid.UUID | None = None
    xp_reward: int | None = None
    reward_status: str | None = None

    def as_dict(self) -> dict:
        return {
            "challenge_id": str(self.challenge_id),
            "outcome": self.outcome.value,
            "winner_id": str(self.winner_id) if self.winner_id else None,
            "xp_reward": self.xp_reward,
            "reward_status": self.reward_status,
        }


def determine_winner(participants: Sequence["PoolParticipant"]) -> uuid.UUID | None:
    """
    User id of the participant with the strictly greatest ``current_value``.

    No winner when nobody made progress (maximum is zero) or when two or
    more participants share the maximum.
    """
    if not participants:
        return None

    best = max(Decimal(str(p.current_value or 0)) for p in participants)
    if best <= 0:
        return None

    leaders = [p for p in participants if Decimal(str(p.current_value or 0)) == best]
    if len(leaders) != 1:
        return None
    return leaders[0].user_id


class ChallengeJudge:
    """Judges expired pool challenges."""

    def __init__(self, session_factory=None, reward_sink=None, lock_mgr=None, publisher=None):
        self._session_factory = session_factory
        self._reward_sink = reward_sink
        self._lock_mgr = lock_mgr
        self._publisher = publisher

    @property
    def session_factory(self):
        if self._session_factory is not None:
            return self._session_factory
        from app.database import async_session
        return async_session

    @property
    def reward_sink(self):
        if self._reward_sink is not None:
            return self._reward_sink
        from app.services.reward_service import get_reward_sink
        return get_reward_sink()

    @property
    def lock_mgr(self):
        if self._lock_mgr is not None:
            return self._lock_mgr
        from app.pool_engine.sweep_lock import sweep_locks
        return sweep_locks

    @property
    def publisher(self):
        if self._publisher is not None:
            return self._publisher
        return events.event_publisher

    # ── Sweep ────────────────────────────────────────────────────────────

    async def run_sweep(self, now: datetime | None = None) -> dict:
        """
        Judge every active challenge whose end date has passed.

        Returns ``{"skipped": True}`` if another judge sweep holds the lock.
        """
        lock = await self.lock_mgr.acquire(LOCK_KEY_JUDGE)
        if lock is None:
            logger.warning("Judge sweep skipped — lock held by another process")
            return {"skipped": True}

        try:
            return await self._execute_sweep(now or datetime.now(timezone.utc))
        finally:
            await self.lock_mgr.release(lock)

    async def _execute_sweep(self, now: datetime) -> dict:
        started_at = datetime.now(timezone.utc)
        sweep_id = f"JS-{started_at:%Y%m%d-%H%M%S}"

        async with self.session_factory() as session:
            due = await store.due_challenge_ids(session, now, limit=SWEEP_BATCH_SIZE)

        results = []
        for challenge_id in due:
            result = await self.judge_challenge(challenge_id, now=now)
            results.append(result.as_dict())

        report = build_judge_sweep_report(
            sweep_id=sweep_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            results=results,
        )
        logger.info(
            "Judge sweep %s: %d of %d due challenges completed",
            sweep_id, report["challenges_completed"], report["challenges_due"],
        )
        return report

    # ── Single challenge ─────────────────────────────────────────────────

    async def judge_challenge(
        self, challenge_id: uuid.UUID, now: datetime | None = None,
    ) -> JudgeResult:
        """
        Judge one challenge if it is active and past its end date.

        Safe to call repeatedly and from concurrent sweeps; only one call
        can complete a challenge, and only that call creates a reward.
        """
        now = now or datetime.now(timezone.utc)

        async with self.session_factory() as session:
            async with session.begin():
                challenge = await store.get_challenge(session, challenge_id)
                if challenge is None:
                    return JudgeResult(challenge_id, JudgeOutcome.NOT_FOUND)
                if challenge.status == ChallengeStatus.COMPLETED:
                    grant = await store.get_reward_grant(session, challenge_id)
                    settled = JudgeResult(
                        challenge_id,
                        JudgeOutcome.ALREADY_COMPLETED,
                        winner_id=challenge.winner_id,
                        xp_reward=challenge.xp_reward,
                        reward_status=grant.status.value if grant else None,
                    )
                elif challenge.end_date > now:
                    return JudgeResult(challenge_id, JudgeOutcome.NOT_DUE)
                else:
                    settled = None

        if settled is not None:
            # The verdict is final; only a grant still pending is retried
            if grant is not None and grant.status == RewardStatus.PENDING:
                settled.reward_status = await self._issue_reward(grant.id)
            return settled

        async with self.session_factory() as session:
            async with session.begin():
                participants = await store.load_participants(session, challenge_id)
                winner_id = determine_winner(participants)

                won = await store.complete_challenge(session, challenge_id, winner_id, now)
                if not won:
                    logger.warning(
                        "Challenge %s already judged by a concurrent run; skipping",
                        challenge_id,
                    )
                    return JudgeResult(challenge_id, JudgeOutcome.ALREADY_COMPLETED)

                grant = None
                if winner_id is not None:
                    grant = RewardGrant(
                        challenge_id=challenge_id,
                        user_id=winner_id,
                        amount=challenge.xp_reward,
                        status=RewardStatus.PENDING,
                        created_at=now,
                    )
                    session.add(grant)

        participant_ids = [p.user_id for p in participants]
        if winner_id is None:
            logger.info("Challenge %s completed without a winner", challenge_id)
        else:
            logger.info(
                "Challenge %s completed; winner %s earns %d XP",
                challenge_id, winner_id, challenge.xp_reward,
            )

        reward_status = None
        if grant is not None:
            reward_status = await self._issue_reward(grant.id)

        await self.publisher.publish(
            events.CHALLENGE_COMPLETED,
            challenge_id,
            participant_ids,
            winner_id=str(winner_id) if winner_id else None,
            xp_reward=challenge.xp_reward if winner_id else 0,
        )
        return JudgeResult(
            challenge_id,
            JudgeOutcome.COMPLETED,
            winner_id=winner_id,
            xp_reward=challenge.xp_reward,
            reward_status=reward_status,
        )

    # ── Reward ───────────────────────────────────────────────────────────

    async def _issue_reward(self, grant_id: uuid.UUID) -> str:
        """
        Credit a pending grant through the reward sink and record the result.

        No transaction is held across the reward service call: the grant
        is read, the sink is called, then the attempt is recorded with a
        conditional write on ``status = pending``.  Returns the grant's
        resulting status value.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(RewardGrant).where(RewardGrant.id == grant_id)
            )
            grant = result.scalar_one()
        if grant.status == RewardStatus.CREDITED:
            return grant.status.value

        error = None
        try:
            await self.reward_sink.credit_xp(grant.user_id, grant.amount, grant.idempotency_key)
        except RewardUnavailable as exc:
            logger.warning(
                "Reward %s for challenge %s left pending: %s",
                grant.idempotency_key, grant.challenge_id, exc,
            )
            error = str(exc)[:500]

        async with self.session_factory() as session:
            async with session.begin():
                recorded = await store.record_reward_attempt(
                    session,
                    grant_id,
                    credited=error is None,
                    error=error,
                    now=datetime.now(timezone.utc),
                )
        if not recorded:
            # A concurrent attempt credited it first under the same key
            return RewardStatus.CREDITED.value
        return (RewardStatus.PENDING if error else RewardStatus.CREDITED).value


# Module-level singleton (uses default collaborators)
challenge_judge = ChallengeJudge()
