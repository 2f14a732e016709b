"""
Matching engine orchestrator.

Two ways in:

* ``match_entry`` — run synchronously right after an entry is submitted.
  Snapshots the compatible waiting pool, looks up profiles, forms the
  best FIFO group around the new entry and claims it.  A lost claim race
  re-snapshots and retries (the lost entry is no longer waiting, so it
  cannot be picked again) up to ``MATCH_MAX_ATTEMPTS`` times.
* ``run_sweep`` — periodic.  Holds the match sweep lock and walks the
  whole waiting pool one term set at a time (keyset-paged, so a head of
  unmatchable entries cannot hide newer ones), claiming each group in its
  own transaction.  A lost race abandons that group only.

Profile lookups happen with no database transaction open.  The claim of
every entry in a group and the creation of its challenge share one
transaction: either the whole group is matched or nothing is.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Sequence

from app.models.pool_entry import (
    ChallengeCategory,
    ChallengeType,
    EntryStatus,
    PoolEntry,
    PreferredGender,
)
from app.pool_engine import events, store
from app.pool_engine.config import (
    DEFAULT_WINDOW_DAYS,
    LOCK_KEY_MATCH,
    MATCH_MAX_ATTEMPTS,
    PROFILE_LOOKUP_CONCURRENCY,
    SWEEP_BATCH_SIZE,
)
from app.pool_engine.matcher import form_group, plan_sweep_groups
from app.pool_engine.reporter import build_match_sweep_report
from app.services.profile_service import ProfileUnavailable

if TYPE_CHECKING:
    from app.models.pool_challenge import PoolChallenge
    from app.services.profile_service import Profile

logger = logging.getLogger(__name__)


class MatchOutcome(str, enum.Enum):
    MATCHED = "matched"
    WAITING = "waiting"
    CLOSED = "closed"        # cancelled or expired before it could match
    NOT_FOUND = "not_found"


@dataclass
class MatchResult:
    entry_id: uuid.UUID
    outcome: MatchOutcome
    challenge_id: uuid.UUID | None = None
    entry_ids: list[uuid.UUID] = field(default_factory=list)
    attempts: int = 0


class MatchingEngine:
    """Forms pool challenges from compatible waiting entries."""

    def __init__(
        self,
        session_factory=None,
        profile_provider=None,
        lock_mgr=None,
        publisher=None,
        max_attempts: int = MATCH_MAX_ATTEMPTS,
    ):
        """
        Args:
            session_factory: Async session factory for DB access
                             (defaults to ``app.database.async_session``).
            profile_provider: ProfileProvider (defaults to the active
                              provider from ``app.services.profile_service``).
            lock_mgr: SweepLockManager (defaults to module-level singleton).
            publisher: PoolEventPublisher (defaults to module-level singleton).
        """
        self._session_factory = session_factory
        self._profile_provider = profile_provider
        self._lock_mgr = lock_mgr
        self._publisher = publisher
        self.max_attempts = max_attempts

    @property
    def session_factory(self):
        if self._session_factory is not None:
            return self._session_factory
        from app.database import async_session
        return async_session

    @property
    def profile_provider(self):
        if self._profile_provider is not None:
            return self._profile_provider
        from app.services.profile_service import get_profile_provider
        return get_profile_provider()

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

    # ── Submission ───────────────────────────────────────────────────────

    async def submit_entry(
        self,
        *,
        user_id: uuid.UUID,
        challenge_category: ChallengeCategory,
        challenge_type: ChallengeType,
        target_value: Decimal,
        duration_days: int,
        latest_start_date: datetime | None = None,
        preferred_gender: PreferredGender | None = None,
        min_age: int | None = None,
        max_age: int | None = None,
        allow_multiple: bool = False,
        max_participants: int = 2,
        now: datetime | None = None,
    ) -> tuple[PoolEntry, MatchResult]:
        """
        Persist a new waiting entry, then try to match it immediately.

        The entry is committed before matching starts so concurrent
        invocations can see (and claim) it.
        """
        now = now or datetime.now(timezone.utc)
        if latest_start_date is None:
            latest_start_date = now + timedelta(days=DEFAULT_WINDOW_DAYS)

        async with self.session_factory() as session:
            async with session.begin():
                entry = await store.create_entry(
                    session,
                    user_id=user_id,
                    challenge_category=challenge_category,
                    challenge_type=challenge_type,
                    target_value=target_value,
                    duration_days=duration_days,
                    latest_start_date=latest_start_date,
                    preferred_gender=preferred_gender,
                    min_age=min_age,
                    max_age=max_age,
                    allow_multiple=allow_multiple,
                    max_participants=max_participants,
                    now=now,
                )
        logger.info("Pool entry %s submitted by %s", entry.id, user_id)

        result = await self.match_entry(entry.id, now=now)
        if result.outcome == MatchOutcome.MATCHED:
            entry.transition_to(EntryStatus.MATCHED)
        return entry, result

    # ── Triggered matching ───────────────────────────────────────────────

    async def match_entry(self, entry_id: uuid.UUID, now: datetime | None = None) -> MatchResult:
        """Try to match one entry against the current waiting pool."""
        now = now or datetime.now(timezone.utc)

        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                anchor = await store.get_entry(session, entry_id)
                if anchor is None:
                    return MatchResult(entry_id, MatchOutcome.NOT_FOUND, attempts=attempt)
                if anchor.status != EntryStatus.WAITING:
                    return await self._settled_result(session, anchor, attempt)
                candidates = await store.load_waiting_entries(session, now, terms_of=anchor)

            profiles = await self._lookup_profiles([anchor, *candidates])
            group = form_group(anchor, candidates, profiles, now)
            if not group:
                logger.info("No compatible partner for entry %s yet", entry_id)
                return MatchResult(entry_id, MatchOutcome.WAITING, attempts=attempt)

            try:
                challenge = await self._claim_group(group, now)
            except store.ClaimLost as exc:
                logger.warning(
                    "Entry %s lost claim race on %s (attempt %d/%d)",
                    entry_id, exc.entry_id, attempt, self.max_attempts,
                )
                continue

            await self._publish_match(challenge, group)
            return MatchResult(
                entry_id,
                MatchOutcome.MATCHED,
                challenge_id=challenge.id,
                entry_ids=[e.id for e in group],
                attempts=attempt,
            )

        logger.info(
            "Entry %s still waiting after %d attempts; leaving it to the sweep",
            entry_id, self.max_attempts,
        )
        return MatchResult(entry_id, MatchOutcome.WAITING, attempts=self.max_attempts)

    async def _settled_result(self, session, anchor: PoolEntry, attempt: int) -> MatchResult:
        """Result for an anchor that is no longer waiting (possibly matched by a rival run)."""
        if anchor.status == EntryStatus.MATCHED:
            challenge_id = await store.get_challenge_for_entry(session, anchor.id)
            return MatchResult(
                anchor.id, MatchOutcome.MATCHED, challenge_id=challenge_id, attempts=attempt,
            )
        return MatchResult(anchor.id, MatchOutcome.CLOSED, attempts=attempt)

    # ── Sweep ────────────────────────────────────────────────────────────

    async def run_sweep(self, now: datetime | None = None) -> dict:
        """
        Match the whole waiting pool.

        Acquires the match sweep lock to prevent overlapping sweeps.
        Returns ``{"skipped": True}`` if the lock is already held.
        """
        lock = await self.lock_mgr.acquire(LOCK_KEY_MATCH)
        if lock is None:
            logger.warning("Match sweep skipped — lock held by another process")
            return {"skipped": True}

        try:
            return await self._execute_sweep(now or datetime.now(timezone.utc))
        finally:
            await self.lock_mgr.release(lock)

    async def _execute_sweep(self, now: datetime) -> dict:
        started_at = datetime.now(timezone.utc)
        sweep_id = f"MS-{started_at:%Y%m%d-%H%M%S}"

        async with self.session_factory() as session:
            term_sets = await store.waiting_term_sets(session, now)

        pool_size = 0
        formed: list[dict] = []
        lost: list[dict] = []
        for terms in term_sets:
            entries = await self._load_term_set(terms, now)
            pool_size += len(entries)

            profiles = await self._lookup_profiles(entries)
            for group in plan_sweep_groups(entries, profiles, now):
                try:
                    challenge = await self._claim_group(group, now)
                except store.ClaimLost as exc:
                    logger.warning(
                        "Sweep %s abandoned group of %d: entry %s already claimed",
                        sweep_id, len(group), exc.entry_id,
                    )
                    lost.append({
                        "entry_ids": [str(e.id) for e in group],
                        "claimed_entry_id": str(exc.entry_id),
                    })
                    continue

                await self._publish_match(challenge, group)
                formed.append({
                    "challenge_id": str(challenge.id),
                    "entry_ids": [str(e.id) for e in group],
                })

        report = build_match_sweep_report(
            sweep_id=sweep_id,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            pool_size=pool_size,
            challenges=formed,
            lost_races=lost,
        )
        logger.info(
            "Match sweep %s: %d challenges from %d waiting entries in %d term sets",
            sweep_id, report["challenges_created"], report["pool_size"], len(term_sets),
        )
        return report

    async def _load_term_set(self, terms: "store.TermSet", now: datetime) -> list[PoolEntry]:
        """Every waiting entry with *terms*, read in keyset-paged batches."""
        entries: list[PoolEntry] = []
        cursor = None
        async with self.session_factory() as session:
            while True:
                page = await store.load_waiting_entries(
                    session, now, terms=terms, after=cursor, limit=SWEEP_BATCH_SIZE,
                )
                entries.extend(page)
                if len(page) < SWEEP_BATCH_SIZE:
                    return entries
                cursor = page[-1]

    # ── Claim + create ───────────────────────────────────────────────────

    async def _claim_group(self, group: Sequence[PoolEntry], now: datetime) -> "PoolChallenge":
        """
        Claim every entry in *group* and create the challenge, atomically.

        Raises ``store.ClaimLost`` after rolling back if any entry had
        already left ``waiting``.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await store.claim_entries(session, [e.id for e in group], now)
                challenge = await store.create_challenge(session, group, now)

        logger.info(
            "Challenge %s formed with %d participants (%s/%s, target=%s, %d days)",
            challenge.id,
            len(group),
            challenge.challenge_category.value,
            challenge.challenge_type.value,
            challenge.target_value,
            group[0].duration_days,
        )
        return challenge

    # ── Profiles ─────────────────────────────────────────────────────────

    async def _lookup_profiles(
        self, entries: Iterable[PoolEntry],
    ) -> dict[uuid.UUID, "Profile | None"]:
        """
        Fetch the profile of every distinct user in *entries*.

        At most ``PROFILE_LOOKUP_CONCURRENCY`` lookups are in flight, all
        over one provider session.  A failed lookup maps the user to
        ``None`` (ineligible) instead of failing the whole invocation.
        """
        user_ids = list(dict.fromkeys(e.user_id for e in entries))
        if not user_ids:
            return {}

        provider = self.profile_provider
        limit = asyncio.Semaphore(PROFILE_LOOKUP_CONCURRENCY)

        async def bounded(user_id: uuid.UUID) -> "Profile | None":
            async with limit:
                return await self._safe_profile(provider, user_id)

        async with provider.session():
            profiles = await asyncio.gather(*(bounded(uid) for uid in user_ids))
        return dict(zip(user_ids, profiles))

    async def _safe_profile(self, provider, user_id: uuid.UUID) -> "Profile | None":
        try:
            profile = await provider.get_profile(user_id)
        except ProfileUnavailable as exc:
            logger.warning("Profile lookup failed for %s: %s", user_id, exc)
            return None
        if profile is None:
            logger.info("User %s has no profile; not eligible for matching", user_id)
        return profile

    # ── Events ───────────────────────────────────────────────────────────

    async def _publish_match(self, challenge: "PoolChallenge", group: Sequence[PoolEntry]) -> None:
        user_ids = [e.user_id for e in group]
        await self.publisher.publish(
            events.CHALLENGE_CREATED,
            challenge.id,
            user_ids,
            end_date=challenge.end_date.isoformat(),
            xp_reward=challenge.xp_reward,
        )
        for entry in group:
            await self.publisher.publish(
                events.ENTRY_MATCHED,
                entry.id,
                [entry.user_id],
                challenge_id=str(challenge.id),
            )

    # ── Cancellation ─────────────────────────────────────────────────────

    async def cancel_entry(
        self,
        entry_id: uuid.UUID,
        user_id: uuid.UUID,
        now: datetime | None = None,
    ) -> store.CancelOutcome:
        """Cancel a waiting entry; dropped if a matcher claimed it first."""
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            async with session.begin():
                outcome = await store.cancel_entry(session, entry_id, user_id, now)

        if outcome == store.CancelOutcome.CANCELLED:
            logger.info("Pool entry %s cancelled by %s", entry_id, user_id)
            await self.publisher.publish(events.ENTRY_CANCELLED, entry_id, [user_id])
        else:
            logger.info("Cancel of entry %s dropped: %s", entry_id, outcome.value)
        return outcome


# Module-level singleton (uses default collaborators)
matching_engine = MatchingEngine()
