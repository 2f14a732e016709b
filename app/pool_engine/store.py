"""
Entry and challenge persistence for the pool engine.

Every status change goes through a conditional write::

    UPDATE ... SET status = :to WHERE id = :id AND status = :from

and succeeds only if exactly one row was affected.  This is the claim
primitive: two matcher invocations racing for the same entry, or two
judge sweeps racing for the same challenge, cannot both win because only
one UPDATE can observe the expected ``from`` state.

Callers own the session and the transaction boundary.  A group claim and
the challenge it creates must share one transaction so a lost race rolls
back the whole group.
"""

from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, NamedTuple, Sequence

from sqlalchemy import and_, func, or_, select, update

from app.models.pool_challenge import (
    ChallengeStatus,
    PoolChallenge,
    PoolParticipant,
)
from app.models.pool_entry import (
    ChallengeCategory,
    ChallengeType,
    EntryStatus,
    PoolEntry,
    PreferredGender,
)
from app.models.reward_grant import RewardGrant, RewardStatus
from app.pool_engine.matcher import fifo_key, xp_reward

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ClaimLost(Exception):
    """A conditional write found the row no longer in the expected state."""

    def __init__(self, entry_id: uuid.UUID):
        super().__init__(f"entry {entry_id} was claimed by another invocation")
        self.entry_id = entry_id


class TermSet(NamedTuple):
    """The competition terms two entries must share to be grouped."""

    challenge_category: ChallengeCategory
    challenge_type: ChallengeType
    target_value: Decimal
    duration_days: int

    @classmethod
    def of(cls, entry: PoolEntry) -> "TermSet":
        return cls(
            entry.challenge_category,
            entry.challenge_type,
            entry.target_value,
            entry.duration_days,
        )


class CancelOutcome(str, enum.Enum):
    CANCELLED = "cancelled"
    ALREADY_MATCHED = "already_matched"
    NOT_WAITING = "not_waiting"
    NOT_FOUND = "not_found"


# ── Conditional writes ─────────────────────────────────────────────────


def _entry_cas(entry_ids, from_status: EntryStatus, to_status: EntryStatus, now: datetime):
    """Build the ``from → to`` conditional UPDATE for one or more entries."""
    if not PoolEntry.is_valid_transition(from_status, to_status):
        raise ValueError(
            f"Invalid transition: {from_status.value} -> {to_status.value}"
        )
    if isinstance(entry_ids, uuid.UUID):
        id_clause = PoolEntry.id == entry_ids
    else:
        id_clause = PoolEntry.id.in_(list(entry_ids))
    return (
        update(PoolEntry)
        .where(id_clause, PoolEntry.status == from_status)
        .values(status=to_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def _challenge_cas(
    challenge_id: uuid.UUID,
    from_status: ChallengeStatus,
    to_status: ChallengeStatus,
    **values,
):
    if not PoolChallenge.is_valid_transition(from_status, to_status):
        raise ValueError(
            f"Invalid transition: {from_status.value} -> {to_status.value}"
        )
    return (
        update(PoolChallenge)
        .where(PoolChallenge.id == challenge_id, PoolChallenge.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )


# ── Entries ────────────────────────────────────────────────────────────


async def create_entry(
    session: "AsyncSession",
    *,
    user_id: uuid.UUID,
    challenge_category: ChallengeCategory,
    challenge_type: ChallengeType,
    target_value: Decimal,
    duration_days: int,
    latest_start_date: datetime,
    preferred_gender: PreferredGender | None = None,
    min_age: int | None = None,
    max_age: int | None = None,
    allow_multiple: bool = False,
    max_participants: int = 2,
    now: datetime,
) -> PoolEntry:
    """Persist a new ``waiting`` entry (flushed, not committed)."""
    entry = PoolEntry(
        user_id=user_id,
        challenge_category=challenge_category,
        challenge_type=challenge_type,
        target_value=Decimal(str(target_value)),
        duration_days=duration_days,
        preferred_gender=preferred_gender or PreferredGender.ANY,
        min_age=min_age,
        max_age=max_age,
        allow_multiple=allow_multiple,
        max_participants=max_participants if allow_multiple else 2,
        latest_start_date=latest_start_date,
        status=EntryStatus.WAITING,
        created_at=now,
        updated_at=now,
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_entry(session: "AsyncSession", entry_id: uuid.UUID) -> PoolEntry | None:
    result = await session.execute(select(PoolEntry).where(PoolEntry.id == entry_id))
    return result.scalar_one_or_none()


async def load_waiting_entries(
    session: "AsyncSession",
    now: datetime,
    *,
    terms_of: PoolEntry | None = None,
    terms: TermSet | None = None,
    after: PoolEntry | None = None,
    limit: int | None = None,
) -> list[PoolEntry]:
    """
    Unexpired ``waiting`` entries, oldest first.

    With *terms_of*, only entries whose competition terms equal that
    entry's are returned (the anchor itself excluded).  *terms* filters
    to one term set without excluding anyone.  *after* is a keyset
    cursor: only entries strictly later in FIFO order are returned.
    """
    stmt = select(PoolEntry).where(
        PoolEntry.status == EntryStatus.WAITING,
        PoolEntry.latest_start_date >= now,
    )
    if terms_of is not None:
        stmt = stmt.where(
            PoolEntry.id != terms_of.id,
            PoolEntry.user_id != terms_of.user_id,
        )
        terms = TermSet.of(terms_of)
    if terms is not None:
        stmt = stmt.where(
            PoolEntry.challenge_category == terms.challenge_category,
            PoolEntry.challenge_type == terms.challenge_type,
            PoolEntry.target_value == terms.target_value,
            PoolEntry.duration_days == terms.duration_days,
        )
    if after is not None:
        stmt = stmt.where(
            or_(
                PoolEntry.created_at > after.created_at,
                and_(PoolEntry.created_at == after.created_at, PoolEntry.id > after.id),
            )
        )
    stmt = stmt.order_by(PoolEntry.created_at, PoolEntry.id)
    if limit is not None:
        stmt = stmt.limit(limit)

    result = await session.execute(stmt)
    return sorted(result.scalars().all(), key=fifo_key)


async def waiting_term_sets(session: "AsyncSession", now: datetime) -> list[TermSet]:
    """Distinct term sets among unexpired waiting entries, oldest waiter first."""
    result = await session.execute(
        select(
            PoolEntry.challenge_category,
            PoolEntry.challenge_type,
            PoolEntry.target_value,
            PoolEntry.duration_days,
        )
        .where(
            PoolEntry.status == EntryStatus.WAITING,
            PoolEntry.latest_start_date >= now,
        )
        .group_by(
            PoolEntry.challenge_category,
            PoolEntry.challenge_type,
            PoolEntry.target_value,
            PoolEntry.duration_days,
        )
        .order_by(func.min(PoolEntry.created_at))
    )
    return [TermSet(*row) for row in result.all()]


async def claim_entries(
    session: "AsyncSession",
    entry_ids: Sequence[uuid.UUID],
    now: datetime,
) -> None:
    """
    Move every entry in *entry_ids* from ``waiting`` to ``matched``.

    Rows are claimed one at a time in ascending id order so concurrent
    claimers lock rows in the same order.  Raises ``ClaimLost`` on the
    first entry that is no longer waiting; the caller's transaction must
    then be rolled back.
    """
    for entry_id in sorted(entry_ids, key=str):
        result = await session.execute(
            _entry_cas(entry_id, EntryStatus.WAITING, EntryStatus.MATCHED, now)
        )
        if result.rowcount != 1:
            raise ClaimLost(entry_id)


async def cancel_entry(
    session: "AsyncSession",
    entry_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime,
) -> CancelOutcome:
    """Conditional ``waiting → cancelled``; a lost race is reported, not raised."""
    result = await session.execute(
        _entry_cas(entry_id, EntryStatus.WAITING, EntryStatus.CANCELLED, now)
        .where(PoolEntry.user_id == user_id)
    )
    if result.rowcount == 1:
        return CancelOutcome.CANCELLED

    current = await session.execute(
        select(PoolEntry.status).where(
            PoolEntry.id == entry_id, PoolEntry.user_id == user_id,
        )
    )
    status = current.scalar_one_or_none()
    if status is None:
        return CancelOutcome.NOT_FOUND
    if status == EntryStatus.MATCHED:
        return CancelOutcome.ALREADY_MATCHED
    return CancelOutcome.NOT_WAITING


async def expire_entries(
    session: "AsyncSession",
    now: datetime,
    limit: int | None = None,
) -> list[PoolEntry]:
    """
    Conditional ``waiting → expired`` for entries past their start deadline.

    Returns the entries this call actually expired.  An entry matched or
    cancelled between the select and the update is left alone.
    """
    stmt = (
        select(PoolEntry)
        .where(
            PoolEntry.status == EntryStatus.WAITING,
            PoolEntry.latest_start_date < now,
        )
        .order_by(PoolEntry.created_at, PoolEntry.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    stale = list((await session.execute(stmt)).scalars().all())

    expired: list[PoolEntry] = []
    for entry in stale:
        result = await session.execute(
            _entry_cas(entry.id, EntryStatus.WAITING, EntryStatus.EXPIRED, now)
        )
        if result.rowcount == 1:
            expired.append(entry)
    return expired


async def list_user_entries(
    session: "AsyncSession",
    user_id: uuid.UUID,
    statuses: Sequence[EntryStatus] = (EntryStatus.WAITING, EntryStatus.MATCHED),
) -> list[PoolEntry]:
    result = await session.execute(
        select(PoolEntry)
        .where(PoolEntry.user_id == user_id, PoolEntry.status.in_(list(statuses)))
        .order_by(PoolEntry.created_at.desc())
    )
    return list(result.scalars().all())


# ── Challenges ─────────────────────────────────────────────────────────


async def create_challenge(
    session: "AsyncSession",
    group: Sequence[PoolEntry],
    now: datetime,
) -> PoolChallenge:
    """
    Create one ``active`` challenge plus a zeroed participant row per entry.

    Terms come from the anchor; the group already agreed on them exactly.
    """
    anchor = group[0]
    challenge = PoolChallenge(
        challenge_category=anchor.challenge_category,
        challenge_type=anchor.challenge_type,
        target_value=anchor.target_value,
        max_participants=min(entry.capacity for entry in group),
        start_date=now,
        end_date=now + timedelta(days=anchor.duration_days),
        status=ChallengeStatus.ACTIVE,
        xp_reward=xp_reward(
            anchor.challenge_type,
            anchor.target_value,
            anchor.duration_days,
            len(group),
        ),
        created_at=now,
    )
    session.add(challenge)
    await session.flush()

    for entry in group:
        session.add(
            PoolParticipant(
                challenge_id=challenge.id,
                user_id=entry.user_id,
                pool_entry_id=entry.id,
                current_value=Decimal("0"),
                joined_at=now,
                updated_at=now,
            )
        )
    await session.flush()
    return challenge


async def get_challenge(
    session: "AsyncSession", challenge_id: uuid.UUID,
) -> PoolChallenge | None:
    result = await session.execute(
        select(PoolChallenge).where(PoolChallenge.id == challenge_id)
    )
    return result.scalar_one_or_none()


async def get_challenge_for_entry(
    session: "AsyncSession", entry_id: uuid.UUID,
) -> uuid.UUID | None:
    """Id of the challenge an entry was matched into, if any."""
    result = await session.execute(
        select(PoolParticipant.challenge_id).where(PoolParticipant.pool_entry_id == entry_id)
    )
    return result.scalar_one_or_none()


async def load_participants(
    session: "AsyncSession", challenge_id: uuid.UUID,
) -> list[PoolParticipant]:
    result = await session.execute(
        select(PoolParticipant)
        .where(PoolParticipant.challenge_id == challenge_id)
        .order_by(PoolParticipant.joined_at, PoolParticipant.id)
    )
    return list(result.scalars().all())


async def is_participant(
    session: "AsyncSession", challenge_id: uuid.UUID, user_id: uuid.UUID,
) -> bool:
    result = await session.execute(
        select(PoolParticipant.id).where(
            PoolParticipant.challenge_id == challenge_id,
            PoolParticipant.user_id == user_id,
        )
    )
    return result.first() is not None


async def due_challenge_ids(
    session: "AsyncSession",
    now: datetime,
    limit: int | None = None,
) -> list[uuid.UUID]:
    """Ids of ``active`` challenges whose ``end_date`` has passed."""
    stmt = (
        select(PoolChallenge.id)
        .where(
            PoolChallenge.status == ChallengeStatus.ACTIVE,
            PoolChallenge.end_date <= now,
        )
        .order_by(PoolChallenge.end_date, PoolChallenge.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def complete_challenge(
    session: "AsyncSession",
    challenge_id: uuid.UUID,
    winner_id: uuid.UUID | None,
    now: datetime,
) -> bool:
    """Conditional ``active → completed`` recording *winner_id*; True if this call won."""
    result = await session.execute(
        _challenge_cas(
            challenge_id,
            ChallengeStatus.ACTIVE,
            ChallengeStatus.COMPLETED,
            winner_id=winner_id,
            completed_at=now,
        )
    )
    return result.rowcount == 1


async def list_user_challenges(
    session: "AsyncSession", user_id: uuid.UUID,
) -> list[PoolChallenge]:
    result = await session.execute(
        select(PoolChallenge)
        .join(PoolParticipant, PoolParticipant.challenge_id == PoolChallenge.id)
        .where(PoolParticipant.user_id == user_id)
        .order_by(PoolChallenge.created_at.desc())
    )
    return list(result.scalars().unique().all())


# ── Reward grants ──────────────────────────────────────────────────────


async def get_reward_grant(
    session: "AsyncSession", challenge_id: uuid.UUID,
) -> RewardGrant | None:
    result = await session.execute(
        select(RewardGrant).where(RewardGrant.challenge_id == challenge_id)
    )
    return result.scalar_one_or_none()


async def record_reward_attempt(
    session: "AsyncSession",
    grant_id: uuid.UUID,
    *,
    credited: bool,
    error: str | None,
    now: datetime,
) -> bool:
    """
    Record one delivery attempt against a ``pending`` grant.

    Returns False if the grant had already left ``pending`` (another
    attempt credited it first); nothing is written in that case.
    """
    values = {"attempts": RewardGrant.attempts + 1, "last_error": error}
    if credited:
        values.update(status=RewardStatus.CREDITED, credited_at=now, last_error=None)
    result = await session.execute(
        update(RewardGrant)
        .where(RewardGrant.id == grant_id, RewardGrant.status == RewardStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
