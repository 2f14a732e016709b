"""
Pool endpoints — join the challenge pool, inspect entries and challenges.

Submit flow:
  1. Validate the entry terms and preferences
  2. Persist the entry (WAITING)
  3. Run the matcher synchronously against the waiting pool
  4. Return the entry and, if matched, the new challenge id

Admin endpoints run the periodic sweeps on demand.
"""

import logging
import uuid
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_challenge_judge,
    get_current_user_id,
    get_expiry_runner,
    get_matching_engine,
    require_admin,
)
from app.database import get_db
from app.pool_engine import store
from app.pool_engine.engine import MatchingEngine
from app.pool_engine.judge import ChallengeJudge, JudgeOutcome
from app.schemas.pool import (
    CancelEntryResponse,
    JudgeResponse,
    PoolChallengeResponse,
    PoolEntryCreate,
    PoolEntryResponse,
    SubmitEntryResponse,
    SweepReport,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@router.post("/entries", response_model=SubmitEntryResponse, status_code=status.HTTP_201_CREATED)
async def submit_entry(
    payload: PoolEntryCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Join the pool and try to match immediately."""
    entry, result = await engine.submit_entry(
        user_id=user_id,
        challenge_category=payload.challenge_category,
        challenge_type=payload.challenge_type,
        target_value=payload.target_value,
        duration_days=payload.duration_days,
        latest_start_date=payload.latest_start_date,
        preferred_gender=payload.preferred_gender,
        min_age=payload.min_age,
        max_age=payload.max_age,
        allow_multiple=payload.allow_multiple,
        max_participants=payload.max_participants,
    )
    return SubmitEntryResponse(
        entry=PoolEntryResponse.model_validate(entry),
        outcome=result.outcome.value,
        challenge_id=result.challenge_id,
        matched_entry_ids=result.entry_ids,
    )


@router.get("/entries", response_model=list[PoolEntryResponse])
async def list_entries(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's waiting and matched entries, newest first."""
    entries = await store.list_user_entries(db, user_id)
    return [PoolEntryResponse.model_validate(e) for e in entries]


@router.get("/entries/{entry_id}", response_model=PoolEntryResponse)
async def get_entry(
    entry_id: UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    entry = await store.get_entry(db, entry_id)
    if entry is None or entry.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Entry not found")
    return PoolEntryResponse.model_validate(entry)


@router.post("/entries/{entry_id}/cancel", response_model=CancelEntryResponse)
async def cancel_entry(
    entry_id: UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """
    Leave the pool.

    Only a waiting entry can be cancelled; an entry a matcher claimed
    first stays matched and the request gets 409.
    """
    outcome = await engine.cancel_entry(entry_id, user_id)

    if outcome == store.CancelOutcome.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Entry not found")
    if outcome == store.CancelOutcome.ALREADY_MATCHED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Entry has already been matched into a challenge",
        )
    if outcome == store.CancelOutcome.NOT_WAITING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Entry is no longer waiting",
        )
    return CancelEntryResponse(entry_id=entry_id, outcome=outcome.value)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


@router.get("/challenges", response_model=list[PoolChallengeResponse])
async def list_challenges(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    challenges = await store.list_user_challenges(db, user_id)
    return [PoolChallengeResponse.model_validate(c) for c in challenges]


@router.get("/challenges/{challenge_id}", response_model=PoolChallengeResponse)
async def get_challenge(
    challenge_id: UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    challenge = await store.get_challenge(db, challenge_id)
    if challenge is None or user_id not in {p.user_id for p in challenge.participants}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found")
    return PoolChallengeResponse.model_validate(challenge)


@router.post("/challenges/{challenge_id}/judge", response_model=JudgeResponse)
async def judge_challenge(
    challenge_id: UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    judge: ChallengeJudge = Depends(get_challenge_judge),
):
    """
    Ask for a challenge to be judged now instead of at the next sweep.

    Only participants may nudge a challenge; anyone else gets 404, as for
    ``GET /challenges/{id}``.  A challenge that has not ended yet is
    reported as ``not_due``.
    """
    if not await store.is_participant(db, challenge_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found")

    result = await judge.judge_challenge(challenge_id)
    if result.outcome == JudgeOutcome.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found")
    return JudgeResponse(**result.as_dict())


# ---------------------------------------------------------------------------
# Admin sweeps
# ---------------------------------------------------------------------------


@router.post("/admin/sweeps/match", response_model=SweepReport)
async def trigger_match_sweep(
    _admin: dict = Depends(require_admin),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Run a match sweep immediately instead of waiting for the schedule."""
    return SweepReport(**await engine.run_sweep())


@router.post("/admin/sweeps/judge", response_model=SweepReport)
async def trigger_judge_sweep(
    _admin: dict = Depends(require_admin),
    judge: ChallengeJudge = Depends(get_challenge_judge),
):
    return SweepReport(**await judge.run_sweep())


@router.post("/admin/sweeps/expire", response_model=SweepReport)
async def trigger_expiry_sweep(
    _admin: dict = Depends(require_admin),
    run_expiry=Depends(get_expiry_runner),
):
    return SweepReport(**await run_expiry())
