"""
Pydantic schemas for pool entries, challenges, and sweep reports.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.pool_challenge import ChallengeStatus
from app.models.pool_entry import ChallengeCategory, ChallengeType, EntryStatus, PreferredGender
from app.pool_engine.config import MAX_DURATION_DAYS, MAX_PARTICIPANTS, MIN_PARTICIPANTS


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class PoolEntryCreate(BaseModel):
    """Schema for joining the challenge pool."""
    challenge_category: ChallengeCategory = Field(..., examples=["cardio"])
    challenge_type: ChallengeType = Field(..., examples=["distance_km"])
    target_value: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, examples=[25])
    duration_days: int = Field(..., ge=1, le=MAX_DURATION_DAYS, examples=[7])
    preferred_gender: PreferredGender | None = Field(None, examples=["any"])
    min_age: int | None = Field(None, ge=13, le=120)
    max_age: int | None = Field(None, ge=13, le=120)
    allow_multiple: bool = False
    max_participants: int = Field(MIN_PARTICIPANTS, ge=MIN_PARTICIPANTS, le=MAX_PARTICIPANTS)
    latest_start_date: datetime | None = None

    @field_validator("latest_start_date")
    @classmethod
    def validate_latest_start_date(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return v
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("latest_start_date must be in the future")
        return v

    @model_validator(mode="after")
    def validate_group_and_ages(self) -> "PoolEntryCreate":
        if self.min_age is not None and self.max_age is not None and self.min_age > self.max_age:
            raise ValueError("min_age cannot be greater than max_age")
        if not self.allow_multiple and self.max_participants != MIN_PARTICIPANTS:
            raise ValueError("max_participants must be 2 unless allow_multiple is set")
        return self


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class PoolEntryResponse(BaseModel):
    """A pool entry as seen by its owner."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    challenge_category: ChallengeCategory
    challenge_type: ChallengeType
    target_value: Decimal
    duration_days: int
    preferred_gender: PreferredGender | None
    min_age: int | None
    max_age: int | None
    allow_multiple: bool
    max_participants: int
    latest_start_date: datetime
    status: EntryStatus
    created_at: datetime
    updated_at: datetime


class SubmitEntryResponse(BaseModel):
    """Result of submitting an entry: the entry plus its immediate match outcome."""
    entry: PoolEntryResponse
    outcome: str
    challenge_id: UUID | None = None
    matched_entry_ids: list[UUID] = []


class CancelEntryResponse(BaseModel):
    entry_id: UUID
    outcome: str


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    pool_entry_id: UUID | None
    current_value: Decimal
    joined_at: datetime


class PoolChallengeResponse(BaseModel):
    """A challenge with its participants."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    challenge_category: ChallengeCategory
    challenge_type: ChallengeType
    target_value: Decimal
    max_participants: int
    start_date: datetime
    end_date: datetime
    status: ChallengeStatus
    winner_id: UUID | None
    xp_reward: int
    created_at: datetime
    completed_at: datetime | None
    participants: list[ParticipantResponse]


class JudgeResponse(BaseModel):
    challenge_id: UUID
    outcome: str
    winner_id: UUID | None = None
    xp_reward: int | None = None
    reward_status: str | None = None


class SweepReport(BaseModel):
    """Summary of a manually triggered sweep; kind-specific fields pass through."""
    model_config = ConfigDict(extra="allow")

    skipped: bool = False
    sweep_id: str | None = None
    kind: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
