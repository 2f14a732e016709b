"""SQLAlchemy ORM models for the pool challenge engine."""

from app.models.pool_entry import (
    ChallengeCategory,
    ChallengeType,
    EntryStatus,
    PoolEntry,
    PreferredGender,
)
from app.models.pool_challenge import ChallengeStatus, PoolChallenge, PoolParticipant
from app.models.reward_grant import RewardGrant, RewardStatus

__all__ = [
    "PoolEntry", "EntryStatus", "ChallengeCategory", "ChallengeType", "PreferredGender",
    "PoolChallenge", "ChallengeStatus", "PoolParticipant",
    "RewardGrant", "RewardStatus",
]
