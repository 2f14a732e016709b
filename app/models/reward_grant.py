"""
Reward grant model — outbox row for the XP a judged challenge awards.

Inserted in the same transaction that flips a challenge to ``completed``,
so a challenge with a winner always has exactly one grant.  The
``(challenge_id, user_id)`` unique key doubles as the idempotency key sent
to the reward service; a grant left ``pending`` is what a reconciliation
pass picks up.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    Enum as SAEnum,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, UTCDateTime
from app.models.pool_entry import _enum_values


class RewardStatus(str, enum.Enum):
    PENDING = "pending"
    CREDITED = "credited"


class RewardGrant(Base):
    __tablename__ = "pool_reward_grants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_pool_reward_grants_challenge_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pool_challenges.id"), nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[RewardStatus] = mapped_column(
        SAEnum(RewardStatus, name="rewardstatus", values_callable=_enum_values),
        default=RewardStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc),
    )
    credited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def idempotency_key(self) -> str:
        return f"{self.challenge_id}:{self.user_id}"

    def __repr__(self) -> str:
        return (
            f"<RewardGrant challenge={self.challenge_id} user={self.user_id} "
            f"{self.amount}xp status={self.status.value if self.status else 'N/A'}>"
        )


@event.listens_for(RewardGrant, "init")
def _set_grant_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = RewardStatus.PENDING
    if "attempts" not in kwargs:
        target.attempts = 0
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
