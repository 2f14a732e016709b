"""
Pool challenge and participant models — a formed, time-boxed competition.

A challenge and its participant rows are created together by the matching
engine and are never deleted.  The judge is the only writer of
``status`` / ``winner_id`` (active → completed, once); the external
progress feed is the only writer of ``current_value``.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    UniqueConstraint,
    Uuid,
    Enum as SAEnum,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, UTCDateTime
from app.models.pool_entry import ChallengeCategory, ChallengeType, _enum_values


class ChallengeStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


VALID_CHALLENGE_TRANSITIONS: dict[ChallengeStatus, set[ChallengeStatus]] = {
    ChallengeStatus.ACTIVE: {ChallengeStatus.COMPLETED},
    ChallengeStatus.COMPLETED: set(),
}


class PoolChallenge(Base):
    __tablename__ = "pool_challenges"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_pool_challenges_window"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    challenge_category: Mapped[ChallengeCategory] = mapped_column(
        SAEnum(ChallengeCategory, name="challengecategory", values_callable=_enum_values),
        nullable=False,
    )
    challenge_type: Mapped[ChallengeType] = mapped_column(
        SAEnum(ChallengeType, name="challengetype", values_callable=_enum_values),
        nullable=False,
    )
    target_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2), nullable=False,
    )
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    status: Mapped[ChallengeStatus] = mapped_column(
        SAEnum(ChallengeStatus, name="challengestatus", values_callable=_enum_values),
        default=ChallengeStatus.ACTIVE,
        index=True,
    )
    winner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    participants = relationship(
        "PoolParticipant",
        back_populates="challenge",
        lazy="selectin",
        order_by="PoolParticipant.joined_at",
    )

    @staticmethod
    def is_valid_transition(from_status: ChallengeStatus, to_status: ChallengeStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_CHALLENGE_TRANSITIONS.get(from_status, set())

    def __repr__(self) -> str:
        return (
            f"<PoolChallenge {self.id} "
            f"{self.start_date:%Y-%m-%d}..{self.end_date:%Y-%m-%d} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


class PoolParticipant(Base):
    __tablename__ = "pool_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_pool_participants_challenge_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    challenge_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pool_challenges.id"), nullable=False, index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    # One entry seeds at most one participant row, ever
    pool_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("pool_entries.id"), unique=True, nullable=True,
    )

    current_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2), default=Decimal("0"),
    )

    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    challenge = relationship("PoolChallenge", back_populates="participants")

    def __repr__(self) -> str:
        return (
            f"<PoolParticipant user={self.user_id} "
            f"challenge={self.challenge_id} value={self.current_value}>"
        )


@event.listens_for(PoolChallenge, "init")
def _set_challenge_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = ChallengeStatus.ACTIVE
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)


@event.listens_for(PoolParticipant, "init")
def _set_participant_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "current_value" not in kwargs:
        target.current_value = Decimal("0")
    if "joined_at" not in kwargs:
        target.joined_at = datetime.now(timezone.utc)
    if "updated_at" not in kwargs:
        target.updated_at = datetime.now(timezone.utc)
