"""
Pool entry model — a user's standing request to be matched into a challenge.

Lifecycle:
- waiting → matched | cancelled | expired
- every other state is terminal

Entries are never deleted.  ``status`` is only ever changed through a
conditional write (see ``app.pool_engine.store``); ``transition_to`` is the
in-memory equivalent used when an entry object is already loaded.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    Numeric,
    Uuid,
    Enum as SAEnum,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, UTCDateTime

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class ChallengeCategory(str, enum.Enum):
    STRENGTH = "strength"
    CARDIO = "cardio"


class ChallengeType(str, enum.Enum):
    WORKOUTS = "workouts"
    SETS = "sets"
    MINUTES = "minutes"
    DISTANCE_KM = "distance_km"


class PreferredGender(str, enum.Enum):
    ANY = "any"
    MALE = "male"
    FEMALE = "female"


class EntryStatus(str, enum.Enum):
    WAITING = "waiting"
    MATCHED = "matched"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Status transition map
# ---------------------------------------------------------------------------

VALID_ENTRY_TRANSITIONS: dict[EntryStatus, set[EntryStatus]] = {
    EntryStatus.WAITING: {
        EntryStatus.MATCHED,
        EntryStatus.CANCELLED,
        EntryStatus.EXPIRED,
    },
    EntryStatus.MATCHED: set(),
    EntryStatus.CANCELLED: set(),
    EntryStatus.EXPIRED: set(),
}


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class PoolEntry(Base):
    __tablename__ = "pool_entries"
    __table_args__ = (
        CheckConstraint("target_value > 0", name="ck_pool_entries_target_positive"),
        CheckConstraint("duration_days > 0", name="ck_pool_entries_duration_positive"),
        CheckConstraint(
            "max_participants >= 2 AND max_participants <= 10",
            name="ck_pool_entries_max_participants",
        ),
        Index("ix_pool_entries_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)

    # Competition terms: must be identical for two entries to match
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
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    # Opponent preferences
    preferred_gender: Mapped[PreferredGender | None] = mapped_column(
        SAEnum(PreferredGender, name="preferredgender", values_callable=_enum_values),
        nullable=True,
    )
    min_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_age: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Group size
    allow_multiple: Mapped[bool] = mapped_column(Boolean, default=False)
    max_participants: Mapped[int] = mapped_column(Integer, default=2)

    latest_start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    status: Mapped[EntryStatus] = mapped_column(
        SAEnum(EntryStatus, name="entrystatus", values_callable=_enum_values),
        default=EntryStatus.WAITING,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        """Largest group this entry agrees to join (2 for one-on-one)."""
        if not self.allow_multiple:
            return 2
        return self.max_participants

    @property
    def gender_preference(self) -> PreferredGender:
        """``preferred_gender`` with NULL read as ANY."""
        return self.preferred_gender or PreferredGender.ANY

    # ------------------------------------------------------------------
    # Status transition validation
    # ------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(from_status: EntryStatus, to_status: EntryStatus) -> bool:
        """Check whether a status transition is allowed."""
        return to_status in VALID_ENTRY_TRANSITIONS.get(from_status, set())

    def transition_to(self, new_status: EntryStatus) -> None:
        """
        Transition to *new_status* if the move is valid.

        Raises ValueError if the transition is not allowed.
        """
        if not self.is_valid_transition(self.status, new_status):
            raise ValueError(
                f"Invalid transition: {self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        self.updated_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return (
            f"<PoolEntry {self.id} user={self.user_id} "
            f"{self.challenge_category.value if self.challenge_category else 'N/A'}/"
            f"{self.challenge_type.value if self.challenge_type else 'N/A'} "
            f"status={self.status.value if self.status else 'N/A'}>"
        )


# ---------------------------------------------------------------------------
# Auto-set Python-side defaults on construction
# ---------------------------------------------------------------------------


@event.listens_for(PoolEntry, "init")
def _set_entry_defaults(target, args, kwargs):
    if "id" not in kwargs:
        target.id = uuid.uuid4()
    if "status" not in kwargs:
        target.status = EntryStatus.WAITING
    if "allow_multiple" not in kwargs:
        target.allow_multiple = False
    if "max_participants" not in kwargs:
        target.max_participants = 2
    if "created_at" not in kwargs:
        target.created_at = datetime.now(timezone.utc)
    if "updated_at" not in kwargs:
        target.updated_at = datetime.now(timezone.utc)
