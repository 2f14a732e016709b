"""create pool entry, challenge, participant and reward grant tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

challenge_category = sa.Enum("strength", "cardio", name="challengecategory")
challenge_type = sa.Enum("workouts", "sets", "minutes", "distance_km", name="challengetype")
preferred_gender = sa.Enum("any", "male", "female", name="preferredgender")
entry_status = sa.Enum("waiting", "matched", "cancelled", "expired", name="entrystatus")
challenge_status = sa.Enum("active", "completed", name="challengestatus")
reward_status = sa.Enum("pending", "credited", name="rewardstatus")


def _existing(enum: sa.Enum) -> sa.Enum:
    # Types are created once up front; columns reference them without re-creating
    return sa.Enum(*enum.enums, name=enum.name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in (
        challenge_category, challenge_type, preferred_gender,
        entry_status, challenge_status, reward_status,
    ):
        enum.create(bind, checkfirst=True)

    op.create_table(
        "pool_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("challenge_category", _existing(challenge_category), nullable=False),
        sa.Column("challenge_type", _existing(challenge_type), nullable=False),
        sa.Column("target_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("preferred_gender", _existing(preferred_gender), nullable=True),
        sa.Column("min_age", sa.Integer(), nullable=True),
        sa.Column("max_age", sa.Integer(), nullable=True),
        sa.Column("allow_multiple", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("max_participants", sa.Integer(), server_default="2", nullable=False),
        sa.Column("latest_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status", _existing(entry_status),
            server_default="waiting", nullable=False,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.CheckConstraint("target_value > 0", name="ck_pool_entries_target_positive"),
        sa.CheckConstraint("duration_days > 0", name="ck_pool_entries_duration_positive"),
        sa.CheckConstraint(
            "max_participants >= 2 AND max_participants <= 10",
            name="ck_pool_entries_max_participants",
        ),
    )
    op.create_index("ix_pool_entries_user_id", "pool_entries", ["user_id"])
    op.create_index("ix_pool_entries_status_created", "pool_entries", ["status", "created_at"])

    op.create_table(
        "pool_challenges",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("challenge_category", _existing(challenge_category), nullable=False),
        sa.Column("challenge_type", _existing(challenge_type), nullable=False),
        sa.Column("target_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status", _existing(challenge_status),
            server_default="active", nullable=False,
        ),
        sa.Column("winner_id", UUID(as_uuid=True), nullable=True),
        sa.Column("xp_reward", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("end_date > start_date", name="ck_pool_challenges_window"),
    )
    op.create_index("ix_pool_challenges_end_date", "pool_challenges", ["end_date"])
    op.create_index("ix_pool_challenges_status", "pool_challenges", ["status"])

    op.create_table(
        "pool_participants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "challenge_id", UUID(as_uuid=True),
            sa.ForeignKey("pool_challenges.id"), nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "pool_entry_id", UUID(as_uuid=True),
            sa.ForeignKey("pool_entries.id"), unique=True, nullable=True,
        ),
        sa.Column("current_value", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column(
            "joined_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.UniqueConstraint(
            "challenge_id", "user_id", name="uq_pool_participants_challenge_user",
        ),
    )
    op.create_index("ix_pool_participants_challenge_id", "pool_participants", ["challenge_id"])
    op.create_index("ix_pool_participants_user_id", "pool_participants", ["user_id"])

    op.create_table(
        "pool_reward_grants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "challenge_id", UUID(as_uuid=True),
            sa.ForeignKey("pool_challenges.id"), nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "status", _existing(reward_status),
            server_default="pending", nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.String(500), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False,
        ),
        sa.Column("credited_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "challenge_id", "user_id", name="uq_pool_reward_grants_challenge_user",
        ),
    )


def downgrade() -> None:
    op.drop_table("pool_reward_grants")
    op.drop_index("ix_pool_participants_user_id", table_name="pool_participants")
    op.drop_index("ix_pool_participants_challenge_id", table_name="pool_participants")
    op.drop_table("pool_participants")
    op.drop_index("ix_pool_challenges_status", table_name="pool_challenges")
    op.drop_index("ix_pool_challenges_end_date", table_name="pool_challenges")
    op.drop_table("pool_challenges")
    op.drop_index("ix_pool_entries_status_created", table_name="pool_entries")
    op.drop_index("ix_pool_entries_user_id", table_name="pool_entries")
    op.drop_table("pool_entries")

    bind = op.get_bind()
    for enum in (
        reward_status, challenge_status, entry_status,
        preferred_gender, challenge_type, challenge_category,
    ):
        enum.drop(bind, checkfirst=True)
