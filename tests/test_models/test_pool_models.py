"""Tests for the pool models — defaults, derived fields and status transitions."""

import uuid
from decimal import Decimal

import pytest

from app.models.pool_challenge import (
    VALID_CHALLENGE_TRANSITIONS,
    ChallengeStatus,
    PoolChallenge,
)
from app.models.pool_entry import (
    VALID_ENTRY_TRANSITIONS,
    EntryStatus,
    PoolEntry,
    PreferredGender,
)
from app.models.reward_grant import RewardGrant, RewardStatus


# ---------------------------------------------------------------------------
# PoolEntry
# ---------------------------------------------------------------------------


class TestPoolEntry:
    def test_defaults(self):
        entry = PoolEntry(user_id=uuid.uuid4(), target_value=Decimal("10"), duration_days=5)
        assert entry.id is not None
        assert entry.status == EntryStatus.WAITING
        assert entry.allow_multiple is False
        assert entry.max_participants == 2
        assert entry.created_at is not None

    def test_one_on_one_capacity_ignores_max_participants(self, make_entry):
        entry = make_entry(allow_multiple=False, max_participants=8)
        assert entry.capacity == 2

    def test_multi_capacity(self, make_entry):
        assert make_entry(allow_multiple=True, max_participants=6).capacity == 6

    def test_null_gender_preference_is_any(self, make_entry):
        assert make_entry(preferred_gender=None).gender_preference == PreferredGender.ANY

    @pytest.mark.parametrize("target", [
        EntryStatus.MATCHED, EntryStatus.CANCELLED, EntryStatus.EXPIRED,
    ])
    def test_waiting_moves_to_any_terminal_state(self, make_entry, target):
        entry = make_entry()
        entry.transition_to(target)
        assert entry.status == target

    @pytest.mark.parametrize("terminal", [
        EntryStatus.MATCHED, EntryStatus.CANCELLED, EntryStatus.EXPIRED,
    ])
    def test_terminal_states_are_final(self, make_entry, terminal):
        entry = make_entry(status=terminal)
        for target in EntryStatus:
            with pytest.raises(ValueError, match="Invalid transition"):
                entry.transition_to(target)

    def test_every_status_has_transition_entry(self):
        assert set(VALID_ENTRY_TRANSITIONS) == set(EntryStatus)


# ---------------------------------------------------------------------------
# PoolChallenge / RewardGrant
# ---------------------------------------------------------------------------


class TestPoolChallenge:
    def test_only_active_to_completed(self):
        assert PoolChallenge.is_valid_transition(ChallengeStatus.ACTIVE, ChallengeStatus.COMPLETED)
        assert not PoolChallenge.is_valid_transition(
            ChallengeStatus.COMPLETED, ChallengeStatus.ACTIVE,
        )
        assert set(VALID_CHALLENGE_TRANSITIONS) == set(ChallengeStatus)


class TestRewardGrant:
    def test_defaults_and_idempotency_key(self):
        challenge_id, user_id = uuid.uuid4(), uuid.uuid4()
        grant = RewardGrant(challenge_id=challenge_id, user_id=user_id, amount=120)
        assert grant.status == RewardStatus.PENDING
        assert grant.attempts == 0
        assert grant.idempotency_key == f"{challenge_id}:{user_id}"
