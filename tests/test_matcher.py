"""Tests for group formation, sweep partitioning, XP and winner selection."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.pool_challenge import PoolParticipant
from app.models.pool_entry import ChallengeType, PreferredGender
from app.pool_engine.config import XP_CAP
from app.pool_engine.judge import determine_winner
from app.pool_engine.matcher import (
    effort_units,
    fifo_key,
    form_group,
    plan_sweep_groups,
    xp_reward,
)


# ── Helpers ────────────────────────────────────────────────────────────────


@pytest.fixture
def pool(make_entry, make_profile, now):
    """
    Build entries created one minute apart (oldest first) with profiles.

    ``pool(n, **overrides)`` → (entries, profiles)
    """
    def _build(n, **overrides):
        entries = [
            make_entry(created_at=now - timedelta(minutes=n - i), **overrides)
            for i in range(n)
        ]
        profiles = {e.user_id: make_profile(e.user_id) for e in entries}
        return entries, profiles
    return _build


def _participant(value) -> PoolParticipant:
    return PoolParticipant(
        challenge_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        current_value=Decimal(str(value)),
    )


# ===========================================================================
# FORM GROUP
# ===========================================================================


class TestFormGroup:
    def test_pairs_with_oldest_candidate(self, pool, now):
        entries, profiles = pool(3)
        anchor = entries[2]
        group = form_group(anchor, entries[:2], profiles, now)
        assert [e.id for e in group] == [anchor.id, entries[0].id]

    def test_fifo_ignores_candidate_order(self, pool, now):
        entries, profiles = pool(3)
        anchor = entries[2]
        group = form_group(anchor, [entries[1], entries[0]], profiles, now)
        assert group[1].id == entries[0].id

    def test_no_partner_returns_empty(self, pool, now):
        entries, profiles = pool(1)
        assert form_group(entries[0], [], profiles, now) == []

    def test_anchor_without_profile(self, pool, now):
        entries, profiles = pool(2)
        profiles[entries[0].user_id] = None
        assert form_group(entries[0], entries[1:], profiles, now) == []

    def test_skips_incompatible_candidate(self, pool, make_entry, make_profile, now):
        entries, profiles = pool(2)
        picky = make_entry(
            created_at=now - timedelta(hours=5), preferred_gender=PreferredGender.MALE,
        )
        profiles[picky.user_id] = make_profile(picky.user_id, gender="male")
        group = form_group(entries[1], [picky, entries[0]], profiles, now)
        assert [e.id for e in group] == [entries[1].id, entries[0].id]

    def test_one_on_one_stops_at_two(self, pool, now):
        entries, profiles = pool(4)
        group = form_group(entries[0], entries[1:], profiles, now)
        assert len(group) == 2

    def test_multi_fills_to_capacity(self, pool, now):
        entries, profiles = pool(6, allow_multiple=True, max_participants=4)
        group = form_group(entries[0], entries[1:], profiles, now)
        assert [e.id for e in group] == [e.id for e in entries[:4]]

    def test_capacity_is_smallest_member_capacity(self, pool, now):
        entries, profiles = pool(5, allow_multiple=True, max_participants=5)
        entries[1].max_participants = 3
        group = form_group(entries[0], entries[1:], profiles, now)
        assert len(group) == 3

    def test_candidate_with_smaller_capacity_is_skipped(self, pool, now):
        entries, profiles = pool(4, allow_multiple=True, max_participants=4)
        # Third member slot is beyond a one-on-one entry's capacity
        entries[2].allow_multiple = False
        entries[2].max_participants = 2
        group = form_group(entries[0], entries[1:], profiles, now)
        assert entries[2] not in group
        assert len(group) == 3

    def test_multi_anchor_accepts_one_on_one_partner(self, pool, now):
        entries, profiles = pool(3, allow_multiple=True, max_participants=4)
        entries[1].allow_multiple = False
        entries[1].max_participants = 2
        group = form_group(entries[0], entries[1:], profiles, now)
        # The one-on-one partner caps the group at two
        assert [e.id for e in group] == [entries[0].id, entries[1].id]

    def test_every_member_pairwise_compatible(self, pool, make_entry, make_profile, now):
        entries, profiles = pool(3, allow_multiple=True, max_participants=3)
        # Compatible with the anchor but rejects the second member's gender
        entries[2].preferred_gender = PreferredGender.FEMALE
        profiles[entries[1].user_id] = make_profile(entries[1].user_id, gender="male")
        group = form_group(entries[0], entries[1:], profiles, now)
        assert [e.id for e in group] == [entries[0].id, entries[1].id]


# ===========================================================================
# SWEEP
# ===========================================================================


class TestPlanSweepGroups:
    def test_partitions_pool_in_fifo_order(self, pool, now):
        entries, profiles = pool(5)
        groups = plan_sweep_groups(entries, profiles, now)
        assert [[e.id for e in g] for g in groups] == [
            [entries[0].id, entries[1].id],
            [entries[2].id, entries[3].id],
        ]

    def test_no_entry_in_two_groups(self, pool, now):
        entries, profiles = pool(9, allow_multiple=True, max_participants=3)
        groups = plan_sweep_groups(list(reversed(entries)), profiles, now)
        ids = [e.id for g in groups for e in g]
        assert len(ids) == len(set(ids)) == 9

    def test_different_terms_never_grouped(self, pool, make_entry, make_profile, now):
        entries, profiles = pool(1)
        other = make_entry(duration_days=30)
        profiles[other.user_id] = make_profile(other.user_id)
        assert plan_sweep_groups([entries[0], other], profiles, now) == []

    def test_fifo_key_breaks_ties_by_id(self, make_entry, now):
        a = make_entry(created_at=now)
        b = make_entry(created_at=now)
        assert sorted([a, b], key=fifo_key) == sorted([b, a], key=fifo_key)


# ===========================================================================
# XP
# ===========================================================================


class TestXpReward:
    def test_effort_units_per_type(self):
        assert effort_units(ChallengeType.WORKOUTS, 12) == 12
        assert effort_units(ChallengeType.SETS, 100) == 10
        assert effort_units(ChallengeType.MINUTES, 300) == 10
        assert effort_units(ChallengeType.DISTANCE_KM, Decimal("25")) == 5
        assert effort_units("distance_km", Decimal("25")) == 5

    def test_one_on_one_formula(self):
        # 100 + 5·7 + 2·5
        assert xp_reward(ChallengeType.DISTANCE_KM, Decimal("25"), 7, 2) == 145

    def test_extra_participants_add_xp(self):
        two = xp_reward(ChallengeType.WORKOUTS, 10, 14, 2)
        four = xp_reward(ChallengeType.WORKOUTS, 10, 14, 4)
        assert four - two == 20

    def test_capped(self):
        assert xp_reward(ChallengeType.WORKOUTS, 5000, 90, 10) == XP_CAP


# ===========================================================================
# WINNER
# ===========================================================================


class TestDetermineWinner:
    def test_highest_value_wins(self):
        participants = [_participant(10), _participant(25), _participant(3)]
        assert determine_winner(participants) == participants[1].user_id

    def test_tie_has_no_winner(self):
        assert determine_winner([_participant(12), _participant(12), _participant(1)]) is None

    def test_no_progress_has_no_winner(self):
        assert determine_winner([_participant(0), _participant(0)]) is None

    def test_empty(self):
        assert determine_winner([]) is None
