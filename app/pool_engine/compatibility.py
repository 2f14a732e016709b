"""
Compatibility predicate between two pool entries.

Two entries can share a challenge only if every check below holds in
both directions:

1. different users
2. identical terms (category, type, target value, duration)
3. each side's gender preference accepts the other's profile gender
4. each side's age bounds contain the other's profile age
5. both entries are still open (``now <= latest_start_date``)

Capacity (check 6) is a property of the whole group and is enforced by
``matcher.form_group``.

Profiles are passed in as a ``{user_id: Profile | None}`` map that the
caller built before matching.  A missing or ``None`` profile makes the
entry ineligible, and a preference that needs an attribute the profile
does not carry (gender, birth year) is treated as unsatisfied.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Mapping

from app.models.pool_entry import EntryStatus, PreferredGender

if TYPE_CHECKING:
    from app.models.pool_entry import PoolEntry
    from app.services.profile_service import Profile


def profile_age(profile: "Profile", now: datetime) -> int | None:
    """Age in whole years as ``now.year - birth_year``."""
    if profile.birth_year is None:
        return None
    return now.year - profile.birth_year


def gender_accepts(entry: "PoolEntry", other: "Profile") -> bool:
    """Does *entry*'s gender preference accept the *other* profile?"""
    preference = entry.gender_preference
    if preference == PreferredGender.ANY:
        return True
    return other.gender == preference.value


def age_accepts(entry: "PoolEntry", other: "Profile", now: datetime) -> bool:
    """Does the *other* profile's age fall inside *entry*'s age bounds?"""
    if entry.min_age is None and entry.max_age is None:
        return True
    age = profile_age(other, now)
    if age is None:
        return False
    if entry.min_age is not None and age < entry.min_age:
        return False
    if entry.max_age is not None and age > entry.max_age:
        return False
    return True


def terms_match(a: "PoolEntry", b: "PoolEntry") -> bool:
    """Competition terms must be identical, with no tolerance."""
    return (
        a.challenge_category == b.challenge_category
        and a.challenge_type == b.challenge_type
        and a.target_value == b.target_value
        and a.duration_days == b.duration_days
    )


def is_open(entry: "PoolEntry", now: datetime) -> bool:
    """Entry is still waiting and its start deadline has not passed."""
    return entry.status == EntryStatus.WAITING and now <= entry.latest_start_date


def is_compatible(
    a: "PoolEntry",
    b: "PoolEntry",
    profiles: Mapping[uuid.UUID, "Profile | None"],
    now: datetime,
) -> bool:
    """Pairwise predicate, checked in both directions."""
    if a.id == b.id or a.user_id == b.user_id:
        return False
    if not terms_match(a, b):
        return False
    if not (is_open(a, now) and is_open(b, now)):
        return False

    profile_a = profiles.get(a.user_id)
    profile_b = profiles.get(b.user_id)
    if profile_a is None or profile_b is None:
        return False

    return (
        gender_accepts(a, profile_b)
        and gender_accepts(b, profile_a)
        and age_accepts(a, profile_b, now)
        and age_accepts(b, profile_a, now)
    )
