"""
Group formation — FIFO-greedy admission of compatible waiting entries.

Pure functions over already-loaded ``PoolEntry`` objects and a profile
map; nothing here touches the database.  The engine snapshots the pool,
calls these to decide *who* should be grouped, then claims the chosen
entries atomically.

Greedy admission is deliberate: terms must match exactly, so every
candidate in a group is interchangeable, and closing a match quickly
matters more than a globally optimal assignment.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Mapping

from app.pool_engine.compatibility import is_compatible, is_open
from app.pool_engine.config import (
    EFFORT_UNIT,
    MIN_PARTICIPANTS,
    XP_BASE,
    XP_CAP,
    XP_PER_DAY,
    XP_PER_EFFORT_UNIT,
    XP_PER_EXTRA_PARTICIPANT,
)

if TYPE_CHECKING:
    from app.models.pool_entry import PoolEntry
    from app.services.profile_service import Profile


def fifo_key(entry: "PoolEntry") -> tuple:
    """Oldest first; ``id`` breaks ties between identical timestamps."""
    return (entry.created_at, str(entry.id))


# ── 1. Single-anchor grouping ──────────────────────────────────────────


def form_group(
    anchor: "PoolEntry",
    candidates: Iterable["PoolEntry"],
    profiles: Mapping[uuid.UUID, "Profile | None"],
    now: datetime,
) -> list["PoolEntry"]:
    """
    Build the group *anchor* should be matched into.

    * Candidates are considered oldest-created first.
    * A candidate is admitted only if it is compatible with every member
      already in the group.
    * The group's capacity is the smallest ``capacity`` among its members;
      a candidate whose own capacity the group has already reached is
      skipped.
    * Admission stops when capacity is reached or candidates run out.

    Returns the group (anchor first) or ``[]`` if no partner was found.
    """
    if not is_open(anchor, now) or profiles.get(anchor.user_id) is None:
        return []

    group = [anchor]
    capacity = anchor.capacity

    for candidate in sorted(candidates, key=fifo_key):
        if len(group) >= capacity:
            break
        if candidate.id == anchor.id:
            continue
        if len(group) + 1 > candidate.capacity:
            continue
        if all(is_compatible(candidate, member, profiles, now) for member in group):
            group.append(candidate)
            capacity = min(capacity, candidate.capacity)

    if len(group) < MIN_PARTICIPANTS:
        return []
    return group


# ── 2. Sweep grouping ──────────────────────────────────────────────────


def plan_sweep_groups(
    entries: Iterable["PoolEntry"],
    profiles: Mapping[uuid.UUID, "Profile | None"],
    now: datetime,
) -> list[list["PoolEntry"]]:
    """
    Partition a pool snapshot into groups.

    Each waiting entry, oldest first, acts as an anchor over the entries
    not yet placed in an earlier group.  Entries left unplaced stay
    waiting.
    """
    ordered = sorted(entries, key=fifo_key)
    placed: set[uuid.UUID] = set()
    groups: list[list["PoolEntry"]] = []

    for anchor in ordered:
        if anchor.id in placed:
            continue
        remaining = [e for e in ordered if e.id not in placed and e.id != anchor.id]
        group = form_group(anchor, remaining, profiles, now)
        if not group:
            continue
        groups.append(group)
        placed.update(member.id for member in group)

    return groups


# ── 3. Reward ───────────────────────────────────────────────────────────


def effort_units(challenge_type: str, target_value: Decimal | int | float) -> int:
    """Normalise *target_value* into comparable units of effort."""
    key = getattr(challenge_type, "value", challenge_type)
    unit = EFFORT_UNIT.get(key, 1)
    return int(Decimal(str(target_value)) / Decimal(unit))


def xp_reward(
    challenge_type: str,
    target_value: Decimal | int | float,
    duration_days: int,
    participant_count: int,
) -> int:
    """
    XP awarded in full to the eventual winner.

    ``BASE + PER_DAY·duration + PER_EFFORT_UNIT·effort + PER_EXTRA·(n − 2)``,
    capped at ``XP_CAP``.
    """
    extra = max(participant_count - MIN_PARTICIPANTS, 0)
    reward = (
        XP_BASE
        + XP_PER_DAY * duration_days
        + XP_PER_EFFORT_UNIT * effort_units(challenge_type, target_value)
        + XP_PER_EXTRA_PARTICIPANT * extra
    )
    return min(reward, XP_CAP)
