"""
Sweep reporting — structured summaries of pool sweeps.

Returned by the Celery tasks and the admin sweep endpoints, and logged
after each run.
"""

from datetime import datetime


def _timing(sweep_id: str, started_at: datetime, completed_at: datetime) -> dict:
    duration = completed_at - started_at
    return {
        "sweep_id": sweep_id,
        "started_at": started_at.isoformat(),
        "completed_at": completed_at.isoformat(),
        "duration_ms": int(duration.total_seconds() * 1000),
    }


def build_match_sweep_report(
    sweep_id: str,
    started_at: datetime,
    completed_at: datetime,
    pool_size: int,
    challenges: list[dict],
    lost_races: list[dict],
) -> dict:
    """
    Summarise a matching sweep.

    ``challenges`` holds one dict per challenge formed (``challenge_id``,
    ``entry_ids``); ``lost_races`` one per group abandoned because an
    entry had already been claimed.
    """
    matched_entries = sum(len(c["entry_ids"]) for c in challenges)
    if pool_size > 0:
        efficiency = round(matched_entries / pool_size * 100, 2)
    else:
        efficiency = 0.0

    return {
        **_timing(sweep_id, started_at, completed_at),
        "kind": "match",
        "pool_size": pool_size,
        "challenges_created": len(challenges),
        "entries_matched": matched_entries,
        "groups_abandoned": len(lost_races),
        "matching_efficiency": efficiency,
        "challenges": challenges,
        "lost_races": lost_races,
    }


def build_judge_sweep_report(
    sweep_id: str,
    started_at: datetime,
    completed_at: datetime,
    results: list[dict],
) -> dict:
    """Summarise a judge sweep from per-challenge outcome dicts."""
    completed = [r for r in results if r["outcome"] == "completed"]
    return {
        **_timing(sweep_id, started_at, completed_at),
        "kind": "judge",
        "challenges_due": len(results),
        "challenges_completed": len(completed),
        "winners": len([r for r in completed if r.get("winner_id")]),
        "rewards_credited": len([r for r in completed if r.get("reward_status") == "credited"]),
        "rewards_pending": len([r for r in completed if r.get("reward_status") == "pending"]),
        "challenges_skipped": len(results) - len(completed),
        "results": results,
    }


def build_expiry_report(
    sweep_id: str,
    started_at: datetime,
    completed_at: datetime,
    expired_ids: list[str],
) -> dict:
    return {
        **_timing(sweep_id, started_at, completed_at),
        "kind": "expire",
        "expired_count": len(expired_ids),
        "expired_entry_ids": expired_ids,
    }
