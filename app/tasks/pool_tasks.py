"""
Pool engine Celery tasks.

Runs the match, judge, and expiry sweeps on the beat schedule.
Can also be triggered manually via the admin API or scripts/run_sweeps.py.
"""

import asyncio
import logging

from app.tasks.celery_app import celery_app
from app.pool_engine.engine import matching_engine
from app.pool_engine.expiry import run_expiry_sweep
from app.pool_engine.judge import challenge_judge

logger = logging.getLogger(__name__)


def _run(coro):
    """
    Run an async sweep to completion.

    Celery tasks are synchronous, so each run gets a fresh event loop.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(name="app.tasks.pool_tasks.run_match_sweep")
def run_match_sweep():
    """Form challenges from the whole waiting pool."""
    logger.info("Starting scheduled pool match sweep")
    try:
        result = _run(matching_engine.run_sweep())
    except Exception:
        logger.exception("Pool match sweep failed")
        raise
    if result.get("skipped"):
        logger.info("Pool match sweep skipped — lock held by another process")
        return result
    logger.info(
        "Pool match sweep %s completed: %d challenges",
        result["sweep_id"],
        result["challenges_created"],
    )
    return result


@celery_app.task(name="app.tasks.pool_tasks.run_judge_sweep")
def run_judge_sweep():
    """Complete every active challenge whose end date has passed."""
    logger.info("Starting scheduled pool judge sweep")
    try:
        result = _run(challenge_judge.run_sweep())
    except Exception:
        logger.exception("Pool judge sweep failed")
        raise
    if result.get("skipped"):
        logger.info("Pool judge sweep skipped — lock held by another process")
        return result
    logger.info(
        "Pool judge sweep %s completed: %d challenges judged",
        result["sweep_id"],
        result["challenges_completed"],
    )
    return result


@celery_app.task(name="app.tasks.pool_tasks.expire_stale_entries")
def expire_stale_entries():
    """Expire waiting entries past their latest start date."""
    logger.info("Starting stale pool entry expiry")
    try:
        result = _run(run_expiry_sweep())
    except Exception:
        logger.exception("Stale pool entry expiry failed")
        raise
    if result.get("skipped"):
        return result
    logger.info("Expiry sweep completed: %d entries expired", result["expired_count"])
    return result
