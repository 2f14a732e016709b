"""
Entry expiry — retires waiting entries whose start deadline has passed.

An entry still ``waiting`` after its ``latest_start_date`` moves to
``expired`` through the same conditional write the matcher uses, so an
entry claimed or cancelled in the meantime is never touched.  Running the
sweep twice changes nothing the second time.
"""

import logging
from datetime import datetime, timezone

from app.pool_engine import events, store
from app.pool_engine.config import LOCK_KEY_EXPIRE, SWEEP_BATCH_SIZE
from app.pool_engine.reporter import build_expiry_report

logger = logging.getLogger(__name__)


async def expire_stale_entries(
    session_factory=None,
    now: datetime | None = None,
    publisher=None,
) -> list[str]:
    """Expire stale waiting entries; returns the ids this call expired."""
    if session_factory is None:
        from app.database import async_session as session_factory
    if publisher is None:
        publisher = events.event_publisher
    now = now or datetime.now(timezone.utc)

    async with session_factory() as session:
        async with session.begin():
            expired = await store.expire_entries(session, now, limit=SWEEP_BATCH_SIZE)

    for entry in expired:
        logger.info("Pool entry %s expired unmatched", entry.id)
        await publisher.publish(events.ENTRY_EXPIRED, entry.id, [entry.user_id])

    return [str(entry.id) for entry in expired]


async def run_expiry_sweep(
    session_factory=None,
    lock_mgr=None,
    now: datetime | None = None,
    publisher=None,
) -> dict:
    """
    Locked expiry sweep for the beat schedule.

    Returns ``{"skipped": True}`` if another expiry sweep holds the lock.
    """
    if lock_mgr is None:
        from app.pool_engine.sweep_lock import sweep_locks as lock_mgr

    lock = await lock_mgr.acquire(LOCK_KEY_EXPIRE)
    if lock is None:
        logger.warning("Expiry sweep skipped — lock held by another process")
        return {"skipped": True}

    try:
        started_at = datetime.now(timezone.utc)
        expired_ids = await expire_stale_entries(session_factory, now=now, publisher=publisher)
        report = build_expiry_report(
            sweep_id=f"ES-{started_at:%Y%m%d-%H%M%S}",
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            expired_ids=expired_ids,
        )
        logger.info("Expiry sweep %s: %d entries expired", report["sweep_id"], len(expired_ids))
        return report
    finally:
        await lock_mgr.release(lock)
