"""
Celery application for the pool sweeps.

All three sweeps run on a dedicated ``pool-sweeps`` queue.  A beat
message that sits in the queue longer than its own interval is dropped
(the next tick supersedes it), and a sweep is killed before its Redis
lock can expire underneath it.
"""

from celery import Celery

from app.config import settings
from app.pool_engine.sweep_lock import LOCK_TIMEOUT_SECONDS

SWEEP_QUEUE = "pool-sweeps"

celery_app = Celery(
    "pool_challenges",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.pool_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={"app.tasks.pool_tasks.*": {"queue": SWEEP_QUEUE}},
    task_soft_time_limit=LOCK_TIMEOUT_SECONDS - 30,
    task_time_limit=LOCK_TIMEOUT_SECONDS,
    result_expires=24 * 3600,
)


def _sweep(task: str, interval: int) -> dict:
    return {"task": task, "schedule": interval, "options": {"expires": interval}}


celery_app.conf.beat_schedule = {
    "run-pool-match-sweep": _sweep(
        "app.tasks.pool_tasks.run_match_sweep",
        settings.POOL_MATCH_SWEEP_INTERVAL_SECONDS,
    ),
    "run-pool-judge-sweep": _sweep(
        "app.tasks.pool_tasks.run_judge_sweep",
        settings.POOL_JUDGE_SWEEP_INTERVAL_SECONDS,
    ),
    "expire-stale-pool-entries": _sweep(
        "app.tasks.pool_tasks.expire_stale_entries",
        settings.POOL_EXPIRY_SWEEP_INTERVAL_SECONDS,
    ),
}
