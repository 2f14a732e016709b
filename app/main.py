"""
Pool Challenge Engine — FastAPI application entry point.

Mounts the pool API and exposes a health probe that checks the
database (required) and Redis (sweeps and events only).
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import pool
from app.config import settings
from app.database import engine, get_db
from app.redis_client import get_redis, redis, redis_available

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Pool engine starting (match every %ss, judge every %ss, expiry every %ss; "
        "profile mock=%s, reward mock=%s)",
        settings.POOL_MATCH_SWEEP_INTERVAL_SECONDS,
        settings.POOL_JUDGE_SWEEP_INTERVAL_SECONDS,
        settings.POOL_EXPIRY_SWEEP_INTERVAL_SECONDS,
        settings.PROFILE_SERVICE_MOCK,
        settings.REWARD_SERVICE_MOCK,
    )

    yield

    await engine.dispose()
    await redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Matches users into group fitness challenges and awards XP to the winners.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pool.router, prefix="/api/v1/pool", tags=["Pool"])


@app.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis),
):
    """
    ``healthy`` while the database answers.  Redis being down only
    degrades the sweeps and the event channel, so it is reported but
    does not fail the probe.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "unhealthy",
        "service": settings.APP_NAME,
        "version": VERSION,
        "database": database,
        "redis": "ok" if await redis_available(redis_client) else "unavailable",
    }
