"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from pingcaset.bonus.router import router as bonus_router
from pingcaset.clock import SystemClock
from pingcaset.config import get_settings
from pingcaset.database import close_db, init_db
from pingcaset.events import EventBus, redis_event_publisher
from pingcaset.groups.router import router as groups_router
from pingcaset.health.router import router as health_router
from pingcaset.leaderboard.poller import LeaderboardPoller
from pingcaset.leaderboard.ranker import LeaderboardPeriod, LeaderboardRanker
from pingcaset.leaderboard.router import router as leaderboard_router
from pingcaset.leaderboard.service import redis_snapshot_fetcher
from pingcaset.middleware import setup_middleware
from pingcaset.mining.router import router as mining_router
from pingcaset.redis_client import close_redis, init_redis
from pingcaset.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    redis = await init_redis(settings.redis_url, max_connections=settings.redis_max_connections)
    app.state.leaderboard = LeaderboardRanker(redis_snapshot_fetcher(redis))

    unsubscribe = None
    if settings.publish_events:
        unsubscribe = app.state.event_bus.subscribe(redis_event_publisher(redis))

    clock = SystemClock()
    pollers = [
        LeaderboardPoller(
            app.state.leaderboard,
            period,
            interval_seconds=settings.leaderboard_poll_interval_seconds,
            now=clock.now,
        )
        for period in LeaderboardPeriod
    ]
    for poller in pollers:
        poller.start()
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    for poller in pollers:
        await poller.stop()
    if unsubscribe is not None:
        unsubscribe()

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PingCaset API",
        description="Rewards core for PingCaset: burn/recovery, security groups, leaderboard and bonus tasks",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.event_bus = EventBus()

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(mining_router)
    app.include_router(groups_router)
    app.include_router(leaderboard_router)
    app.include_router(bonus_router)

    return app


app = create_app()
