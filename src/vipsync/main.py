"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vipsync.config import get_settings
from vipsync.database import close_db, get_session_factory, init_db
from vipsync.health.router import router as health_router
from vipsync.ledger.router import router as transactions_router
from vipsync.middleware import setup_middleware
from vipsync.notifications.notifier import NotificationDispatcher, build_notifier
from vipsync.payments.gateway import build_gateway
from vipsync.redis_client import close_redis, init_redis
from vipsync.vip.router import router as vip_router
from vipsync.vip.seed import seed_tiers
from vipsync.votes.dedup import VoteDedupGate
from vipsync.votes.router import router as votes_router
from vipsync.votes.scheduler import VoteResetScheduler
from vipsync.votes.service import VoteService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    session_factory = get_session_factory()

    # Seed tier catalog (idempotent)
    try:
        async with session_factory() as db:
            await seed_tiers(db)
    except Exception:
        logger.warning("Tier seeding failed (tables may not exist yet)", exc_info=True)

    dispatcher = NotificationDispatcher(build_notifier(settings))
    scheduler = VoteResetScheduler(session_factory, settings.vote_reset_after_seconds)
    app.state.gateway = build_gateway(settings)
    app.state.dispatcher = dispatcher
    app.state.vote_service = VoteService(
        VoteDedupGate(settings.vote_dedup_window_seconds, settings.vote_dedup_retention_seconds),
        scheduler,
        settings.vote_webhook_secret,
        dispatcher,
    )

    yield

    # Pending vote resets are lost on shutdown; records stay voted until the next vote
    await scheduler.close()
    await dispatcher.drain()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="vipsync",
        description="VIP entitlement, payment reconciliation and vote rewards",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(transactions_router)
    app.include_router(vip_router)
    app.include_router(votes_router)

    return app


app = create_app()
