"""Liveness, readiness and version probes."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from vipsync.config import Settings, get_settings
from vipsync.database import get_session
from vipsync.redis_client import get_redis

router = APIRouter()

OK = "ok"


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return OK


async def _check_redis() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        return f"error: {exc}"
    return OK


def _check_payments(settings: Settings) -> str:
    if settings.payment_provider == "fake":
        return OK
    if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
        return "error: stripe credentials not configured"
    return OK


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Ready once the database, Redis and the payment provider are usable."""
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "payments": _check_payments(get_settings()),
    }
    status = "ready" if all(v == OK for v in checks.values()) else "degraded"
    return {"status": status, "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "payment_provider": settings.payment_provider,
    }
