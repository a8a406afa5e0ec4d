"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.services.runtime import get_runtime

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthsync.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the sync runtime is wired and the scheduler running.
    """
    settings = get_settings()
    runtime_ok = False
    scheduler_on = False
    try:
        runtime = get_runtime()
        runtime_ok = True
        scheduler_on = runtime.scheduler.is_enabled
    except RuntimeError as exc:
        logger.warning("Health check runtime probe failed: %s", exc)

    return {
        "status": "healthy" if runtime_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "sync_runtime": "ready" if runtime_ok else "not initialized",
        "background_sync": "enabled" if scheduler_on else "disabled",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
