"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException

from src.healthsync.sync.coordinator import SyncCoordinator
from src.healthsync.sync.scheduler import BackgroundSyncScheduler
from src.services.runtime import get_runtime


def get_coordinator() -> SyncCoordinator:
    """The process's single sync coordinator.

    Raises 503 until the runtime has been initialized by the app lifespan.
    """
    try:
        return get_runtime().coordinator
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_scheduler() -> BackgroundSyncScheduler:
    try:
        return get_runtime().scheduler
    except RuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


# Annotated shortcuts for route signatures
Coordinator = Annotated[SyncCoordinator, Depends(get_coordinator)]
Scheduler = Annotated[BackgroundSyncScheduler, Depends(get_scheduler)]
