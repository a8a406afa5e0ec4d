"""Sync trigger endpoints: manual refresh, retry, app-open, state inspection.

A failed sync is not an HTTP error: the error is carried in the returned
state and the caller shows last-known-good data alongside a warning.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from src.dependencies import Coordinator, Scheduler
from src.models.sync import RetryQueueEntryWire, RetryReportWire, SyncStateWire, TriggerResultWire

router = APIRouter(prefix="/sync", tags=["sync"])
app_router = APIRouter(tags=["sync"])


@router.post("", response_model=SyncStateWire)
async def sync_now(coordinator: Coordinator) -> Any:
    return SyncStateWire.model_validate(await coordinator.sync_now())


@router.post("/retry", response_model=RetryReportWire)
async def retry_failed_syncs(coordinator: Coordinator) -> Any:
    return RetryReportWire.model_validate(await coordinator.retry_failed_syncs())


@router.get("/state", response_model=SyncStateWire)
async def get_sync_state(coordinator: Coordinator) -> Any:
    return SyncStateWire.model_validate(coordinator.get_sync_state())


@router.get("/queue", response_model=list[RetryQueueEntryWire])
async def get_retry_queue(coordinator: Coordinator) -> Any:
    return [RetryQueueEntryWire.model_validate(e) for e in coordinator.get_retry_queue()]


@app_router.post("/app-open", response_model=TriggerResultWire)
async def app_open(coordinator: Coordinator, scheduler: Scheduler) -> Any:
    result = await scheduler.sync_on_app_open()
    return TriggerResultWire(
        result=result.value,
        state=SyncStateWire.model_validate(coordinator.get_sync_state()),
    )
