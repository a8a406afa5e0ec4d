"""Process-wide sync runtime: state store, dashboard client, coordinator, scheduler.

Built once at app startup from ``Settings`` and torn down at shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from src.config import Settings, get_settings
from src.healthsync.providers import (
    HealthExportCapability,
    HealthSampleProvider,
    UsageExportCapability,
    UsageSampleProvider,
)
from src.healthsync.sync.coordinator import SyncCoordinator
from src.healthsync.sync.dashboard_client import DashboardClient
from src.healthsync.sync.scheduler import BackgroundSyncScheduler
from src.healthsync.sync.state_store import InMemoryStateStore, SqliteStateStore, StateStore

logger = logging.getLogger("healthsync.runtime")


@dataclass
class SyncRuntime:
    store: StateStore
    coordinator: SyncCoordinator
    scheduler: BackgroundSyncScheduler
    http_client: httpx.AsyncClient


# Module-level runtime, initialized once at app startup
_runtime: SyncRuntime | None = None


def build_store(settings: Settings) -> StateStore:
    if settings.state_db_path:
        return SqliteStateStore(settings.state_db_path)
    logger.warning("No state_db_path configured; sync state will not survive restarts")
    return InMemoryStateStore()


async def init_runtime(settings: Settings | None = None) -> SyncRuntime:
    """Wire the sync stack and start the background scheduler. Call once at app startup."""
    global _runtime
    s = settings or get_settings()

    store = build_store(s)
    http_client = httpx.AsyncClient(timeout=s.request_timeout_seconds)
    dashboard = DashboardClient(s.dashboard_url, s.request_timeout_seconds, http_client=http_client)
    coordinator = SyncCoordinator(
        HealthSampleProvider(HealthExportCapability(s.health_export_path), s.user_id),
        UsageSampleProvider(UsageExportCapability(s.usage_export_path), s.user_id),
        dashboard,
        store,
        user_id=s.user_id,
        birth_year=s.birth_year,
    )
    await coordinator.initialize()

    scheduler = BackgroundSyncScheduler(coordinator, store, s.background_sync_interval_seconds)
    if s.background_sync_enabled:
        scheduler.start()

    _runtime = SyncRuntime(store=store, coordinator=coordinator, scheduler=scheduler, http_client=http_client)
    logger.info("Sync runtime initialized (dashboard=%s)", s.dashboard_url)
    return _runtime


async def close_runtime() -> None:
    """Stop the scheduler and close the HTTP client. Call at app shutdown."""
    global _runtime
    if _runtime:
        await _runtime.scheduler.stop()
        _runtime.coordinator.cancel()
        await _runtime.http_client.aclose()
        _runtime = None
        logger.info("Sync runtime closed")


def get_runtime() -> SyncRuntime:
    if _runtime is None:
        raise RuntimeError("Sync runtime not initialized; call init_runtime() first")
    return _runtime
