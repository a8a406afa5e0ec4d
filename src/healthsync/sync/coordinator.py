"""Sync coordinator: fetch → score → persist → push, with an offline retry queue.

State machine::

    Idle ──sync_now()──▶ Syncing ──▶ Idle(success) | Idle(error)

Only one sync runs per coordinator.  The persisted ``SyncState.is_syncing``
flag is the guard, taken and released through ``StateStore.update()`` so the
periodic trigger, the app-open trigger and a manual refresh never overlap.
A second request while syncing is rejected immediately (it gets the current
state back) rather than queued.

A sync pushes three independent bodies to the dashboard concurrently.  If
any push fails, the whole sync is failed: the error is persisted on the sync
state, ``last_sync`` keeps its previous value and (for retryable failures) a
retry-queue entry is appended.  Pushes that did succeed are not rolled back.

Retrying is a separate operation.  Because every sync sends *today's* data,
one successful retry is treated as resolving every entry that was queued
when the retry started.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable

from pydantic import ValidationError

from src.healthsync.base import (
    CapabilityStatus,
    DailyHealthSample,
    DailyUsageSample,
    HealthCapability,
    RetryQueueEntry,
    SyncState,
    UsageCapability,
    utc_now,
)
from src.healthsync.config_loader import ScoringConfig, get_scoring_config
from src.healthsync.errors import SyncError, UnknownSyncError
from src.healthsync.productivity_score import ProductivityScore, compute_productivity_score
from src.healthsync.providers.apple_health import HealthSampleProvider
from src.healthsync.providers.screen_time import UsageSampleProvider
from src.healthsync.sync.dashboard_client import DashboardClient
from src.healthsync.sync.state_store import (
    HEALTH_HISTORY_KEY,
    LAST_HEALTH_KEY,
    LAST_SCORE_KEY,
    LAST_USAGE_KEY,
    RETRY_QUEUE_KEY,
    SCORE_HISTORY_KEY,
    SYNC_STATE_KEY,
    StateStore,
)
from src.healthsync.vitality_score import VitalityScore, compute_vitality_score
from src.models.sync import HealthSampleWire, ProductivityScoreWire, UsageSampleWire

logger = logging.getLogger("healthsync.sync.coordinator")


@dataclass
class RetryReport:
    """Outcome of one ``retry_failed_syncs()`` call.

    Attributes:
        attempted: Fresh syncs started (0 or 1).
        resolved:  Queue entries removed by a successful attempt.
        remaining: Entries still queued afterwards.
        state:     Sync state after the call.
    """

    attempted: int = 0
    resolved: int = 0
    remaining: int = 0
    state: SyncState = field(default_factory=SyncState)


@dataclass
class LastKnownGood:
    """Most recent locally computed entities, shown when a sync fails."""

    health: DailyHealthSample | None = None
    usage: DailyUsageSample | None = None
    score: ProductivityScore | None = None


def _trim_by_date(entries: dict[str, Any], newest: date, keep_days: int) -> dict[str, Any]:
    """Drop ISO-date keys older than ``keep_days`` before ``newest``."""
    cutoff = newest - timedelta(days=keep_days - 1)
    kept: dict[str, Any] = {}
    for key, value in entries.items():
        try:
            if date.fromisoformat(key) >= cutoff:
                kept[key] = value
        except ValueError:
            logger.warning("Dropping history entry with bad date key %r", key)
    return kept


def _parse_entry(raw: Any) -> RetryQueueEntry | None:
    try:
        return RetryQueueEntry.from_json(raw)
    except (AttributeError, KeyError, TypeError, ValueError):
        logger.warning("Skipping malformed retry entry: %r", raw)
        return None


def _drop_malformed(raw: Any) -> list:
    if not isinstance(raw, list):
        return []
    return [e for e in raw if _parse_entry(e) is not None]


class SyncCoordinator:
    """Owns the sync pipeline and its persisted state.

    Usage::

        coordinator = SyncCoordinator(health, usage, DashboardClient(url), store,
                                      user_id="user-1", birth_year=1990)
        await coordinator.initialize()
        state = await coordinator.sync_now()
        if state.error:
            cached = coordinator.get_last_known_good()
    """

    def __init__(
        self,
        health_provider: HealthSampleProvider,
        usage_provider: UsageSampleProvider | None,
        dashboard: DashboardClient,
        store: StateStore,
        *,
        user_id: str,
        birth_year: int,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._health = health_provider
        self._usage = usage_provider
        self._dashboard = dashboard
        self._store = store
        self._user_id = user_id
        self._birth_year = birth_year
        self._config = config
        self._clock = clock
        self._inflight: asyncio.Task | None = None

    @property
    def config(self) -> ScoringConfig:
        return self._config or get_scoring_config()

    @property
    def is_syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> dict[str, CapabilityStatus]:
        """Initialize providers, record permission grants, clear a stale guard.

        Returns:
            Capability status per feature ('health', 'usage').
        """
        statuses: dict[str, CapabilityStatus] = {}

        statuses[HealthCapability.FEATURE] = await self._health.initialize()
        if self._usage is not None:
            await self._usage.initialize()
            statuses[UsageCapability.FEATURE] = self._usage.status or CapabilityStatus.UNAVAILABLE
        else:
            statuses[UsageCapability.FEATURE] = CapabilityStatus.UNAVAILABLE

        for feature, status in statuses.items():
            self._store.record_permission(feature, status)

        if not self.is_syncing:
            def clear_stale(raw: dict | None) -> dict:
                state = SyncState.from_json(raw)
                if state.is_syncing:
                    logger.warning("Clearing sync guard left by an interrupted sync")
                    state.is_syncing = False
                return state.to_json()

            self._store.update(SYNC_STATE_KEY, clear_stale)

        logger.info(
            "Sync coordinator ready (health=%s usage=%s)",
            statuses[HealthCapability.FEATURE].value,
            statuses[UsageCapability.FEATURE].value,
        )
        return statuses

    def complete_onboarding(self) -> None:
        self._store.mark_onboarding_complete()

    @property
    def onboarding_completed(self) -> bool:
        return self._store.is_onboarding_complete()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_now(self) -> SyncState:
        """Run one sync.  Returns immediately if a sync is already running.

        Never raises for a failed sync: the failure is in the returned
        state's ``error`` / ``error_kind``.  Raises CancelledError if the sync
        is cancelled via ``cancel()``.
        """
        _, state = await self._guarded_sync(enqueue_failures=True)
        return state

    async def retry_failed_syncs(self) -> RetryReport:
        """Process the retry queue in enqueue order.

        The first entry triggers a fresh sync.  Success resolves every entry
        queued when the retry began; failure leaves the queue as it was and
        stops processing for this call.  A retry never enqueues new entries.
        Entries that no longer parse are dropped first.
        """
        self._store.update(RETRY_QUEUE_KEY, _drop_malformed, [])
        queue = self.get_retry_queue()
        if not queue:
            return RetryReport(state=self.get_sync_state())

        logger.info("Retrying %d failed syncs", len(queue))
        first = queue[0]
        report = RetryReport()
        ran, report.state = await self._guarded_sync(enqueue_failures=False)
        if not ran:
            logger.info("Retry skipped: a sync is already in progress")
        else:
            report.attempted = 1
            if report.state.error is None:
                report.resolved = self._resolve_entries(queue)
            else:
                logger.warning(
                    "Retry of sync queued at %s failed: %s",
                    first.enqueued_at.isoformat(), report.state.error,
                )

        report.remaining = len(self.get_retry_queue())
        return report

    def cancel(self) -> bool:
        """Cancel the in-flight sync, if any.  Returns True if one was cancelled."""
        if not self.is_syncing:
            return False
        logger.info("Cancelling in-flight sync")
        return self._inflight.cancel()  # type: ignore[union-attr]

    async def _guarded_sync(self, enqueue_failures: bool) -> tuple[bool, SyncState]:
        acquired, current = self._acquire_guard()
        if not acquired:
            logger.info("Sync already in progress; request ignored")
            return False, current

        self._inflight = asyncio.ensure_future(self._run_sync())
        try:
            error = await self._inflight
        except asyncio.CancelledError:
            self._release_guard()
            logger.warning("Sync cancelled; no retry entry written")
            raise
        finally:
            self._inflight = None

        return True, self._finish(error, enqueue_failures)

    def _acquire_guard(self) -> tuple[bool, SyncState]:
        outcome: dict[str, Any] = {}

        def begin(raw: dict | None) -> dict:
            state = SyncState.from_json(raw)
            outcome["acquired"] = not state.is_syncing
            state.is_syncing = True
            outcome["state"] = state
            return state.to_json()

        self._store.update(SYNC_STATE_KEY, begin)
        return outcome["acquired"], outcome["state"]

    def _release_guard(self) -> None:
        def release(raw: dict | None) -> dict:
            state = SyncState.from_json(raw)
            state.is_syncing = False
            return state.to_json()

        self._store.update(SYNC_STATE_KEY, release)

    def _finish(self, error: SyncError | None, enqueue_failures: bool) -> SyncState:
        now = self._clock()

        def complete(raw: dict | None) -> dict:
            state = SyncState.from_json(raw)
            state.is_syncing = False
            if error is None:
                state.last_sync = now
                state.error = None
                state.error_kind = None
            else:
                state.error = error.message
                state.error_kind = error.kind
            return state.to_json()

        state = SyncState.from_json(self._store.update(SYNC_STATE_KEY, complete))

        if error is None:
            logger.info("Sync completed at %s", now.isoformat())
        elif enqueue_failures and error.retryable:
            entry = RetryQueueEntry(enqueued_at=now, failure_reason=error.message, error_kind=error.kind)
            limit = self.config.sync.max_retry_entries
            queue = self._store.update(
                RETRY_QUEUE_KEY, lambda q: [*(q or []), entry.to_json()][-limit:], []
            )
            logger.error("Sync failed (%s): %s; %d queued for retry", error.kind, error.message, len(queue))
        else:
            logger.error("Sync failed (%s): %s", error.kind, error.message)
        return state

    def _resolve_entries(self, resolved: list[RetryQueueEntry]) -> int:
        keys = {e.to_json()["enqueuedAt"] for e in resolved}
        removed = 0

        def drain(raw: list | None) -> list:
            nonlocal removed
            remaining = [e for e in (raw or []) if e.get("enqueuedAt") not in keys]
            removed = len(raw or []) - len(remaining)
            return remaining

        self._store.update(RETRY_QUEUE_KEY, drain, [])
        logger.info("Retry succeeded; resolved %d queued syncs", removed)
        return removed

    async def _run_sync(self) -> SyncError | None:
        """Execute the pipeline; return the failure instead of raising it."""
        try:
            health, usage = await self._fetch_samples()
            score = self._score(health, usage)
            self._persist(health, usage, score)
            await self._push(health, usage, score)
        except SyncError as exc:
            return exc
        except Exception as exc:
            logger.exception("Unexpected error during sync")
            return UnknownSyncError(str(exc) or type(exc).__name__)
        return None

    async def _fetch_samples(self) -> tuple[DailyHealthSample, DailyUsageSample | None]:
        # Samples, histories and the vitality reference day share the UTC clock
        day = self._clock().date()
        health, usage = await asyncio.gather(
            self._health.fetch_day(day), self._fetch_usage(day), return_exceptions=True
        )
        if isinstance(health, BaseException):
            raise health
        return health, usage  # type: ignore[return-value]

    async def _fetch_usage(self, day: date) -> DailyUsageSample | None:
        if self._usage is None:
            return None
        try:
            return await self._usage.fetch_day(day)
        except Exception as exc:
            logger.warning("Proceeding without screen-time data: %s", exc)
            return None

    def _score(self, health: DailyHealthSample, usage: DailyUsageSample | None) -> ProductivityScore:
        history: dict[date, float] = {}
        for key, value in (self._store.get(SCORE_HISTORY_KEY, {}) or {}).items():
            try:
                history[date.fromisoformat(key)] = float(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring bad score history entry %r=%r", key, value)
        return compute_productivity_score(health, usage, history=history, config=self.config)

    def _persist(
        self,
        health: DailyHealthSample,
        usage: DailyUsageSample | None,
        score: ProductivityScore,
    ) -> None:
        sync_cfg = self.config.sync
        day = health.date.isoformat()
        health_wire = HealthSampleWire.from_domain(health).to_wire()

        self._store.set(LAST_HEALTH_KEY, health_wire)
        if usage is not None:
            self._store.set(LAST_USAGE_KEY, UsageSampleWire.from_domain(usage).to_wire())
        self._store.set(LAST_SCORE_KEY, ProductivityScoreWire.from_domain(score).to_wire())

        self._store.update(
            HEALTH_HISTORY_KEY,
            lambda h: _trim_by_date({**(h or {}), day: health_wire}, health.date, sync_cfg.health_history_days),
            {},
        )
        self._store.update(
            SCORE_HISTORY_KEY,
            lambda s: _trim_by_date({**(s or {}), day: score.score}, health.date, sync_cfg.score_history_days),
            {},
        )

    async def _push(
        self,
        health: DailyHealthSample,
        usage: DailyUsageSample | None,
        score: ProductivityScore,
    ) -> None:
        pushes = [self._dashboard.post_health(health)]
        if usage is not None:
            pushes.append(self._dashboard.post_usage(usage))
        pushes.append(self._dashboard.post_score(score))

        results = await asyncio.gather(*pushes, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return
        for failure in failures:
            if isinstance(failure, asyncio.CancelledError):
                raise failure
        first = failures[0]
        if isinstance(first, SyncError):
            raise first
        raise UnknownSyncError(str(first) or type(first).__name__) from first

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_sync_state(self) -> SyncState:
        return SyncState.from_json(self._store.get(SYNC_STATE_KEY))

    def get_retry_queue(self) -> list[RetryQueueEntry]:
        entries = [_parse_entry(raw) for raw in self._store.get(RETRY_QUEUE_KEY, []) or []]
        return [e for e in entries if e is not None]

    def get_last_known_good(self) -> LastKnownGood:
        cached = LastKnownGood()
        try:
            if raw := self._store.get(LAST_HEALTH_KEY):
                cached.health = HealthSampleWire.model_validate(raw).to_domain()
            if raw := self._store.get(LAST_USAGE_KEY):
                cached.usage = UsageSampleWire.model_validate(raw).to_domain()
            if raw := self._store.get(LAST_SCORE_KEY):
                cached.score = ProductivityScoreWire.model_validate(raw).to_domain()
        except ValidationError as exc:
            logger.warning("Cached entity failed validation: %s", exc)
        return cached

    def health_window(self) -> list[DailyHealthSample]:
        """Persisted rolling window of daily health samples, oldest first."""
        history = self._store.get(HEALTH_HISTORY_KEY, {}) or {}
        window: list[DailyHealthSample] = []
        for key in sorted(history):
            try:
                window.append(HealthSampleWire.model_validate(history[key]).to_domain())
            except ValidationError as exc:
                logger.warning("Skipping invalid history sample for %s: %s", key, exc)
        return window

    def compute_vitality(self) -> VitalityScore:
        return compute_vitality_score(
            self._birth_year,
            self.health_window(),
            today=self._clock().date(),
            config=self.config,
        )

    async def fetch_dashboard_health(self) -> DailyHealthSample | None:
        try:
            return await self._dashboard.get_latest_health()
        except SyncError as exc:
            logger.warning("Could not read latest health from dashboard: %s", exc)
            return None

    async def fetch_dashboard_score(self) -> ProductivityScore | None:
        try:
            return await self._dashboard.get_latest_score()
        except SyncError as exc:
            logger.warning("Could not read latest score from dashboard: %s", exc)
            return None
