"""Usage sample provider backed by screen-time data.

Screen-time tracking is legitimately missing on some platforms and OS
versions.  ``UsageSampleProvider.initialize()`` reports that as ``False``
rather than an error, and callers fall back to absent usage data.

Focus sessions are derived from the day's categorized app intervals with a
run-length rule: consecutive productive minutes accumulate, each time the
run reaches the session threshold (30 minutes) one session is counted and
the run restarts, and any entertainment or neutral interval resets the run.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Iterable, Iterator

from src.healthsync.base import (
    AppCategory,
    AppInterval,
    AppUsageRecord,
    CapabilityStatus,
    DailyUsageSample,
    UsageCapability,
    metric_value,
    parse_iso_datetime,
    utc_now,
    utc_today,
)
from src.healthsync.config_loader import ScoringConfig, get_scoring_config
from src.healthsync.errors import CapabilityUnavailable
from src.healthsync.providers.export_file import ExportFile

logger = logging.getLogger("healthsync.providers.screen_time")


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------


class AppCategorizer:
    """Map bundle identifiers to productive / entertainment / neutral.

    The allow-lists are data, not logic: build from config with
    ``from_config()`` or pass custom lists.  A bundle id matches an entry
    when the entry is a substring of it (so 'com.slack' covers
    'com.slack.Slack').
    """

    def __init__(self, productive: Iterable[str], entertainment: Iterable[str]) -> None:
        self._productive = tuple(productive)
        self._entertainment = tuple(entertainment)

    @classmethod
    def from_config(cls, config: ScoringConfig | None = None) -> "AppCategorizer":
        cats = (config or get_scoring_config()).categories
        return cls(cats.productive, cats.entertainment)

    def categorize(self, bundle_id: str) -> AppCategory:
        if any(app in bundle_id for app in self._productive):
            return AppCategory.PRODUCTIVE
        if any(app in bundle_id for app in self._entertainment):
            return AppCategory.ENTERTAINMENT
        return AppCategory.NEUTRAL


# ---------------------------------------------------------------------------
# Focus sessions
# ---------------------------------------------------------------------------


def iter_focus_sessions(
    intervals: Iterable[AppInterval], threshold_minutes: float = 30
) -> Iterator[float]:
    """Yield the length (minutes) of each completed focus session, in order.

    Lazy and restartable: each call scans the intervals from the start and
    only ever yields sessions that reached the threshold.
    """
    running = 0.0
    for interval in intervals:
        if interval.category is AppCategory.PRODUCTIVE:
            running += metric_value(interval.minutes_spent)
            if running >= threshold_minutes:
                yield running
                running = 0.0
        else:
            running = 0.0


def count_focus_sessions(intervals: Iterable[AppInterval], threshold_minutes: float = 30) -> int:
    return sum(1 for _ in iter_focus_sessions(intervals, threshold_minutes))


# ---------------------------------------------------------------------------
# Export-backed capability
# ---------------------------------------------------------------------------


class UsageExportCapability(UsageCapability):
    """Screen-time capability read from a per-day JSON export.

    Expected layout::

        {
            "supported": true,
            "days": {
                "2026-02-23": {
                    "pickups": 58,
                    "notifications": 112,
                    "apps": [{"bundleId": "com.notion.iOS", "appName": "Notion",
                              "minutes": 42, "startedAt": "2026-02-23T09:00:00+00:00"}]
                }
            }
        }
    """

    def __init__(self, export_path: Path | str) -> None:
        self._export = ExportFile(export_path, self.FEATURE, "screen-time")

    async def _day(self, day: date) -> dict:
        doc = await self._export.load()
        return (doc.get("days", {}) or {}).get(day.isoformat(), {}) or {}

    async def is_supported(self) -> bool:
        if not self._export.exists():
            return False
        try:
            return bool((await self._export.load()).get("supported", True))
        except (CapabilityUnavailable, ValueError):
            return False

    async def request_authorization(self) -> CapabilityStatus:
        try:
            await self._export.load()
        except CapabilityUnavailable as exc:
            return CapabilityStatus.DENIED if exc.reason == "denied" else CapabilityStatus.UNAVAILABLE
        return CapabilityStatus.GRANTED

    async def app_usage(self, day: date) -> list[AppUsageRecord]:
        records: list[AppUsageRecord] = []
        for app in (await self._day(day)).get("apps", []) or []:
            if not isinstance(app, dict) or not app.get("bundleId"):
                continue
            records.append(
                AppUsageRecord(
                    bundle_id=str(app["bundleId"]),
                    app_name=str(app.get("appName", "")),
                    minutes=metric_value(app.get("minutes")),
                    started_at=parse_iso_datetime(app.get("startedAt")),
                    pickups=int(metric_value(app.get("pickups"))),
                )
            )
        return records

    async def pickups(self, day: date) -> int:
        return int(metric_value((await self._day(day)).get("pickups")))

    async def notifications(self, day: date) -> int:
        return int(metric_value((await self._day(day)).get("notifications")))


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class UsageSampleProvider:
    """Reads one day's device usage and derives focus sessions.

    Usage::

        provider = UsageSampleProvider(UsageExportCapability(path), user_id="user-1")
        if await provider.initialize():
            sample = await provider.fetch_today()
    """

    def __init__(
        self,
        capability: UsageCapability,
        user_id: str,
        categorizer: AppCategorizer | None = None,
        *,
        focus_session_minutes: float | None = None,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._capability = capability
        self._user_id = user_id
        self._categorizer = categorizer or AppCategorizer.from_config()
        self._focus_minutes = (
            focus_session_minutes
            if focus_session_minutes is not None
            else get_scoring_config().focus_session_minutes
        )
        self._today = today
        self._status: CapabilityStatus | None = None

    @property
    def status(self) -> CapabilityStatus | None:
        return self._status

    @property
    def available(self) -> bool:
        return self._status is not None and self._status.is_granted

    async def initialize(self) -> bool:
        """Return True when usage data can be read.

        False is a normal outcome (unsupported platform or no permission);
        it never raises.
        """
        try:
            if not await self._capability.is_supported():
                logger.info("Screen-time tracking is not supported on this platform")
                self._status = CapabilityStatus.UNAVAILABLE
            else:
                self._status = await self._capability.request_authorization()
        except Exception as exc:
            logger.warning("Screen-time initialization error: %s", exc)
            self._status = CapabilityStatus.UNAVAILABLE
        return self.available

    async def fetch_today(self) -> DailyUsageSample:
        return await self.fetch_day(self._today())

    async def fetch_day(self, day: date) -> DailyUsageSample:
        """Fetch and categorize ``day``'s app usage.

        Raises:
            CapabilityUnavailable: If usage tracking is not available.
        """
        if not self.available:
            reason = self._status.value if self._status else "not initialized"
            raise CapabilityUnavailable(self._capability.FEATURE, reason)

        cap = self._capability
        records, pickups, notifications = await asyncio.gather(
            cap.app_usage(day), cap.pickups(day), cap.notifications(day),
            return_exceptions=True,
        )
        for result in (records, pickups, notifications):
            if isinstance(result, CapabilityUnavailable):
                raise result
        if isinstance(records, Exception):
            logger.warning("App usage unavailable for %s: %s", day, records)
            records = []
        if isinstance(pickups, Exception):
            logger.warning("Pickups unavailable for %s: %s", day, pickups)
            pickups = 0
        if isinstance(notifications, Exception):
            logger.warning("Notifications unavailable for %s: %s", day, notifications)
            notifications = 0

        intervals = self.categorize(records)

        total = sum(i.minutes_spent for i in intervals)
        productive = sum(
            i.minutes_spent for i in intervals if i.category is AppCategory.PRODUCTIVE
        )
        entertainment = sum(
            i.minutes_spent for i in intervals if i.category is AppCategory.ENTERTAINMENT
        )

        return DailyUsageSample(
            user_id=self._user_id,
            timestamp=utc_now(),
            date=day,
            total_screen_minutes=total,
            productive_minutes=productive,
            entertainment_minutes=entertainment,
            focus_session_count=count_focus_sessions(intervals, self._focus_minutes),
            pickups=pickups or sum(r.pickups for r in records),
            notifications=notifications,
            app_intervals=intervals,
        )

    def categorize(self, records: Iterable[AppUsageRecord]) -> list[AppInterval]:
        """Categorize records, in chronological order when every record has a start."""
        ordered = list(records)
        if ordered and all(r.started_at is not None for r in ordered):
            ordered.sort(key=lambda r: r.started_at)  # type: ignore[arg-type, return-value]
        return [
            AppInterval(
                app_id=r.bundle_id,
                category=self._categorizer.categorize(r.bundle_id),
                minutes_spent=metric_value(r.minutes),
                app_name=r.app_name,
                started_at=r.started_at,
            )
            for r in ordered
        ]
