"""Canonical data models and capability interfaces for HealthSync.

The two capability ABCs (``HealthCapability`` and ``UsageCapability``) are
the only boundary to the platform.  Providers wrap them and return the
canonical ``DailyHealthSample`` / ``DailyUsageSample`` records, which are
the single source of truth consumed by the score engines, the sync
coordinator and the wire layer.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

logger = logging.getLogger("healthsync")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Current UTC calendar day, the day every sample is keyed by."""
    return utc_now().date()


# ---------------------------------------------------------------------------
# Capability outcome
# ---------------------------------------------------------------------------


class CapabilityStatus(str, Enum):
    """Three-way outcome of asking the platform for a capability."""

    GRANTED = "granted"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"

    @property
    def is_granted(self) -> bool:
        return self is CapabilityStatus.GRANTED


class AppCategory(str, Enum):
    PRODUCTIVE = "productive"
    ENTERTAINMENT = "entertainment"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Raw capability records
# ---------------------------------------------------------------------------


@dataclass
class SleepSegment:
    """One sleep-analysis sample from the health capability.

    Attributes:
        start: Segment start.
        end:   Segment end.
        stage: 'asleep' (unspecified), 'core', 'deep', 'rem', 'awake' or 'in_bed'.
    """

    start: datetime
    end: datetime
    stage: str = "asleep"

    @property
    def hours(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0) / 3600.0

    @property
    def is_asleep(self) -> bool:
        return self.stage not in ("awake", "in_bed")


@dataclass
class WorkoutSession:
    start: datetime
    end: datetime
    activity_type: str = "other"

    @property
    def minutes(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0) / 60.0


@dataclass
class AppUsageRecord:
    """One app-usage interval as reported by the usage capability.

    Attributes:
        bundle_id:  Platform app identifier (e.g. 'com.notion.iOS').
        minutes:    Foreground minutes in this interval.
        app_name:   Display name, if reported.
        started_at: Interval start, used for chronological ordering.
        pickups:    Device pickups attributed to this app.
    """

    bundle_id: str
    minutes: float
    app_name: str = ""
    started_at: datetime | None = None
    pickups: int = 0


# ---------------------------------------------------------------------------
# Canonical daily samples
# ---------------------------------------------------------------------------


@dataclass
class DailyHealthSample:
    """Canonical daily biometric record.

    ``date`` keys at most one sample per user per day.  Hours and minutes are
    floats; counts are ints.  Metrics the capability cannot provide are 0.
    """

    user_id: str
    timestamp: datetime
    date: date
    steps: int = 0
    steps_goal: int = 10000
    distance_meters: float = 0.0
    active_energy_kcal: float = 0.0
    heart_rate_bpm: float = 0.0
    heart_rate_variability: float = 0.0
    sleep_hours: float = 0.0
    sleep_goal_hours: float = 8.0
    deep_sleep_hours: float = 0.0
    rem_sleep_hours: float = 0.0
    workout_count: int = 0
    workout_minutes: float = 0.0


@dataclass
class AppInterval:
    """A categorized app-usage interval inside a ``DailyUsageSample``."""

    app_id: str
    category: AppCategory
    minutes_spent: float
    app_name: str = ""
    started_at: datetime | None = None


@dataclass
class DailyUsageSample:
    """Canonical daily device-usage record.

    Invariant: productive_minutes + entertainment_minutes <= total_screen_minutes.
    """

    user_id: str
    timestamp: datetime
    date: date
    total_screen_minutes: float = 0.0
    productive_minutes: float = 0.0
    entertainment_minutes: float = 0.0
    focus_session_count: int = 0
    pickups: int = 0
    notifications: int = 0
    app_intervals: list[AppInterval] = field(default_factory=list)

    @classmethod
    def empty(cls, user_id: str, day: date) -> "DailyUsageSample":
        """Zero-filled sample for platforms without usage tracking."""
        return cls(user_id=user_id, timestamp=utc_now(), date=day)


# ---------------------------------------------------------------------------
# Sync bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class SyncState:
    """Process-wide sync status, persisted under the ``sync_state`` key.

    Attributes:
        last_sync:  Instant of the last fully successful sync.
        is_syncing: True only while one sync is in flight.
        error:      Message of the last failure, None after a success.
        error_kind: ``SyncError.kind`` of the last failure.
    """

    last_sync: datetime | None = None
    is_syncing: bool = False
    error: str | None = None
    error_kind: str | None = None

    def to_json(self) -> dict:
        return {
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "isSyncing": self.is_syncing,
            "error": self.error,
            "errorKind": self.error_kind,
        }

    @classmethod
    def from_json(cls, data: dict | None) -> "SyncState":
        state = cls()
        if not data:
            return state
        if last := data.get("lastSync"):
            try:
                state.last_sync = datetime.fromisoformat(last)
            except ValueError:
                logger.warning("Discarding unparseable lastSync: %r", last)
        state.is_syncing = bool(data.get("isSyncing", False))
        state.error = data.get("error")
        state.error_kind = data.get("errorKind")
        return state


@dataclass
class RetryQueueEntry:
    enqueued_at: datetime
    failure_reason: str
    error_kind: str = "unknown"

    def to_json(self) -> dict:
        return {
            "enqueuedAt": self.enqueued_at.isoformat(),
            "failureReason": self.failure_reason,
            "errorKind": self.error_kind,
        }

    @classmethod
    def from_json(cls, data: dict) -> "RetryQueueEntry":
        return cls(
            enqueued_at=datetime.fromisoformat(data["enqueuedAt"]),
            failure_reason=data.get("failureReason", ""),
            error_kind=data.get("errorKind", "unknown"),
        )


# ---------------------------------------------------------------------------
# Capability interfaces
# ---------------------------------------------------------------------------


class HealthCapability(ABC):
    """Platform source of daily biometrics.

    Every per-metric getter is keyed by calendar day and may fail on its own
    without affecting its siblings.  A getter raises
    ``CapabilityUnavailable`` only when the platform itself is unreachable.
    """

    #: Feature slug used for permission bookkeeping.
    FEATURE: str = "health"

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if the platform exposes health data at all."""

    @abstractmethod
    async def request_authorization(self) -> CapabilityStatus:
        """Ask for read access.  Never returns UNAVAILABLE when is_available()."""

    @abstractmethod
    async def step_count(self, day: date) -> float: ...

    @abstractmethod
    async def distance_meters(self, day: date) -> float: ...

    @abstractmethod
    async def active_energy_kcal(self, day: date) -> float: ...

    @abstractmethod
    async def heart_rate_bpm(self, day: date) -> float:
        """Most recent heart-rate reading of the day."""

    @abstractmethod
    async def sleep_segments(self, day: date) -> list[SleepSegment]: ...

    @abstractmethod
    async def workouts(self, day: date) -> list[WorkoutSession]: ...

    async def heart_rate_variability_ms(self, day: date) -> float | None:
        """HRV for the day.  Not every platform records it; default None."""
        return None


class UsageCapability(ABC):
    """Platform source of screen-time data."""

    FEATURE: str = "usage"

    @abstractmethod
    async def is_supported(self) -> bool:
        """False on platforms / OS versions without usage tracking."""

    @abstractmethod
    async def request_authorization(self) -> CapabilityStatus: ...

    @abstractmethod
    async def app_usage(self, day: date) -> list[AppUsageRecord]: ...

    async def pickups(self, day: date) -> int:
        return 0

    async def notifications(self, day: date) -> int:
        return 0


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def metric_value(value: object) -> float:
    """Coerce a raw metric to a finite, non-negative float (0.0 on failure)."""
    if value is None:
        return 0.0
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 or Apple-export datetime string.

    Accepts both ``2026-02-23T06:45:00+00:00`` and the export style
    ``2026-02-23 06:45:00 +0000``.  Returns None if unparseable.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        logger.warning("Could not parse datetime string: %r", value)
        return None
