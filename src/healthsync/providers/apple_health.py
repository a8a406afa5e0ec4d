"""Health sample provider backed by Apple Health data.

The platform capability is read from a HealthKit JSON export (the
"Health Auto Export" record format) written to disk by the companion
iOS shortcut.  ``HealthExportCapability`` answers per-metric questions
for one calendar day; ``HealthSampleProvider`` fans those questions out
concurrently and folds the answers into one ``DailyHealthSample``.

Expected export layout::

    {
        "records": [
            {"type": "HKQuantityTypeIdentifierStepCount", "value": "812",
             "startDate": "2026-02-23 08:00:00 +0000", "endDate": "..."},
            {"type": "HKCategoryTypeIdentifierSleepAnalysis",
             "value": "HKCategoryValueSleepAnalysisAsleepDeep", ...}
        ],
        "workouts": [
            {"workoutActivityType": "HKWorkoutActivityTypeRunning",
             "startDate": "...", "endDate": "..."}
        ]
    }
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timezone
from pathlib import Path
from typing import Callable

from src.healthsync.base import (
    CapabilityStatus,
    DailyHealthSample,
    HealthCapability,
    SleepSegment,
    WorkoutSession,
    metric_value,
    parse_iso_datetime,
    utc_now,
    utc_today,
)
from src.healthsync.errors import CapabilityUnavailable
from src.healthsync.providers.export_file import ExportFile

logger = logging.getLogger("healthsync.providers.apple_health")

# HKQuantityTypeIdentifier → metric
_HK_STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
_HK_DISTANCE = "HKQuantityTypeIdentifierDistanceWalkingRunning"
_HK_ACTIVE_ENERGY = "HKQuantityTypeIdentifierActiveEnergyBurned"
_HK_HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
_HK_RESTING_HR = "HKQuantityTypeIdentifierRestingHeartRate"
_HK_HRV = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
_HK_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"

# Sleep stage values from HealthKit
_SLEEP_STAGE_MAP: dict[str, str] = {
    "HKCategoryValueSleepAnalysisAsleepUnspecified": "asleep",
    "HKCategoryValueSleepAnalysisAsleep": "asleep",
    "HKCategoryValueSleepAnalysisAsleepCore": "core",
    "HKCategoryValueSleepAnalysisAsleepDeep": "deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "rem",
    "HKCategoryValueSleepAnalysisAwake": "awake",
    "HKCategoryValueSleepAnalysisInBed": "in_bed",
}


def _record_day(record: dict, key: str = "startDate") -> date | None:
    dt = parse_iso_datetime(record.get(key))
    return dt.date() if dt else None


def _record_timestamp(record: dict) -> float:
    dt = parse_iso_datetime(record.get("startDate"))
    if dt is None:
        return float("-inf")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class HealthExportCapability(HealthCapability):
    """HealthKit capability read from a JSON export file.

    A missing export means the platform is unavailable; an unreadable one
    means access was denied.
    """

    def __init__(self, export_path: Path | str) -> None:
        self._export = ExportFile(export_path, self.FEATURE, "Apple Health")

    async def is_available(self) -> bool:
        return self._export.exists()

    async def request_authorization(self) -> CapabilityStatus:
        if not self._export.exists():
            return CapabilityStatus.UNAVAILABLE
        try:
            with self._export.path.open("rb"):
                pass
        except PermissionError:
            logger.info("Apple Health export %s is not readable", self._export.path)
            return CapabilityStatus.DENIED
        return CapabilityStatus.GRANTED

    # ------------------------------------------------------------------
    # Export access
    # ------------------------------------------------------------------

    async def _records(self, hk_type: str, day: date) -> list[dict]:
        doc = await self._export.load()
        return [
            r for r in doc.get("records", []) or []
            if isinstance(r, dict) and r.get("type") == hk_type and _record_day(r) == day
        ]

    async def _sum(self, hk_type: str, day: date) -> float:
        return sum(metric_value(r.get("value")) for r in await self._records(hk_type, day))

    async def _avg(self, hk_type: str, day: date) -> float | None:
        values = [metric_value(r.get("value")) for r in await self._records(hk_type, day)]
        values = [v for v in values if v > 0]
        return sum(values) / len(values) if values else None

    # ------------------------------------------------------------------
    # HealthCapability interface
    # ------------------------------------------------------------------

    async def step_count(self, day: date) -> float:
        return await self._sum(_HK_STEP_COUNT, day)

    async def distance_meters(self, day: date) -> float:
        return await self._sum(_HK_DISTANCE, day)

    async def active_energy_kcal(self, day: date) -> float:
        return await self._sum(_HK_ACTIVE_ENERGY, day)

    async def heart_rate_bpm(self, day: date) -> float:
        """Resting heart rate when recorded, else the latest heart-rate sample."""
        resting = await self._avg(_HK_RESTING_HR, day)
        if resting is not None:
            return resting
        samples = await self._records(_HK_HEART_RATE, day)
        if not samples:
            return 0.0
        latest = max(samples, key=_record_timestamp)
        return metric_value(latest.get("value"))

    async def heart_rate_variability_ms(self, day: date) -> float | None:
        return await self._avg(_HK_HRV, day)

    async def sleep_segments(self, day: date) -> list[SleepSegment]:
        """Sleep segments that ended on ``day`` (the wake date)."""
        segments: list[SleepSegment] = []
        doc = await self._export.load()
        for rec in doc.get("records", []) or []:
            if not isinstance(rec, dict) or rec.get("type") != _HK_SLEEP_ANALYSIS:
                continue
            start = parse_iso_datetime(rec.get("startDate"))
            end = parse_iso_datetime(rec.get("endDate"))
            if start is None or end is None or end <= start or end.date() != day:
                continue
            stage = _SLEEP_STAGE_MAP.get(rec.get("value", ""), "asleep")
            segments.append(SleepSegment(start=start, end=end, stage=stage))
        return segments

    async def workouts(self, day: date) -> list[WorkoutSession]:
        sessions: list[WorkoutSession] = []
        doc = await self._export.load()
        for w in doc.get("workouts", []) or []:
            if not isinstance(w, dict):
                continue
            start = parse_iso_datetime(w.get("startDate"))
            end = parse_iso_datetime(w.get("endDate"))
            if start is None or end is None or start.date() != day:
                continue
            activity = str(w.get("workoutActivityType", "")).replace("HKWorkoutActivityType", "")
            sessions.append(
                WorkoutSession(start=start, end=end, activity_type=activity.lower() or "other")
            )
        return sessions


class HealthSampleProvider:
    """Reads one day's biometrics from a ``HealthCapability``.

    Pure data fetch: no scoring.  Each metric is fetched independently; a
    metric that fails is logged and reported as 0 so one missing metric
    never aborts the sample.

    Usage::

        provider = HealthSampleProvider(HealthExportCapability(path), user_id="user-1")
        status = await provider.initialize()
        sample = await provider.fetch_today()
    """

    def __init__(
        self,
        capability: HealthCapability,
        user_id: str,
        *,
        steps_goal: int = 10000,
        sleep_goal_hours: float = 8.0,
        today: Callable[[], date] = utc_today,
    ) -> None:
        self._capability = capability
        self._user_id = user_id
        self._steps_goal = steps_goal
        self._sleep_goal_hours = sleep_goal_hours
        self._today = today
        self._status: CapabilityStatus | None = None

    @property
    def status(self) -> CapabilityStatus | None:
        """Outcome of the last ``initialize()``; None before it ran."""
        return self._status

    async def initialize(self) -> CapabilityStatus:
        try:
            if not await self._capability.is_available():
                logger.info("Health capability is not available on this device")
                self._status = CapabilityStatus.UNAVAILABLE
            else:
                self._status = await self._capability.request_authorization()
        except CapabilityUnavailable:
            self._status = CapabilityStatus.UNAVAILABLE
        logger.info("Health capability: %s", self._status.value)
        return self._status

    async def fetch_today(self) -> DailyHealthSample:
        return await self.fetch_day(self._today())

    async def fetch_day(self, day: date) -> DailyHealthSample:
        """Fetch every metric for ``day`` concurrently.

        Raises:
            CapabilityUnavailable: If the capability was not granted or is
                unreachable.  Never raised for a single missing metric.
        """
        if self._status is None or not self._status.is_granted:
            reason = self._status.value if self._status else "not initialized"
            raise CapabilityUnavailable(self._capability.FEATURE, reason)

        cap = self._capability
        names = ("steps", "distance", "active_energy", "heart_rate", "hrv", "sleep", "workouts")
        results = await asyncio.gather(
            cap.step_count(day),
            cap.distance_meters(day),
            cap.active_energy_kcal(day),
            cap.heart_rate_bpm(day),
            cap.heart_rate_variability_ms(day),
            cap.sleep_segments(day),
            cap.workouts(day),
            return_exceptions=True,
        )

        values: dict[str, object] = {}
        for name, result in zip(names, results):
            if isinstance(result, CapabilityUnavailable):
                raise result
            if isinstance(result, Exception):
                logger.warning("Health metric %s unavailable for %s: %s", name, day, result)
                values[name] = None
            else:
                values[name] = result

        segments: list[SleepSegment] = values["sleep"] or []  # type: ignore[assignment]
        asleep = [s for s in segments if s.is_asleep]
        # Stage totals are subsets of the asleep total; keep that after rounding.
        sleep_hours = round(sum(s.hours for s in asleep), 2)
        deep_hours = min(round(sum(s.hours for s in asleep if s.stage == "deep"), 2), sleep_hours)
        rem_hours = min(
            round(sum(s.hours for s in asleep if s.stage == "rem"), 2),
            round(sleep_hours - deep_hours, 2),
        )

        sessions: list[WorkoutSession] = values["workouts"] or []  # type: ignore[assignment]

        return DailyHealthSample(
            user_id=self._user_id,
            timestamp=utc_now(),
            date=day,
            steps=int(metric_value(values["steps"])),
            steps_goal=self._steps_goal,
            distance_meters=round(metric_value(values["distance"]), 1),
            active_energy_kcal=round(metric_value(values["active_energy"]), 1),
            heart_rate_bpm=round(metric_value(values["heart_rate"]), 1),
            heart_rate_variability=round(metric_value(values["hrv"]), 1),
            sleep_hours=sleep_hours,
            sleep_goal_hours=self._sleep_goal_hours,
            deep_sleep_hours=deep_hours,
            rem_sleep_hours=rem_hours,
            workout_count=len(sessions),
            workout_minutes=round(sum(s.minutes for s in sessions), 1),
        )
