"""Pydantic wire schemas for the dashboard sync contract.

Bodies posted to / read from the dashboard:

    POST /health/sync         HealthSampleWire
    POST /screentime/sync     UsageSampleWire
    POST /productivity/score  ProductivityScoreWire
    GET  /health/latest       HealthSampleWire
    GET  /productivity/score  ProductivityScoreWire

The same schemas serialize the last-known-good entities cached in the
local state store.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field, model_validator

from src.healthsync.base import AppCategory, AppInterval, DailyHealthSample, DailyUsageSample
from src.healthsync.productivity_score import ProductivityScore, ScoreBreakdown
from src.healthsync.vitality_score import VitalityScore
from src.models.base import WireBase

# Rounding slack when checking sub-totals against totals
_EPSILON = 0.01


# ---------- Health ----------

class HealthSampleWire(WireBase):
    user_id: str
    timestamp: datetime
    date: date
    steps: int = Field(default=0, ge=0)
    steps_goal: int = Field(default=10000, ge=0)
    distance_meters: float = Field(default=0.0, ge=0)
    active_energy_kcal: float = Field(default=0.0, ge=0)
    heart_rate_bpm: float = Field(default=0.0, ge=0)
    heart_rate_variability: float = Field(default=0.0, ge=0)
    sleep_hours: float = Field(default=0.0, ge=0)
    sleep_goal_hours: float = Field(default=8.0, ge=0)
    deep_sleep_hours: float = Field(default=0.0, ge=0)
    rem_sleep_hours: float = Field(default=0.0, ge=0)
    workout_count: int = Field(default=0, ge=0)
    workout_minutes: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _sleep_stages_within_total(self) -> "HealthSampleWire":
        if self.deep_sleep_hours + self.rem_sleep_hours > self.sleep_hours + _EPSILON:
            raise ValueError("deep + REM sleep exceeds total sleep")
        return self

    @classmethod
    def from_domain(cls, sample: DailyHealthSample) -> "HealthSampleWire":
        return cls.model_validate(sample)

    def to_domain(self) -> DailyHealthSample:
        return DailyHealthSample(**self.model_dump())


# ---------- Screen time ----------

class AppIntervalWire(WireBase):
    app_id: str
    category: AppCategory
    minutes_spent: float = Field(ge=0)
    app_name: str = ""
    started_at: datetime | None = None


class UsageSampleWire(WireBase):
    user_id: str
    timestamp: datetime
    date: date
    total_screen_minutes: float = Field(default=0.0, ge=0)
    productive_minutes: float = Field(default=0.0, ge=0)
    entertainment_minutes: float = Field(default=0.0, ge=0)
    focus_session_count: int = Field(default=0, ge=0)
    pickups: int = Field(default=0, ge=0)
    notifications: int = Field(default=0, ge=0)
    app_intervals: list[AppIntervalWire] = Field(default_factory=list)

    @model_validator(mode="after")
    def _categories_within_total(self) -> "UsageSampleWire":
        if self.productive_minutes + self.entertainment_minutes > self.total_screen_minutes + _EPSILON:
            raise ValueError("productive + entertainment minutes exceed total screen time")
        return self

    @classmethod
    def from_domain(cls, sample: DailyUsageSample) -> "UsageSampleWire":
        return cls.model_validate(sample)

    def to_domain(self) -> DailyUsageSample:
        data = self.model_dump(exclude={"app_intervals"})
        return DailyUsageSample(
            **data,
            app_intervals=[AppInterval(**i.model_dump()) for i in self.app_intervals],
        )


# ---------- Productivity score ----------

class ScoreBreakdownWire(WireBase):
    steps_component: int = Field(ge=0)
    sleep_component: int = Field(ge=0)
    focus_component: int = Field(ge=0)
    workout_component: int = Field(ge=0)


class ProductivityScoreWire(WireBase):
    user_id: str
    date: date
    score: int = Field(ge=0, le=100)
    breakdown: ScoreBreakdownWire
    streak_days: int = Field(default=0, ge=0)

    @classmethod
    def from_domain(cls, score: ProductivityScore) -> "ProductivityScoreWire":
        b = score.breakdown
        return cls(
            user_id=score.user_id,
            date=score.date,
            score=score.score,
            breakdown=ScoreBreakdownWire(
                steps_component=b.steps,
                sleep_component=b.sleep,
                focus_component=b.focus,
                workout_component=b.workout,
            ),
            streak_days=score.streak_days,
        )

    def to_domain(self) -> ProductivityScore:
        b = self.breakdown
        return ProductivityScore(
            user_id=self.user_id,
            date=self.date,
            score=self.score,
            breakdown=ScoreBreakdown(
                steps=b.steps_component,
                sleep=b.sleep_component,
                focus=b.focus_component,
                workout=b.workout_component,
            ),
            streak_days=self.streak_days,
        )


# ---------- Vitality (local API only) ----------

class ComponentScoreWire(WireBase):
    value: float
    score: int = Field(ge=0, le=100)
    available: bool = True


class RecommendationWire(WireBase):
    type: str
    priority: str
    message: str
    action: str
    metric: str = ""


class VitalityScoreWire(WireBase):
    biological_age: float
    chronological_age: int
    aging_rate: float = Field(gt=0)
    aging_band: str = ""
    score: int = Field(ge=0, le=100)
    components: dict[str, ComponentScoreWire] = Field(default_factory=dict)
    recommendations: list[RecommendationWire] = Field(default_factory=list)
    window_days: int = 0

    @classmethod
    def from_domain(cls, vitality: VitalityScore, aging_band: str = "") -> "VitalityScoreWire":
        wire = cls.model_validate(vitality)
        wire.aging_band = aging_band
        return wire


# ---------- Local sync API ----------

class SyncStateWire(WireBase):
    last_sync: datetime | None = None
    is_syncing: bool = False
    error: str | None = None
    error_kind: str | None = None


class RetryQueueEntryWire(WireBase):
    enqueued_at: datetime
    failure_reason: str
    error_kind: str = "unknown"


class RetryReportWire(WireBase):
    attempted: int
    resolved: int
    remaining: int
    state: SyncStateWire | None = None


class TriggerResultWire(WireBase):
    result: str
    state: SyncStateWire
