"""Shared fixtures, fake capabilities and sample builders for HealthSync tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.healthsync.base import (
    AppCategory,
    AppInterval,
    AppUsageRecord,
    CapabilityStatus,
    DailyHealthSample,
    DailyUsageSample,
    HealthCapability,
    SleepSegment,
    UsageCapability,
    WorkoutSession,
)
from src.healthsync.config_loader import ScoringConfig, load_scoring_config
from src.healthsync.providers.apple_health import HealthSampleProvider
from src.healthsync.providers.screen_time import AppCategorizer, UsageSampleProvider
from src.healthsync.sync.coordinator import SyncCoordinator
from src.healthsync.sync.dashboard_client import DashboardClient
from src.healthsync.sync.state_store import InMemoryStateStore

# Canonical test identity and dates
TEST_USER_ID = "user_2xTestUser"
TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)
TEST_BIRTH_YEAR = 1986


def _at(hour: int, minute: int = 0, day: date = TEST_DATE) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------


def make_health_sample(**overrides) -> DailyHealthSample:
    """A realistic day: 10k steps, 8h sleep, one 45-minute workout."""
    values = dict(
        user_id=TEST_USER_ID,
        timestamp=TEST_NOW,
        date=TEST_DATE,
        steps=10000,
        distance_meters=7800.0,
        active_energy_kcal=480.0,
        heart_rate_bpm=58.0,
        heart_rate_variability=52.0,
        sleep_hours=8.0,
        deep_sleep_hours=1.5,
        rem_sleep_hours=1.75,
        workout_count=1,
        workout_minutes=45.0,
    )
    values.update(overrides)
    return DailyHealthSample(**values)


def make_usage_sample(focus_sessions: int = 4, **overrides) -> DailyUsageSample:
    values = dict(
        user_id=TEST_USER_ID,
        timestamp=TEST_NOW,
        date=TEST_DATE,
        total_screen_minutes=240.0,
        productive_minutes=150.0,
        entertainment_minutes=60.0,
        focus_session_count=focus_sessions,
        pickups=55,
        notifications=120,
        app_intervals=[
            AppInterval(app_id="com.notion.iOS", category=AppCategory.PRODUCTIVE, minutes_spent=150.0),
            AppInterval(app_id="com.netflix.Netflix", category=AppCategory.ENTERTAINMENT, minutes_spent=60.0),
            AppInterval(app_id="com.apple.mobilesafari", category=AppCategory.NEUTRAL, minutes_spent=30.0),
        ],
    )
    values.update(overrides)
    return DailyUsageSample(**values)


def default_sleep_segments() -> list[SleepSegment]:
    """7.5h asleep ending on TEST_DATE: 1.5h deep, 1.5h REM, plus 15 min awake."""
    prev = TEST_DATE - timedelta(days=1)
    return [
        SleepSegment(start=_at(22, 30, prev), end=_at(2, 0), stage="core"),
        SleepSegment(start=_at(2, 0), end=_at(3, 30), stage="deep"),
        SleepSegment(start=_at(3, 30), end=_at(5, 0), stage="rem"),
        SleepSegment(start=_at(5, 0), end=_at(6, 0), stage="core"),
        SleepSegment(start=_at(6, 0), end=_at(6, 15), stage="awake"),
    ]


def default_usage_records() -> list[AppUsageRecord]:
    """Notion 45 → Netflix 20 → Slack 35 → Safari 15 (two focus sessions)."""
    return [
        AppUsageRecord(bundle_id="com.notion.iOS", app_name="Notion", minutes=45, started_at=_at(9)),
        AppUsageRecord(bundle_id="com.netflix.Netflix", app_name="Netflix", minutes=20, started_at=_at(10)),
        AppUsageRecord(bundle_id="com.slack.Slack", app_name="Slack", minutes=35, started_at=_at(11)),
        AppUsageRecord(bundle_id="com.apple.mobilesafari", app_name="Safari", minutes=15, started_at=_at(12)),
    ]


# ---------------------------------------------------------------------------
# Fake capabilities
# ---------------------------------------------------------------------------


class FakeHealthCapability(HealthCapability):
    """In-memory health capability; any metric named in ``failing`` raises."""

    def __init__(
        self,
        *,
        steps: float = 10000,
        distance: float = 7800.0,
        energy: float = 480.0,
        heart_rate: float = 58.0,
        hrv: float | None = 52.0,
        sleep: list[SleepSegment] | None = None,
        workouts: list[WorkoutSession] | None = None,
        available: bool = True,
        authorization: CapabilityStatus = CapabilityStatus.GRANTED,
        failing: tuple[str, ...] = (),
        failure: Exception | None = None,
    ) -> None:
        self.steps = steps
        self.distance = distance
        self.energy = energy
        self.heart_rate = heart_rate
        self.hrv = hrv
        self.sleep = default_sleep_segments() if sleep is None else sleep
        self.workouts_list = (
            [WorkoutSession(start=_at(17), end=_at(17, 45), activity_type="running")]
            if workouts is None
            else workouts
        )
        self.available = available
        self.authorization = authorization
        self.failing = set(failing)
        self.failure = failure or RuntimeError("metric query failed")

    def _check(self, metric: str) -> None:
        if metric in self.failing:
            raise self.failure

    async def is_available(self) -> bool:
        return self.available

    async def request_authorization(self) -> CapabilityStatus:
        return self.authorization

    async def step_count(self, day: date) -> float:
        self._check("steps")
        return self.steps

    async def distance_meters(self, day: date) -> float:
        self._check("distance")
        return self.distance

    async def active_energy_kcal(self, day: date) -> float:
        self._check("active_energy")
        return self.energy

    async def heart_rate_bpm(self, day: date) -> float:
        self._check("heart_rate")
        return self.heart_rate

    async def heart_rate_variability_ms(self, day: date) -> float | None:
        self._check("hrv")
        return self.hrv

    async def sleep_segments(self, day: date) -> list[SleepSegment]:
        self._check("sleep")
        return list(self.sleep)

    async def workouts(self, day: date) -> list[WorkoutSession]:
        self._check("workouts")
        return list(self.workouts_list)


class FakeUsageCapability(UsageCapability):
    def __init__(
        self,
        records: list[AppUsageRecord] | None = None,
        *,
        supported: bool = True,
        authorization: CapabilityStatus = CapabilityStatus.GRANTED,
        pickups: int = 48,
        notifications: int = 96,
        failing: tuple[str, ...] = (),
    ) -> None:
        self.records = default_usage_records() if records is None else records
        self.supported = supported
        self.authorization = authorization
        self.pickup_count = pickups
        self.notification_count = notifications
        self.failing = set(failing)

    def _check(self, metric: str) -> None:
        if metric in self.failing:
            raise RuntimeError(f"{metric} query failed")

    async def is_supported(self) -> bool:
        return self.supported

    async def request_authorization(self) -> CapabilityStatus:
        return self.authorization

    async def app_usage(self, day: date) -> list[AppUsageRecord]:
        self._check("app_usage")
        return list(self.records)

    async def pickups(self, day: date) -> int:
        self._check("pickups")
        return self.pickup_count

    async def notifications(self, day: date) -> int:
        self._check("notifications")
        return self.notification_count


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime = TEST_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scoring_config() -> ScoringConfig:
    """Load the real scoring config for tests."""
    return load_scoring_config()


@pytest.fixture
def health_sample() -> DailyHealthSample:
    return make_health_sample()


@pytest.fixture
def usage_sample() -> DailyUsageSample:
    return make_usage_sample()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def health_capability() -> FakeHealthCapability:
    return FakeHealthCapability()


@pytest.fixture
def usage_capability() -> FakeUsageCapability:
    return FakeUsageCapability()


@pytest.fixture
def health_provider(health_capability: FakeHealthCapability) -> HealthSampleProvider:
    return HealthSampleProvider(health_capability, TEST_USER_ID, today=lambda: TEST_DATE)


@pytest.fixture
def usage_provider(
    usage_capability: FakeUsageCapability, scoring_config: ScoringConfig
) -> UsageSampleProvider:
    return UsageSampleProvider(
        usage_capability,
        TEST_USER_ID,
        AppCategorizer.from_config(scoring_config),
        focus_session_minutes=scoring_config.focus_session_minutes,
        today=lambda: TEST_DATE,
    )


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def mock_dashboard() -> MagicMock:
    """Mock DashboardClient whose pushes succeed and reads return nothing."""
    dashboard = MagicMock(spec=DashboardClient)
    dashboard.post_health = AsyncMock(return_value=None)
    dashboard.post_usage = AsyncMock(return_value=None)
    dashboard.post_score = AsyncMock(return_value=None)
    dashboard.get_latest_health = AsyncMock(return_value=None)
    dashboard.get_latest_score = AsyncMock(return_value=None)
    return dashboard


@pytest.fixture
def coordinator(
    health_provider: HealthSampleProvider,
    usage_provider: UsageSampleProvider,
    mock_dashboard: MagicMock,
    state_store: InMemoryStateStore,
    scoring_config: ScoringConfig,
    clock: FakeClock,
) -> SyncCoordinator:
    """Coordinator over fakes; call ``await coordinator.initialize()`` first."""
    return SyncCoordinator(
        health_provider,
        usage_provider,
        mock_dashboard,
        state_store,
        user_id=TEST_USER_ID,
        birth_year=TEST_BIRTH_YEAR,
        config=scoring_config,
        clock=clock,
    )
