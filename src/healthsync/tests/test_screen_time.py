"""Tests for app categorization, focus-session derivation and the usage provider."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.healthsync.base import AppCategory, AppInterval, CapabilityStatus
from src.healthsync.config_loader import ScoringConfig
from src.healthsync.errors import CapabilityUnavailable
from src.healthsync.providers.screen_time import (
    AppCategorizer,
    UsageExportCapability,
    UsageSampleProvider,
    count_focus_sessions,
    iter_focus_sessions,
)
from src.healthsync.tests.conftest import (
    TEST_DATE,
    TEST_USER_ID,
    FakeUsageCapability,
    default_usage_records,
)


def _interval(category: AppCategory, minutes: float) -> AppInterval:
    return AppInterval(app_id=f"app.{category.value}", category=category, minutes_spent=minutes)


P, E, N = AppCategory.PRODUCTIVE, AppCategory.ENTERTAINMENT, AppCategory.NEUTRAL


class TestAppCategorizer:
    def test_config_lists(self, scoring_config: ScoringConfig) -> None:
        categorizer = AppCategorizer.from_config(scoring_config)
        assert categorizer.categorize("com.notion.iOS") is P
        assert categorizer.categorize("com.slack.Slack") is P
        assert categorizer.categorize("com.netflix.Netflix") is E
        assert categorizer.categorize("com.apple.mobilesafari") is N

    def test_injected_lists(self) -> None:
        categorizer = AppCategorizer(productive=["org.vim"], entertainment=["com.game"])
        assert categorizer.categorize("org.vim.MacVim") is P
        assert categorizer.categorize("com.game.arcade") is E
        assert categorizer.categorize("com.notion.iOS") is N


class TestFocusSessions:
    def test_reference_sequence(self) -> None:
        """[P15, P20, E5, P30] → 35 ≥ 30 (session), reset, 30 ≥ 30 (session)."""
        intervals = [_interval(P, 15), _interval(P, 20), _interval(E, 5), _interval(P, 30)]
        assert count_focus_sessions(intervals) == 2
        assert list(iter_focus_sessions(intervals)) == [35, 30]

    def test_interruption_discards_partial_run(self) -> None:
        intervals = [_interval(P, 25), _interval(N, 1), _interval(P, 25)]
        assert count_focus_sessions(intervals) == 0

    def test_long_run_counts_once_then_restarts(self) -> None:
        intervals = [_interval(P, 50), _interval(P, 10), _interval(P, 25)]
        # 50 → session, reset; 10 + 25 = 35 → session
        assert count_focus_sessions(intervals) == 2

    def test_no_partial_session_at_end(self) -> None:
        assert count_focus_sessions([_interval(P, 29.9)]) == 0

    def test_empty(self) -> None:
        assert count_focus_sessions([]) == 0

    def test_generator_is_restartable(self) -> None:
        intervals = [_interval(P, 30), _interval(P, 30)]
        assert count_focus_sessions(intervals) == count_focus_sessions(intervals) == 2

    def test_custom_threshold(self) -> None:
        intervals = [_interval(P, 20), _interval(P, 20)]
        assert count_focus_sessions(intervals, threshold_minutes=20) == 2


class TestUsageSampleProvider:
    @pytest.mark.asyncio
    async def test_fetch_today(self, usage_provider: UsageSampleProvider) -> None:
        assert await usage_provider.initialize() is True
        sample = await usage_provider.fetch_today()

        assert sample.user_id == TEST_USER_ID
        assert sample.date == TEST_DATE
        assert sample.total_screen_minutes == pytest.approx(115)
        assert sample.productive_minutes == pytest.approx(80)
        assert sample.entertainment_minutes == pytest.approx(20)
        assert sample.focus_session_count == 2
        assert sample.pickups == 48
        assert sample.notifications == 96
        assert [i.app_id for i in sample.app_intervals] == [
            "com.notion.iOS", "com.netflix.Netflix", "com.slack.Slack", "com.apple.mobilesafari",
        ]

    @pytest.mark.asyncio
    async def test_orders_intervals_chronologically(self, scoring_config: ScoringConfig) -> None:
        records = list(reversed(default_usage_records()))
        provider = UsageSampleProvider(
            FakeUsageCapability(records),
            TEST_USER_ID,
            AppCategorizer.from_config(scoring_config),
            focus_session_minutes=30,
            today=lambda: TEST_DATE,
        )
        await provider.initialize()
        sample = await provider.fetch_today()
        assert sample.app_intervals[0].app_id == "com.notion.iOS"
        assert sample.focus_session_count == 2

    @pytest.mark.asyncio
    async def test_unsupported_platform(self, scoring_config: ScoringConfig) -> None:
        provider = UsageSampleProvider(
            FakeUsageCapability(supported=False),
            TEST_USER_ID,
            AppCategorizer.from_config(scoring_config),
            focus_session_minutes=30,
        )
        assert await provider.initialize() is False
        assert provider.status is CapabilityStatus.UNAVAILABLE
        with pytest.raises(CapabilityUnavailable):
            await provider.fetch_today()

    @pytest.mark.asyncio
    async def test_denied(self, scoring_config: ScoringConfig) -> None:
        provider = UsageSampleProvider(
            FakeUsageCapability(authorization=CapabilityStatus.DENIED),
            TEST_USER_ID,
            AppCategorizer.from_config(scoring_config),
            focus_session_minutes=30,
        )
        assert await provider.initialize() is False
        assert provider.status is CapabilityStatus.DENIED

    @pytest.mark.asyncio
    async def test_fetch_before_initialize_raises(self, usage_provider: UsageSampleProvider) -> None:
        with pytest.raises(CapabilityUnavailable):
            await usage_provider.fetch_today()

    @pytest.mark.asyncio
    async def test_failed_counters_zero_filled(self, scoring_config: ScoringConfig) -> None:
        provider = UsageSampleProvider(
            FakeUsageCapability(failing=("pickups", "notifications")),
            TEST_USER_ID,
            AppCategorizer.from_config(scoring_config),
            focus_session_minutes=30,
            today=lambda: TEST_DATE,
        )
        await provider.initialize()
        sample = await provider.fetch_today()
        assert sample.notifications == 0
        assert sample.pickups == 0
        assert sample.focus_session_count == 2


class TestUsageExportCapability:
    @pytest.fixture
    def export_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "screen_time.json"
        path.write_text(json.dumps({
            "supported": True,
            "days": {
                TEST_DATE.isoformat(): {
                    "pickups": 61,
                    "notifications": 140,
                    "apps": [
                        {"bundleId": "com.notion.iOS", "appName": "Notion", "minutes": 42,
                         "startedAt": "2026-02-23T09:00:00+00:00"},
                        {"bundleId": "com.youtube.youtube", "appName": "YouTube", "minutes": "18"},
                        {"appName": "no bundle id", "minutes": 5},
                    ],
                }
            },
        }))
        return path

    @pytest.mark.asyncio
    async def test_reads_day(self, export_file: Path) -> None:
        cap = UsageExportCapability(export_file)
        assert await cap.is_supported() is True
        assert await cap.request_authorization() is CapabilityStatus.GRANTED

        records = await cap.app_usage(TEST_DATE)
        assert [r.bundle_id for r in records] == ["com.notion.iOS", "com.youtube.youtube"]
        assert records[1].minutes == 18.0
        assert records[0].started_at is not None
        assert await cap.pickups(TEST_DATE) == 61
        assert await cap.notifications(TEST_DATE) == 140

    @pytest.mark.asyncio
    async def test_unknown_day_is_empty(self, export_file: Path) -> None:
        cap = UsageExportCapability(export_file)
        assert await cap.app_usage(TEST_DATE.replace(day=1)) == []

    @pytest.mark.asyncio
    async def test_missing_export_unavailable(self, tmp_path: Path) -> None:
        cap = UsageExportCapability(tmp_path / "missing.json")
        assert await cap.is_supported() is False
        assert await cap.request_authorization() is CapabilityStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_export_parsed_once_until_changed(
        self, export_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        reads: list[Path] = []
        original = Path.read_text

        def counting_read(self: Path, *args, **kwargs) -> str:
            reads.append(self)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(Path, "read_text", counting_read)
        cap = UsageExportCapability(export_file)

        assert await cap.is_supported() is True
        assert await cap.pickups(TEST_DATE) == 61
        assert await cap.notifications(TEST_DATE) == 140
        assert len(await cap.app_usage(TEST_DATE)) == 2
        assert reads == [export_file]

        data = json.loads(original(export_file))
        data["days"][TEST_DATE.isoformat()]["pickups"] = 7500
        export_file.write_text(json.dumps(data))

        assert await cap.pickups(TEST_DATE) == 7500
        assert reads == [export_file, export_file]
