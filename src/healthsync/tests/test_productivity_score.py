"""Tests for the productivity score engine."""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from src.healthsync.config_loader import ScoringConfig
from src.healthsync.productivity_score import (
    ProductivityScore,
    ScoreBreakdown,
    compute_productivity_score,
    compute_streak,
    score_label,
)
from src.healthsync.tests.conftest import (
    TEST_DATE,
    TEST_USER_ID,
    make_health_sample,
    make_usage_sample,
)


class TestConcreteScenarios:
    def test_full_day_clamps_to_100(self, scoring_config: ScoringConfig) -> None:
        """50 + 20 + 15 + 15 + (10 + 3) = 113, clamped to 100."""
        health = make_health_sample(steps=10000, sleep_hours=8, workout_count=1, workout_minutes=45)
        usage = make_usage_sample(focus_sessions=4)

        result = compute_productivity_score(health, usage, config=scoring_config)

        assert result.score == 100
        assert result.breakdown == ScoreBreakdown(steps=20, sleep=15, focus=15, workout=13)
        assert result.user_id == TEST_USER_ID
        assert result.date == TEST_DATE

    def test_all_penalties_apply(self, scoring_config: ScoringConfig) -> None:
        """50 + 0 + 0 + 0 + 0 - 10 - 10 - 5 = 25."""
        health = make_health_sample(
            steps=3000, sleep_hours=5, deep_sleep_hours=1.0, rem_sleep_hours=1.0,
            workout_count=0, workout_minutes=0,
        )

        result = compute_productivity_score(health, None, config=scoring_config)

        assert result.score == 25
        assert result.breakdown == ScoreBreakdown(steps=0, sleep=0, focus=0, workout=0)

    def test_mid_range_day(self, scoring_config: ScoringConfig) -> None:
        """50 + 15 + 10 + 10 + 0 - 5 (no workout) = 80."""
        health = make_health_sample(steps=8000, sleep_hours=7.2, workout_count=0, workout_minutes=0)
        usage = make_usage_sample(focus_sessions=2)

        result = compute_productivity_score(health, usage, config=scoring_config)

        assert result.score == 80


class TestComponents:
    def test_steps_component_monotonic(self, scoring_config: ScoringConfig) -> None:
        previous = -1
        for steps in range(0, 20001, 250):
            component = compute_productivity_score(
                make_health_sample(steps=steps), config=scoring_config
            ).breakdown.steps
            assert component in {0, 10, 15, 20}
            assert component >= previous
            previous = component

    @pytest.mark.parametrize(
        ("steps", "expected"),
        [(4999, 0), (5000, 10), (7499, 10), (7500, 15), (9999, 15), (10000, 20)],
    )
    def test_steps_tier_boundaries(
        self, scoring_config: ScoringConfig, steps: int, expected: int
    ) -> None:
        result = compute_productivity_score(make_health_sample(steps=steps), config=scoring_config)
        assert result.breakdown.steps == expected

    @pytest.mark.parametrize(("sessions", "expected"), [(0, 0), (1, 5), (2, 10), (3, 10), (4, 15), (9, 15)])
    def test_focus_tiers(self, scoring_config: ScoringConfig, sessions: int, expected: int) -> None:
        result = compute_productivity_score(
            make_health_sample(), make_usage_sample(focus_sessions=sessions), config=scoring_config
        )
        assert result.breakdown.focus == expected

    def test_focus_is_zero_without_usage(self, scoring_config: ScoringConfig) -> None:
        result = compute_productivity_score(make_health_sample(), None, config=scoring_config)
        assert result.breakdown.focus == 0

    @pytest.mark.parametrize(
        ("count", "minutes", "expected"),
        [(0, 0, 0), (1, 20, 10), (1, 30, 13), (1, 59, 13), (2, 60, 15), (3, 240, 15)],
    )
    def test_workout_component(
        self, scoring_config: ScoringConfig, count: int, minutes: float, expected: int
    ) -> None:
        health = make_health_sample(workout_count=count, workout_minutes=minutes)
        result = compute_productivity_score(health, config=scoring_config)
        assert result.breakdown.workout == expected
        assert result.breakdown.workout <= 20


class TestRobustness:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"steps": -5000, "sleep_hours": -2.0, "workout_count": -1, "workout_minutes": -30.0},
            {"steps": 10**12, "sleep_hours": 1e9, "workout_count": 10**6, "workout_minutes": 1e12},
            {"steps": math.nan, "sleep_hours": math.inf, "workout_count": math.nan, "workout_minutes": -math.inf},
        ],
    )
    def test_score_always_clamped(self, scoring_config: ScoringConfig, overrides: dict) -> None:
        health = make_health_sample(**overrides)
        usage = make_usage_sample(focus_sessions=10**6)
        result = compute_productivity_score(health, usage, config=scoring_config)
        assert 0 <= result.score <= 100
        b = result.breakdown
        assert min(b.steps, b.sleep, b.focus, b.workout) >= 0

    def test_negative_values_default_to_zero(self, scoring_config: ScoringConfig) -> None:
        """Negative raw values score exactly like zeros."""
        negative = make_health_sample(steps=-1, sleep_hours=-1, workout_count=-1, workout_minutes=-1)
        zero = make_health_sample(steps=0, sleep_hours=0, workout_count=0, workout_minutes=0)
        assert (
            compute_productivity_score(negative, config=scoring_config).score
            == compute_productivity_score(zero, config=scoring_config).score
        )

    def test_idempotent(self, scoring_config: ScoringConfig) -> None:
        health = make_health_sample(steps=6400, sleep_hours=6.5)
        usage = make_usage_sample(focus_sessions=1)
        history = {TEST_DATE - timedelta(days=1): 88.0}

        first = compute_productivity_score(health, usage, history=history, config=scoring_config)
        second = compute_productivity_score(health, usage, history=history, config=scoring_config)

        assert first == second
        assert isinstance(first, ProductivityScore)

    def test_inputs_not_mutated(self, scoring_config: ScoringConfig) -> None:
        health = make_health_sample(steps=-10)
        compute_productivity_score(health, config=scoring_config)
        assert health.steps == -10


class TestStreak:
    def test_counts_consecutive_prior_days(self) -> None:
        history = {
            TEST_DATE - timedelta(days=1): 80,
            TEST_DATE - timedelta(days=2): 75,
            TEST_DATE - timedelta(days=3): 65,
            TEST_DATE - timedelta(days=4): 95,
        }
        assert compute_streak(TEST_DATE, history) == 2

    def test_gap_breaks_streak(self) -> None:
        history = {
            TEST_DATE - timedelta(days=1): 90,
            TEST_DATE - timedelta(days=3): 90,
        }
        assert compute_streak(TEST_DATE, history) == 1

    def test_threshold_is_exclusive(self) -> None:
        assert compute_streak(TEST_DATE, {TEST_DATE - timedelta(days=1): 70}) == 0

    def test_today_not_counted(self) -> None:
        assert compute_streak(TEST_DATE, {TEST_DATE: 99}) == 0

    def test_empty_history(self) -> None:
        assert compute_streak(TEST_DATE, None) == 0
        assert compute_streak(TEST_DATE, {}) == 0

    def test_streak_in_score(self, scoring_config: ScoringConfig) -> None:
        history = {TEST_DATE - timedelta(days=d): 85 for d in range(1, 6)}
        result = compute_productivity_score(make_health_sample(), history=history, config=scoring_config)
        assert result.streak_days == 5


class TestScoreLabel:
    @pytest.mark.parametrize(
        ("score", "label"),
        [(100, "Excellent"), (90, "Excellent"), (85, "Great"), (70, "Good"),
         (65, "Fair"), (50, "Average"), (49, "Needs Improvement"), (0, "Needs Improvement")],
    )
    def test_labels(self, scoring_config: ScoringConfig, score: int, label: str) -> None:
        assert score_label(score, scoring_config) == label
