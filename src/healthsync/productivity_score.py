"""HealthSync productivity score.

Turns one day's health sample (plus the day's usage sample, when usage
tracking is available) into a 0–100 score with an auditable breakdown.

Score formula (thresholds from scoring_config.yaml):
    base 50
    + steps component      (0 / 10 / 15 / 20)
    + sleep component      (0 / 5 / 10 / 15)
    + focus component      (0 / 5 / 10 / 15, 0 without usage data)
    + workout component    (0, or 10 + duration bonus, capped at 20)
    - penalties            (-10 steps < 5000, -10 sleep < 6h, -5 no workout)
    clamped to [0, 100]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Mapping

from src.healthsync.base import DailyHealthSample, DailyUsageSample, metric_value
from src.healthsync.config_loader import ProductivityConfig, ScoringConfig, get_scoring_config

logger = logging.getLogger("healthsync.productivity")


@dataclass(frozen=True)
class ScoreBreakdown:
    steps: int = 0
    sleep: int = 0
    focus: int = 0
    workout: int = 0


@dataclass(frozen=True)
class ProductivityScore:
    """The productivity score for one user+date.

    Attributes:
        user_id:     User the score belongs to.
        date:        Calendar day scored.
        score:       Final 0–100 score.
        breakdown:   Per-component points (each >= 0).
        streak_days: Consecutive prior days with a persisted score above 70.
    """

    user_id: str
    date: date
    score: int
    breakdown: ScoreBreakdown
    streak_days: int = 0


# ---------------------------------------------------------------------------
# Component scorers
# ---------------------------------------------------------------------------


def _steps_component(steps: float, cfg: ProductivityConfig) -> int:
    return int(cfg.steps.lookup(steps))


def _sleep_component(sleep_hours: float, cfg: ProductivityConfig) -> int:
    return int(cfg.sleep_hours.lookup(sleep_hours))


def _focus_component(usage: DailyUsageSample | None, cfg: ProductivityConfig) -> int:
    if usage is None:
        return 0
    return int(cfg.focus_sessions.lookup(metric_value(usage.focus_session_count)))


def _workout_component(workouts: float, minutes: float, cfg: ProductivityConfig) -> int:
    """Base points for any workout plus a duration bonus, capped."""
    if workouts <= 0:
        return 0
    points = cfg.workout.base_points + cfg.workout.duration_bonus.lookup(minutes)
    return int(min(points, cfg.workout.max_points))


def _penalties(steps: float, sleep_hours: float, workouts: float, cfg: ProductivityConfig) -> int:
    total = 0.0
    if cfg.low_steps_penalty.below is not None and steps < cfg.low_steps_penalty.below:
        total += cfg.low_steps_penalty.points
    if cfg.short_sleep_penalty.below is not None and sleep_hours < cfg.short_sleep_penalty.below:
        total += cfg.short_sleep_penalty.points
    if workouts <= 0:
        total += cfg.no_workout_penalty.points
    return int(total)


# ---------------------------------------------------------------------------
# Streak
# ---------------------------------------------------------------------------


def compute_streak(
    day: date,
    history: Mapping[date, float] | None,
    threshold: float = 70,
) -> int:
    """Count consecutive days before ``day`` whose persisted score beats the threshold.

    Walks backward from the day before ``day`` and stops at the first day
    that is missing or scored at or below ``threshold``.
    """
    if not history:
        return 0
    streak = 0
    cursor = day - timedelta(days=1)
    while True:
        score = history.get(cursor)
        if score is None or score <= threshold:
            return streak
        streak += 1
        cursor -= timedelta(days=1)


# ---------------------------------------------------------------------------
# Main calculator
# ---------------------------------------------------------------------------


def compute_productivity_score(
    health: DailyHealthSample,
    usage: DailyUsageSample | None = None,
    *,
    history: Mapping[date, float] | None = None,
    config: ScoringConfig | None = None,
) -> ProductivityScore:
    """Compute the productivity score for ``health.date``.

    Pure: identical inputs always give an identical result.  Raw values are
    defaulted to 0 when negative or non-finite before any threshold applies.

    Args:
        health:  The day's biometric sample.
        usage:   The day's usage sample, or None when usage is unavailable.
        history: Persisted scores by date, used only for the streak.
        config:  Scoring policy; the cached global config by default.

    Returns:
        ProductivityScore with the clamped score and component breakdown.
    """
    cfg = (config or get_scoring_config()).productivity

    steps = metric_value(health.steps)
    sleep_hours = metric_value(health.sleep_hours)
    workouts = metric_value(health.workout_count)
    workout_minutes = metric_value(health.workout_minutes)

    breakdown = ScoreBreakdown(
        steps=_steps_component(steps, cfg),
        sleep=_sleep_component(sleep_hours, cfg),
        focus=_focus_component(usage, cfg),
        workout=_workout_component(workouts, workout_minutes, cfg),
    )

    total = (
        cfg.base_score
        + breakdown.steps
        + breakdown.sleep
        + breakdown.focus
        + breakdown.workout
        - _penalties(steps, sleep_hours, workouts, cfg)
    )
    final_score = int(max(0, min(100, total)))

    streak = compute_streak(health.date, history, cfg.streak_threshold)

    logger.debug(
        "Productivity score for %s on %s: %d (raw=%s steps=%d sleep=%d focus=%d workout=%d streak=%d)",
        health.user_id, health.date, final_score, total,
        breakdown.steps, breakdown.sleep, breakdown.focus, breakdown.workout, streak,
    )

    return ProductivityScore(
        user_id=health.user_id,
        date=health.date,
        score=final_score,
        breakdown=breakdown,
        streak_days=streak,
    )


def score_label(score: float, config: ScoringConfig | None = None) -> str:
    """Human label for a score ('Excellent', 'Great', ... 'Needs Improvement')."""
    cfg = (config or get_scoring_config()).productivity
    for bound, label in cfg.labels:
        if score >= bound:
            return label
    return cfg.default_label
