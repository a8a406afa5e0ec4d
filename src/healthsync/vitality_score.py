"""HealthSync vitality score and biological-age estimate.

Computes a 0–100 vitality score from a rolling window of daily health
samples, converts it to a biological-age estimate, and ranks
recommendations for the weakest components.

Components (weights from scoring_config.yaml):
    - hrv             mean HRV (ms)                          (weight: 0.25)
    - resting_hr      mean heart rate (bpm), lower is better (weight: 0.20)
    - sleep_quality   % of sleep goal met                    (weight: 0.25)
    - vo2max_proxy    activity-derived VO2-max estimate      (weight: 0.15)
    - activity_level  mean active energy (kcal)              (weight: 0.15)

Biological age:
    chronological_age + (50 - score) / 50 * max_age_offset_years
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from src.healthsync.base import DailyHealthSample, metric_value
from src.healthsync.config_loader import (
    ScoringConfig,
    VitalityConfig,
    get_scoring_config,
)

logger = logging.getLogger("healthsync.vitality")

_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class ComponentScore:
    """One vitality component.

    Attributes:
        value:     Window average in the metric's own unit.
        score:     0–100 sub-score.
        available: False when the window had no readings for this metric.
    """

    value: float
    score: int
    available: bool = True


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    message: str
    action: str
    metric: str = ""


@dataclass(frozen=True)
class VitalityScore:
    """Vitality score for one user, recomputed on demand.

    Attributes:
        biological_age:    Estimated biological age in years.
        chronological_age: Age from birth year.
        aging_rate:        biological_age / chronological_age (< 1 is slower aging).
        score:             0–100 blended component score.
        components:        Metric name → ComponentScore.
        recommendations:   Ordered recommendations, high priority first.
        window_days:       Number of samples the estimate was built from.
    """

    biological_age: float
    chronological_age: int
    aging_rate: float
    score: int
    components: dict[str, ComponentScore] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)
    window_days: int = 0


# ---------------------------------------------------------------------------
# Window aggregation
# ---------------------------------------------------------------------------


def _mean_of_readings(values: Sequence[float]) -> float | None:
    """Mean of the non-zero readings; None when there are none."""
    readings = [v for v in values if v > 0]
    if not readings:
        return None
    return sum(readings) / len(readings)


def _sleep_quality_pct(window: Sequence[DailyHealthSample]) -> float | None:
    ratios = [
        min(metric_value(s.sleep_hours) / metric_value(s.sleep_goal_hours), 1.0) * 100.0
        for s in window
        if metric_value(s.sleep_hours) > 0 and metric_value(s.sleep_goal_hours) > 0
    ]
    if not ratios:
        return None
    return sum(ratios) / len(ratios)


def _vo2max_proxy(window: Sequence[DailyHealthSample], cfg: VitalityConfig) -> float | None:
    """Activity-derived VO2-max estimate (ml/kg/min) from steps and workout time."""
    if not any(metric_value(s.steps) > 0 or metric_value(s.workout_minutes) > 0 for s in window):
        return None
    n = len(window)
    avg_steps = sum(metric_value(s.steps) for s in window) / n
    avg_workout = sum(metric_value(s.workout_minutes) for s in window) / n
    p = cfg.vo2max_proxy
    estimate = p.base + p.per_1000_steps * avg_steps / 1000.0 + p.per_workout_minute * avg_workout
    return min(estimate, p.ceiling)


def _component_values(
    window: Sequence[DailyHealthSample], cfg: VitalityConfig
) -> dict[str, float | None]:
    return {
        "hrv": _mean_of_readings([metric_value(s.heart_rate_variability) for s in window]),
        "resting_hr": _mean_of_readings([metric_value(s.heart_rate_bpm) for s in window]),
        "sleep_quality": _sleep_quality_pct(window),
        "vo2max_proxy": _vo2max_proxy(window, cfg),
        "activity_level": _mean_of_readings([metric_value(s.active_energy_kcal) for s in window]),
    }


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def _recommendations(
    components: dict[str, ComponentScore], cfg: VitalityConfig
) -> list[Recommendation]:
    ranked: list[tuple[int, int, Recommendation]] = []
    for metric, component in components.items():
        policy = cfg.recommendations.get(metric)
        if policy is None or not component.available:
            continue
        if component.score >= policy.attention_below:
            continue
        priority = "high" if component.score < policy.high_below else "medium"
        ranked.append(
            (
                _PRIORITY_RANK[priority],
                component.score,
                Recommendation(
                    type=policy.type,
                    priority=priority,
                    message=policy.message,
                    action=policy.action,
                    metric=metric,
                ),
            )
        )
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [rec for _, _, rec in ranked]


# ---------------------------------------------------------------------------
# Main calculator
# ---------------------------------------------------------------------------


def chronological_age(birth_year: int, today: date | None = None) -> int:
    """Age in whole years from birth year, never below 1."""
    current = today or date.today()
    return max(current.year - birth_year, 1)


def compute_vitality_score(
    birth_year: int,
    window: Sequence[DailyHealthSample],
    *,
    today: date | None = None,
    config: ScoringConfig | None = None,
) -> VitalityScore:
    """Compute the vitality score and biological-age estimate.

    The window is read, never mutated.  Components with no readings are
    reported as unavailable and left out of the blend; weights are
    re-normalised over the remaining ones.

    Args:
        birth_year: User's birth year.
        window:     Rolling window of daily health samples (any order).
        today:      Reference date for the chronological age.
        config:     Scoring policy; the cached global config by default.

    Returns:
        VitalityScore with components and ranked recommendations.
    """
    cfg = (config or get_scoring_config()).vitality
    chrono = chronological_age(birth_year, today)
    samples = list(window)

    values = _component_values(samples, cfg) if samples else {}

    components: dict[str, ComponentScore] = {}
    for name, comp_cfg in cfg.components.items():
        value = values.get(name)
        if value is None:
            components[name] = ComponentScore(value=0.0, score=0, available=False)
            continue
        sub_score = int(max(0, min(100, comp_cfg.table.lookup(value))))
        components[name] = ComponentScore(value=round(value, 1), score=sub_score)

    available = [n for n, c in components.items() if c.available]
    weight_sum = sum(cfg.components[n].weight for n in available)

    if not available or weight_sum <= 0:
        logger.info("Vitality: no usable readings in %d-day window", len(samples))
        return VitalityScore(
            biological_age=float(chrono),
            chronological_age=chrono,
            aging_rate=1.0,
            score=50,
            components=components,
            recommendations=[],
            window_days=len(samples),
        )

    blended = sum(
        components[n].score * (cfg.components[n].weight / weight_sum) for n in available
    )
    final_score = int(max(0, min(100, round(blended))))

    offset = (50 - final_score) / 50.0 * cfg.max_age_offset_years
    biological = round(max(chrono + offset, 1.0), 1)
    aging_rate = max(round(biological / chrono, 2), 0.01)

    recommendations = _recommendations(components, cfg)

    logger.debug(
        "Vitality: score=%d bio_age=%.1f chrono=%d rate=%.2f recs=%d",
        final_score, biological, chrono, aging_rate, len(recommendations),
    )

    return VitalityScore(
        biological_age=biological,
        chronological_age=chrono,
        aging_rate=aging_rate,
        score=final_score,
        components=components,
        recommendations=recommendations,
        window_days=len(samples),
    )


def aging_band(aging_rate: float, config: ScoringConfig | None = None) -> str:
    """Classify an aging rate: 'reversing', 'slowing', 'normal' or 'accelerating'."""
    cfg = (config or get_scoring_config()).vitality
    for below, band in cfg.aging_bands:
        if aging_rate < below:
            return band
    return cfg.default_aging_band
