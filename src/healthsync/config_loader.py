"""Load, validate, and hot-reload the HealthSync scoring policy.

The policy lives in ``scoring_config.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_scoring_config()`` to re-read it from
disk after an edit; no restart required.

Usage::

    from src.healthsync.config_loader import get_scoring_config

    config = get_scoring_config()
    config.productivity.steps.lookup(8200)        # 15
    config.categories.productive                  # ['com.microsoft.Word', ...]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("healthsync.config")

_CONFIG_PATH = Path(__file__).parent / "scoring_config.yaml"

VALID_RECOMMENDATION_TYPES = ("sleep", "exercise", "recovery", "cognitive")
VITALITY_COMPONENTS = ("hrv", "resting_hr", "sleep_quality", "vo2max_proxy", "activity_level")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class Tier:
    bound: float
    value: float


@dataclass
class TierTable:
    """Ordered threshold table.

    ``at_least`` tables match the first tier whose bound is <= the value;
    ``at_most`` tables match the first tier whose bound is >= the value.
    """

    tiers: list[Tier]
    default: float = 0.0
    at_least: bool = True

    def lookup(self, value: float) -> float:
        for tier in self.tiers:
            if (value >= tier.bound) if self.at_least else (value <= tier.bound):
                return tier.value
        return self.default


@dataclass
class Penalty:
    points: float
    below: float | None = None


@dataclass
class WorkoutConfig:
    base_points: float
    max_points: float
    duration_bonus: TierTable


@dataclass
class ProductivityConfig:
    base_score: float
    steps: TierTable
    sleep_hours: TierTable
    focus_sessions: TierTable
    workout: WorkoutConfig
    low_steps_penalty: Penalty
    short_sleep_penalty: Penalty
    no_workout_penalty: Penalty
    streak_threshold: float
    labels: list[tuple[float, str]]
    default_label: str


@dataclass
class VitalityComponentConfig:
    name: str
    weight: float
    table: TierTable


@dataclass
class RecommendationPolicy:
    """When and how to recommend for one vitality component."""

    metric: str
    type: str
    attention_below: float
    high_below: float
    message: str
    action: str


@dataclass
class Vo2MaxProxyConfig:
    base: float
    per_1000_steps: float
    per_workout_minute: float
    ceiling: float


@dataclass
class VitalityConfig:
    max_age_offset_years: float
    components: dict[str, VitalityComponentConfig]
    vo2max_proxy: Vo2MaxProxyConfig
    recommendations: dict[str, RecommendationPolicy]
    aging_bands: list[tuple[float, str]]
    default_aging_band: str


@dataclass
class AppCategoryConfig:
    productive: list[str] = field(default_factory=list)
    entertainment: list[str] = field(default_factory=list)


@dataclass
class SyncConfig:
    background_min_interval_seconds: int
    health_history_days: int
    score_history_days: int
    max_retry_entries: int = 288


@dataclass
class ScoringConfig:
    """Complete, validated scoring policy.

    This is the single in-memory representation of scoring_config.yaml.
    The score engines, providers and coordinator all read from it.
    """

    version: str
    productivity: ProductivityConfig
    focus_session_minutes: float
    vitality: VitalityConfig
    categories: AppCategoryConfig
    sync: SyncConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when scoring_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(f"Scoring config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _build_table(raw: Any, section: str, value_key: str, errors: list[str]) -> TierTable:
    """Parse one threshold table and check it is monotonic."""
    if not isinstance(raw, dict):
        errors.append(f"{section} must be a mapping with 'tiers'")
        return TierTable(tiers=[])

    tiers: list[Tier] = []
    directions: set[str] = set()
    for i, tier in enumerate(raw.get("tiers") or []):
        if not isinstance(tier, dict):
            errors.append(f"{section}.tiers[{i}] must be a mapping")
            continue
        direction = "at_least" if "at_least" in tier else "at_most" if "at_most" in tier else None
        if direction is None or value_key not in tier:
            errors.append(f"{section}.tiers[{i}] needs at_least/at_most and '{value_key}'")
            continue
        directions.add(direction)
        try:
            tiers.append(Tier(bound=float(tier[direction]), value=float(tier[value_key])))
        except (TypeError, ValueError):
            errors.append(f"{section}.tiers[{i}] has a non-numeric bound or {value_key}")

    if len(directions) > 1:
        errors.append(f"{section} mixes at_least and at_most tiers")

    at_least = directions != {"at_most"}
    table = TierTable(
        tiers=tiers,
        default=float(raw.get("default", 0)),
        at_least=at_least,
    )

    # Bounds must move away from the best tier and values must never rise.
    for prev, cur in zip(tiers, tiers[1:]):
        bound_ok = cur.bound < prev.bound if at_least else cur.bound > prev.bound
        if not bound_ok or cur.value > prev.value:
            errors.append(f"{section} tiers are not ordered best-first")
            break
    if tiers and table.default > tiers[-1].value:
        errors.append(f"{section}.default exceeds the lowest tier")

    return table


def _build_productivity(raw: dict, errors: list[str]) -> ProductivityConfig:
    workout_raw = raw.get("workout", {}) or {}
    penalties = raw.get("penalties", {}) or {}

    def _penalty(key: str) -> Penalty:
        p = penalties.get(key, {}) or {}
        below = p.get("below")
        return Penalty(
            points=float(p.get("points", 0)),
            below=float(below) if below is not None else None,
        )

    labels = sorted(
        (
            (float(item["at_least"]), str(item["label"]))
            for item in raw.get("labels", []) or []
            if isinstance(item, dict) and "at_least" in item and "label" in item
        ),
        reverse=True,
    )

    config = ProductivityConfig(
        base_score=float(raw.get("base_score", 50)),
        steps=_build_table(raw.get("steps"), "productivity.steps", "points", errors),
        sleep_hours=_build_table(raw.get("sleep_hours"), "productivity.sleep_hours", "points", errors),
        focus_sessions=_build_table(
            raw.get("focus_sessions"), "productivity.focus_sessions", "points", errors
        ),
        workout=WorkoutConfig(
            base_points=float(workout_raw.get("base_points", 10)),
            max_points=float(workout_raw.get("max_points", 20)),
            duration_bonus=_build_table(
                workout_raw.get("duration_bonus"),
                "productivity.workout.duration_bonus",
                "points",
                errors,
            ),
        ),
        low_steps_penalty=_penalty("low_steps"),
        short_sleep_penalty=_penalty("short_sleep"),
        no_workout_penalty=_penalty("no_workout"),
        streak_threshold=float(raw.get("streak_threshold", 70)),
        labels=labels,
        default_label=str(raw.get("default_label", "Needs Improvement")),
    )
    for name, table in (
        ("steps", config.steps),
        ("sleep_hours", config.sleep_hours),
        ("focus_sessions", config.focus_sessions),
    ):
        if any(t.value < 0 for t in table.tiers) or table.default < 0:
            errors.append(f"productivity.{name} points must be >= 0")
    return config


def _build_vitality(raw: dict, errors: list[str]) -> VitalityConfig:
    components_raw = raw.get("components", {}) or {}
    components: dict[str, VitalityComponentConfig] = {}
    for name in VITALITY_COMPONENTS:
        cfg = components_raw.get(name)
        if not isinstance(cfg, dict):
            errors.append(f"vitality.components.{name} is missing")
            continue
        table = _build_table(cfg, f"vitality.components.{name}", "score", errors)
        if any(not (0 <= t.value <= 100) for t in table.tiers) or not (0 <= table.default <= 100):
            errors.append(f"vitality.components.{name} scores must be within [0, 100]")
        components[name] = VitalityComponentConfig(
            name=name, weight=float(cfg.get("weight", 0.0)), table=table
        )

    total_w = sum(c.weight for c in components.values())
    if components and not (0.95 <= total_w <= 1.05):
        logger.warning(
            "Vitality component weights sum to %.3f (expected ~1.0). "
            "Score will be normalized at runtime.",
            total_w,
        )

    recommendations: dict[str, RecommendationPolicy] = {}
    for metric, rec in (raw.get("recommendations", {}) or {}).items():
        if metric not in VITALITY_COMPONENTS:
            errors.append(f"vitality.recommendations.{metric} is not a vitality component")
            continue
        rec_type = rec.get("type")
        if rec_type not in VALID_RECOMMENDATION_TYPES:
            errors.append(
                f"vitality.recommendations.{metric}.type must be one of "
                f"{VALID_RECOMMENDATION_TYPES}, got {rec_type!r}"
            )
            continue
        attention = float(rec.get("attention_below", 70))
        high = float(rec.get("high_below", 40))
        if high > attention:
            errors.append(f"vitality.recommendations.{metric}: high_below > attention_below")
        recommendations[metric] = RecommendationPolicy(
            metric=metric,
            type=rec_type,
            attention_below=attention,
            high_below=high,
            message=str(rec.get("message", "")),
            action=str(rec.get("action", "")),
        )

    vo2_raw = raw.get("vo2max_proxy", {}) or {}
    bands = sorted(
        (float(b["below"]), str(b["band"]))
        for b in raw.get("aging_bands", []) or []
        if isinstance(b, dict) and "below" in b and "band" in b
    )

    return VitalityConfig(
        max_age_offset_years=float(raw.get("max_age_offset_years", 10)),
        components=components,
        vo2max_proxy=Vo2MaxProxyConfig(
            base=float(vo2_raw.get("base", 25.0)),
            per_1000_steps=float(vo2_raw.get("per_1000_steps", 1.2)),
            per_workout_minute=float(vo2_raw.get("per_workout_minute", 0.1)),
            ceiling=float(vo2_raw.get("ceiling", 70.0)),
        ),
        recommendations=recommendations,
        aging_bands=bands,
        default_aging_band=str(raw.get("default_aging_band", "accelerating")),
    )


def _validate_and_build(raw: dict) -> ScoringConfig:
    """Validate the raw YAML dict and construct a ScoringConfig.

    Raises:
        ConfigValidationError: If required sections are missing or invalid.
    """
    errors: list[str] = []

    for section in ("productivity", "vitality"):
        if not raw.get(section):
            errors.append(f"'{section}' section is missing or empty")

    productivity = _build_productivity(raw.get("productivity", {}) or {}, errors)
    vitality = _build_vitality(raw.get("vitality", {}) or {}, errors)

    focus_minutes = float((raw.get("focus", {}) or {}).get("session_minutes", 30))
    if focus_minutes <= 0:
        errors.append("focus.session_minutes must be > 0")

    cat_raw = raw.get("app_categories", {}) or {}
    categories = AppCategoryConfig(
        productive=[str(a) for a in cat_raw.get("productive", []) or []],
        entertainment=[str(a) for a in cat_raw.get("entertainment", []) or []],
    )
    overlap = set(categories.productive) & set(categories.entertainment)
    if overlap:
        errors.append(f"app_categories lists overlap: {sorted(overlap)}")

    sync_raw = raw.get("sync", {}) or {}
    sync = SyncConfig(
        background_min_interval_seconds=int(sync_raw.get("background_min_interval_seconds", 300)),
        health_history_days=int(sync_raw.get("health_history_days", 30)),
        score_history_days=int(sync_raw.get("score_history_days", 90)),
        max_retry_entries=int(sync_raw.get("max_retry_entries", 288)),
    )
    if sync.health_history_days < 1 or sync.score_history_days < 1:
        errors.append("sync history windows must be >= 1 day")
    if sync.max_retry_entries < 1:
        errors.append("sync.max_retry_entries must be >= 1")

    if errors:
        raise ConfigValidationError(
            f"scoring_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ScoringConfig(
        version=str(raw.get("version", "1.0")),
        productivity=productivity,
        focus_session_minutes=focus_minutes,
        vitality=vitality,
        categories=categories,
        sync=sync,
        _raw=raw,
    )


def load_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Load and validate the scoring config from disk.

    Args:
        path: Override path to YAML. Uses the bundled scoring_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded scoring config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: ScoringConfig | None = None
_config_lock = threading.Lock()


def get_scoring_config() -> ScoringConfig:
    """Return the global ScoringConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_scoring_config()
    return _config


def reload_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Reload the scoring config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_scoring_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded scoring config: %s → %s", old_version, new_config.version)
    return new_config
