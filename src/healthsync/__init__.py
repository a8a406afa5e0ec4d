"""HealthSync health and screen-time aggregation engine.

Collects one day of biometrics and device usage, scores it, and keeps the
remote dashboard in sync with an offline retry queue.

Subpackages:
    providers/ — Platform capability wrappers (Apple Health, Screen Time)
    sync/      — State store, dashboard client, sync coordinator, scheduler

Core modules:
    base               — Canonical samples, sync state and capability ABCs
    errors             — Sync failure taxonomy
    config_loader      — Load/validate/hot-reload scoring_config.yaml
    productivity_score — Daily 0-100 productivity score
    vitality_score     — Vitality score and biological-age estimate
"""

from src.healthsync.base import (
    DailyHealthSample,
    DailyUsageSample,
    HealthCapability,
    SyncState,
    UsageCapability,
)
from src.healthsync.config_loader import ScoringConfig, get_scoring_config

__all__ = [
    "DailyHealthSample",
    "DailyUsageSample",
    "HealthCapability",
    "UsageCapability",
    "SyncState",
    "ScoringConfig",
    "get_scoring_config",
]
