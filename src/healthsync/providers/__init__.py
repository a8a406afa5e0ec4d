"""Capability-backed sample providers for HealthSync.

Each provider wraps one platform capability and returns canonical samples:

    HealthSampleProvider — daily biometrics (Apple Health export capability)
    UsageSampleProvider  — daily screen time and focus sessions
"""

from src.healthsync.providers.apple_health import HealthExportCapability, HealthSampleProvider
from src.healthsync.providers.screen_time import (
    AppCategorizer,
    UsageExportCapability,
    UsageSampleProvider,
    count_focus_sessions,
    iter_focus_sessions,
)

__all__ = [
    "HealthExportCapability",
    "HealthSampleProvider",
    "AppCategorizer",
    "UsageExportCapability",
    "UsageSampleProvider",
    "count_focus_sessions",
    "iter_focus_sessions",
]
