"""Failure taxonomy for the HealthSync pipeline.

Every failure that can end a sync is one of four classes.  Each carries a
``kind`` slug (persisted alongside ``SyncState.error``) and a ``retryable``
flag the coordinator consults before writing a retry-queue entry.

    CapabilityUnavailable — permission denied or platform unsupported
    NetworkError          — transport failure or timeout
    RemoteRejected        — dashboard answered with a non-2xx status
    UnknownSyncError      — anything else
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync-level failures."""

    kind: str = "unknown"
    retryable: bool = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CapabilityUnavailable(SyncError):
    """The platform capability is unreachable or access was not granted.

    Not retryable until the user re-grants access.
    """

    kind = "capability_unavailable"
    retryable = False

    def __init__(self, capability: str, reason: str = "unavailable") -> None:
        super().__init__(f"{capability} capability {reason}")
        self.capability = capability
        self.reason = reason


class NetworkError(SyncError):
    """Transport-level failure talking to the dashboard (includes timeouts)."""

    kind = "network"


class RemoteRejected(SyncError):
    """The dashboard returned a non-2xx status."""

    kind = "remote_rejected"

    def __init__(self, status: int, endpoint: str = "") -> None:
        where = f" from {endpoint}" if endpoint else ""
        super().__init__(f"HTTP error! status: {status}{where}")
        self.status = status
        self.endpoint = endpoint


class UnknownSyncError(SyncError):
    """Unexpected failure during a sync."""

    kind = "unknown"
