"""HTTP client for the remote dashboard.

Endpoints (relative to the configured base URL):
    POST /health/sync          — DailyHealthSample
    POST /screentime/sync      — DailyUsageSample
    POST /productivity/score   — ProductivityScore
    GET  /health/latest        — latest DailyHealthSample
    GET  /productivity/score   — latest ProductivityScore

Transport failures and timeouts raise NetworkError; any non-2xx response
raises RemoteRejected.  The dashboard tolerates duplicate pushes for the
same date, so callers may re-send freely.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from src.healthsync.base import DailyHealthSample, DailyUsageSample
from src.healthsync.errors import NetworkError, RemoteRejected, UnknownSyncError
from src.healthsync.productivity_score import ProductivityScore
from src.models.sync import HealthSampleWire, ProductivityScoreWire, UsageSampleWire

logger = logging.getLogger("healthsync.sync.dashboard")

HEALTH_SYNC_PATH = "/health/sync"
USAGE_SYNC_PATH = "/screentime/sync"
SCORE_PATH = "/productivity/score"
HEALTH_LATEST_PATH = "/health/latest"


class DashboardClient:
    """Pushes samples and scores to the dashboard and reads them back."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    Dashboard API root, e.g. ``http://localhost:3000/api``.
            timeout:     Per-request timeout in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _request(self, method: str, path: str, body: dict | None = None) -> httpx.Response:
        url = self._url(path)
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, json=body, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, json=body)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request to {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Request to {path} failed: {exc}") from exc

        if not response.is_success:
            logger.warning("Dashboard rejected %s %s: %s", method, path, response.status_code)
            raise RemoteRejected(response.status_code, endpoint=path)
        return response

    async def _post(self, path: str, body: dict) -> None:
        await self._request("POST", path, body)
        logger.info("Synced %s", path)

    async def _get_json(self, path: str) -> Any:
        response = await self._request("GET", path)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UnknownSyncError(f"Invalid JSON from {path}") from exc

    # ------------------------------------------------------------------
    # Pushes
    # ------------------------------------------------------------------

    async def post_health(self, sample: DailyHealthSample) -> None:
        await self._post(HEALTH_SYNC_PATH, HealthSampleWire.from_domain(sample).to_wire())

    async def post_usage(self, sample: DailyUsageSample) -> None:
        await self._post(USAGE_SYNC_PATH, UsageSampleWire.from_domain(sample).to_wire())

    async def post_score(self, score: ProductivityScore) -> None:
        await self._post(SCORE_PATH, ProductivityScoreWire.from_domain(score).to_wire())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_latest_health(self) -> DailyHealthSample | None:
        data = await self._get_json(HEALTH_LATEST_PATH)
        if not data:
            return None
        try:
            return HealthSampleWire.model_validate(data).to_domain()
        except ValidationError as exc:
            raise UnknownSyncError(f"Malformed health sample from dashboard: {exc}") from exc

    async def get_latest_score(self) -> ProductivityScore | None:
        data = await self._get_json(SCORE_PATH)
        if not data:
            return None
        try:
            return ProductivityScoreWire.model_validate(data).to_domain()
        except ValidationError as exc:
            raise UnknownSyncError(f"Malformed productivity score from dashboard: {exc}") from exc
