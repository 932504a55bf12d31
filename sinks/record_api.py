"""Record API egress module - writes prices, audit rows and station status via HTTP"""
import asyncio
import logging
from datetime import datetime

import requests

from sources.base import AuditEntry, FuelPrices

logger = logging.getLogger(__name__)


class RecordApiSink:
    """
    Writes results back to the records REST API.

    Endpoints (relative to base_url):
        PUT  /panels/{id}/prices
        POST /price-update-logs
        PUT  /stations/{id}/status

    Every call raises on failure; PriceUpdateService and
    ConnectivityMonitor decide what a failed write means.
    """

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _perform_http_request(self, method: str, path: str, payload: dict) -> None:
        """
        Executes one HTTP call against the records API.
        Is ran in a thread to not block the main loop.
        """
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        r = requests.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )
        r.raise_for_status()

    async def send_http_payload(self, method: str, path: str, payload: dict) -> None:
        """
        Offloads the blocking HTTP request to a thread.
        """
        await asyncio.to_thread(self._perform_http_request, method, path, payload)

    async def save_panel_prices(self, panel_id: str, prices: FuelPrices, updated_at: datetime) -> None:
        payload = {
            "currentPrices": prices.as_dict(),
            "lastUpdate": updated_at.isoformat(),
        }
        await self.send_http_payload("PUT", f"/panels/{panel_id}/prices", payload)

    async def append_audit(self, entry: AuditEntry) -> None:
        await self.send_http_payload("POST", "/price-update-logs", entry.as_dict())

    async def update_station_status(
        self, station_id: str, is_online: bool, last_seen: datetime | None
    ) -> None:
        payload = {
            "isOnline": is_online,
            "lastSeen": last_seen.isoformat() if last_seen else None,
        }
        await self.send_http_payload("PUT", f"/stations/{station_id}/status", payload)
