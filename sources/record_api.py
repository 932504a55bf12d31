"""Record API ingress module - reads stations and panels from the records REST API"""
import logging
import sys

import httpx

from sources.base import Panel, Station

logger = logging.getLogger(__name__)


class RecordApiSource:
    """
    Station and panel lookups against the records REST API.

    Endpoints (relative to base_url):
        GET /stations                 -> list of station records
        GET /stations/{id}            -> one station record (404 if unknown)
        GET /stations/{id}/panels     -> list of panel records

    Uses one keep-alive client for the lifetime of the source.
    """

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 5.0):
        """
        Initialize the record API source.

        Args:
            base_url: Root URL of the records API (e.g., "https://records.example/api")
            token: Bearer token sent with every request, if set
            timeout: HTTP request timeout in seconds (default: 5.0)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.client = None

    async def connect(self) -> None:
        """Create the persistent HTTP client; hard fail without a base URL."""
        if not self.base_url:
            logger.error("Records API: RECORDS_API_URL not configured")
            sys.exit(1)
            return  # For test mocking: prevent further execution

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
        )
        logger.info(f"Records API: Using {self.base_url}")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def get_station(self, station_id: str) -> Station | None:
        response = await self._get(f"/stations/{station_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Station.from_dict(response.json())

    async def get_panels(self, station_id: str) -> list[Panel]:
        response = await self._get(f"/stations/{station_id}/panels")
        if response.status_code == 404:
            return []
        response.raise_for_status()
        return [Panel.from_dict(item) for item in response.json()]

    async def list_stations(self) -> list[Station]:
        response = await self._get("/stations")
        response.raise_for_status()
        return [Station.from_dict(item) for item in response.json()]

    async def _get(self, path: str) -> httpx.Response:
        if self.client is None:
            raise RuntimeError("RecordApiSource used before connect()")
        logger.debug(f"Records API: GET {path}")
        return await self.client.get(path)
