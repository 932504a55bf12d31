"""In-process record layer - stations and panels held in memory, optionally seeded from JSON"""
import json
import logging
from datetime import datetime
from pathlib import Path

from sources.base import AuditEntry, FuelPrices, Panel, Station

logger = logging.getLogger(__name__)


class InMemoryRecords:
    """
    Record layer kept in process memory.

    Implements both RecordSource and RecordSink, so one instance can back a
    PriceUpdateService or a ConnectivityMonitor on a bench setup or in tests.
    Writes are kept in plain lists for inspection.
    """

    def __init__(self, stations: list[Station] | None = None, panels: list[Panel] | None = None):
        self.stations: dict[str, Station] = {station.id: station for station in stations or []}
        self.panels: dict[str, Panel] = {panel.id: panel for panel in panels or []}
        self.audit_log: list[AuditEntry] = []
        self.status_updates: list[tuple[str, bool, datetime | None]] = []

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryRecords":
        """
        Build from a mapping shaped like the record API responses.

        Expected shape:
            {"stations": [{"id": ..., "controllerAddress": ...}, ...],
             "panels": [{"id": ..., "stationId": ..., ...}, ...]}
        """
        return cls(
            stations=[Station.from_dict(item) for item in data.get("stations", [])],
            panels=[Panel.from_dict(item) for item in data.get("panels", [])],
        )

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryRecords":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        records = cls.from_dict(data)
        logger.info(
            f"Records: Loaded {len(records.stations)} stations and "
            f"{len(records.panels)} panels from {path}"
        )
        return records

    # RecordSource

    async def connect(self) -> None:
        logger.info(f"Records: Using in-memory records ({len(self.stations)} stations)")

    async def close(self) -> None:
        pass

    async def get_station(self, station_id: str) -> Station | None:
        return self.stations.get(station_id)

    async def get_panels(self, station_id: str) -> list[Panel]:
        return [panel for panel in self.panels.values() if panel.station_id == station_id]

    async def list_stations(self) -> list[Station]:
        return list(self.stations.values())

    # RecordSink

    async def save_panel_prices(self, panel_id: str, prices: FuelPrices, updated_at: datetime) -> None:
        panel = self.panels.get(panel_id)
        if panel is None:
            raise KeyError(f"Unknown panel {panel_id}")
        panel.current_prices = prices
        panel.last_update = updated_at

    async def append_audit(self, entry: AuditEntry) -> None:
        self.audit_log.append(entry)

    async def update_station_status(
        self, station_id: str, is_online: bool, last_seen: datetime | None
    ) -> None:
        self.status_updates.append((station_id, is_online, last_seen))
