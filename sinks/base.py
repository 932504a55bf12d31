"""Base definitions for record-layer writes"""
from datetime import datetime
from typing import Protocol

from sources.base import AuditEntry, FuelPrices


class RecordSink(Protocol):
    """
    Protocol for the write side of the record layer.

    Implementations may raise on failure; callers decide whether a failed
    write matters (panel price persistence) or is only logged (audit rows,
    station status notifications).
    """

    async def save_panel_prices(
        self, panel_id: str, prices: FuelPrices, updated_at: datetime
    ) -> None:
        ...

    async def append_audit(self, entry: AuditEntry) -> None:
        ...

    async def update_station_status(
        self, station_id: str, is_online: bool, last_seen: datetime | None
    ) -> None:
        ...
