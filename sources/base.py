"""Base definitions for station records - data contracts and protocols"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar, Protocol


@dataclass(frozen=True)
class FuelPrices:
    """
    Prices shown on one LED panel.

    Values are Decimals with at most 2 fractional digits once they went
    through services.pricing.sanitize_price_data.
    """
    FIELDS: ClassVar[tuple[str, ...]] = ("regular", "premium", "diesel")

    regular: Decimal
    premium: Decimal
    diesel: Decimal

    @classmethod
    def zero(cls) -> "FuelPrices":
        return cls(Decimal("0"), Decimal("0"), Decimal("0"))

    @classmethod
    def from_dict(cls, data: dict) -> "FuelPrices":
        """Build from a record/JSON mapping whose values are numbers or strings."""
        return cls(*(Decimal(str(data[name])) for name in cls.FIELDS))

    def as_dict(self) -> dict[str, str]:
        """Two-decimal strings, the representation used on the wire and in records."""
        return {name: f"{getattr(self, name):.2f}" for name in self.FIELDS}


@dataclass
class Station:
    """
    A fuel site reachable through one controller address on the private network.

    Attributes:
        id: Record id of the station.
        controller_address: VPN address of the site's controller.
        controller_port: TCP port, None means the configured default.
    """
    id: str
    controller_address: str
    name: str = ""
    controller_port: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Station":
        return cls(
            id=str(data["id"]),
            controller_address=data.get("controllerAddress") or data.get("vpnIpAddress") or "",
            name=data.get("name", ""),
            controller_port=data.get("controllerPort"),
        )


@dataclass
class Panel:
    """
    One addressable LED display bound to a station.

    A panel without its own controller_address is reached through the
    station's controller.
    """
    id: str
    station_id: str
    name: str = ""
    controller_address: str | None = None
    controller_port: int | None = None
    current_prices: FuelPrices | None = None
    last_update: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Panel":
        prices = data.get("currentPrices")
        last_update = data.get("lastUpdate")
        return cls(
            id=str(data["id"]),
            station_id=str(data["stationId"]),
            name=data.get("name", ""),
            controller_address=data.get("controllerAddress"),
            controller_port=data.get("controllerPort"),
            current_prices=FuelPrices.from_dict(prices) if prices else None,
            last_update=datetime.fromisoformat(last_update) if last_update else None,
        )


@dataclass
class AuditEntry:
    """One price-update attempt against one panel."""
    station_id: str
    panel_id: str
    actor_id: str
    old_prices: FuelPrices | None
    new_prices: FuelPrices
    success: bool
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "stationId": self.station_id,
            "panelId": self.panel_id,
            "userId": self.actor_id,
            "oldPrices": self.old_prices.as_dict() if self.old_prices else None,
            "newPrices": self.new_prices.as_dict(),
            "success": self.success,
            "errorMessage": self.error,
            "createdAt": self.created_at.isoformat(),
        }


class RecordSource(Protocol):
    """
    Protocol for the read side of the record layer (REST API, in-memory, ...).

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    async def connect(self) -> None:
        """
        Prepare the source (HTTP client, file load, ...).

        Hard fails on misconfiguration.
        """
        ...

    async def close(self) -> None:
        ...

    async def get_station(self, station_id: str) -> Station | None:
        """Return the station, or None if no such record exists."""
        ...

    async def get_panels(self, station_id: str) -> list[Panel]:
        """Return every panel bound to the station (possibly empty)."""
        ...

    async def list_stations(self) -> list[Station]:
        """Return every station that should be monitored."""
        ...
