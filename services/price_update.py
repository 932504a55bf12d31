"""Price update orchestration - validate, fan out to every panel, aggregate"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from protocol.commands import REJECTION_COMMANDS, create_price_update_frame
from services.pricing import detect_suspicious_input, sanitize_price_data, validate_price_data
from sinks.base import RecordSink
from sources.base import AuditEntry, FuelPrices, Panel, RecordSource, Station
from transport.controller_client import ConnectionRefused, ControllerClient, ProtocolError, Timeout

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    VALIDATION = "ValidationError"
    STATION_NOT_FOUND = "StationNotFound"
    PANEL_NOT_FOUND = "PanelNotFound"
    DEVICE_UNREACHABLE = "DeviceUnreachable"
    PROTOCOL = "ProtocolError"
    INTERNAL = "InternalError"


# What operators see; details stay in the log
USER_MESSAGES = {
    FailureKind.DEVICE_UNREACHABLE: "device unreachable",
    FailureKind.PROTOCOL: "device communication error",
    FailureKind.INTERNAL: "internal error while updating panel",
}


@dataclass
class PanelError:
    """
    One failure entry of an UpdateResult.

    panel_id is None for failures that concern the whole request
    (validation, unknown station).
    """
    panel_id: str | None
    kind: FailureKind
    message: str

    def as_dict(self) -> dict:
        return {"panelId": self.panel_id, "error": self.kind.value, "message": self.message}


@dataclass
class UpdateResult:
    success: bool
    panels_updated: int
    errors: list[PanelError] = field(default_factory=list)
    prices: FuelPrices | None = None

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "panelsUpdated": self.panels_updated,
            "errors": [error.as_dict() for error in self.errors],
            "prices": self.prices.as_dict() if self.prices else None,
        }


class PriceUpdateService:
    """
    Pushes new prices to every panel of a station.

    Delivery is best-effort per panel: panels are updated concurrently and
    a failing panel never blocks or rolls back its siblings. Nothing is
    retried here; retrying is the caller's decision.
    """

    def __init__(
        self,
        source: RecordSource,
        sink: RecordSink,
        client: ControllerClient,
        timeout_ms: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            source: Station and panel lookups.
            sink: Panel price persistence and audit log.
            client: Transport to the controllers.
            timeout_ms: Per-panel send budget (default: the client's).
            clock: Returns the current time (default: UTC now).
        """
        self.source = source
        self.sink = sink
        self.client = client
        self.timeout_ms = timeout_ms
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def update_prices(self, station_id: str, prices, actor_id: str) -> UpdateResult:
        """
        Validate prices and deliver them to every panel of the station.

        Args:
            station_id: Station whose panels should show the new prices.
            prices: FuelPrices (validated as given) or raw input (sanitized first).
            actor_id: User who requested the change, for the audit log.

        Returns:
            UpdateResult; success is True only if every panel was updated.
        """
        started = time.monotonic()

        if isinstance(prices, FuelPrices):
            new_prices = prices
        else:
            if detect_suspicious_input(prices):
                logger.warning(f"Price update: Suspicious input from {actor_id} for station {station_id}")
            new_prices = sanitize_price_data(prices)

        validation = validate_price_data(new_prices)
        if not validation.is_valid:
            logger.warning(f"Price update: Validation failed for station {station_id}: {validation.errors}")
            return UpdateResult(
                success=False,
                panels_updated=0,
                errors=[PanelError(None, FailureKind.VALIDATION, message) for message in validation.errors],
                prices=new_prices,
            )

        try:
            station = await self.source.get_station(station_id)
            panels = await self.source.get_panels(station_id) if station else []
        except Exception:
            logger.exception(f"Price update: Could not load station {station_id}")
            return UpdateResult(
                success=False,
                panels_updated=0,
                errors=[PanelError(None, FailureKind.INTERNAL, "could not load station records")],
                prices=new_prices,
            )

        if station is None:
            logger.warning(f"Price update: Station {station_id} not found")
            return UpdateResult(
                success=False,
                panels_updated=0,
                errors=[PanelError(None, FailureKind.STATION_NOT_FOUND, f"station {station_id} not found")],
                prices=new_prices,
            )

        if not panels:
            logger.warning(f"Price update: Station {station_id} has no panels")
            return UpdateResult(
                success=False,
                panels_updated=0,
                errors=[PanelError(None, FailureKind.PANEL_NOT_FOUND, f"station {station_id} has no panels")],
                prices=new_prices,
            )

        outcomes = await asyncio.gather(
            *(self._update_panel(station, panel, new_prices, actor_id) for panel in panels)
        )
        errors = [outcome for outcome in outcomes if outcome is not None]
        panels_updated = len(panels) - len(errors)

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Price update: Station {station_id} by {actor_id}: "
            f"{panels_updated}/{len(panels)} panels updated in {duration_ms} ms"
        )

        return UpdateResult(
            success=panels_updated == len(panels),
            panels_updated=panels_updated,
            errors=errors,
            prices=new_prices,
        )

    async def _update_panel(
        self, station: Station, panel: Panel, prices: FuelPrices, actor_id: str
    ) -> PanelError | None:
        """Deliver prices to one panel; returns None on success, never raises."""
        try:
            failure, detail = await self._deliver(station, panel, prices)
            if failure is None:
                await self.sink.save_panel_prices(panel.id, prices, self._clock())
                logger.info(f"Price update: Panel {panel.id} of station {station.id} updated")
        except Exception as e:
            logger.exception(f"Price update: Unexpected error for panel {panel.id} of station {station.id}")
            failure = PanelError(panel.id, FailureKind.INTERNAL, USER_MESSAGES[FailureKind.INTERNAL])
            detail = repr(e)

        await self._audit(AuditEntry(
            station_id=station.id,
            panel_id=panel.id,
            actor_id=actor_id,
            old_prices=panel.current_prices,
            new_prices=prices,
            success=failure is None,
            error=f"{failure.kind.value}: {detail}" if failure else None,
            created_at=self._clock(),
        ))
        return failure

    async def _deliver(
        self, station: Station, panel: Panel, prices: FuelPrices
    ) -> tuple[PanelError | None, str | None]:
        """Send the frame; returns (failure, detail for the audit log)."""
        address = panel.controller_address or station.controller_address
        if not address:
            logger.warning(f"Price update: Panel {panel.id} has no controller address")
            message = f"panel {panel.id} has no controller address"
            return PanelError(panel.id, FailureKind.PANEL_NOT_FOUND, message), message

        port = panel.controller_port or station.controller_port
        frame = create_price_update_frame(prices, panel_id=panel.id)
        result = await self.client.send_frame(address, port, frame, self.timeout_ms)

        if result.success:
            command = result.response.command
            if command in REJECTION_COMMANDS:
                logger.warning(f"Price update: Panel {panel.id} rejected the update (reply 0x{command:02X})")
                failure = PanelError(panel.id, FailureKind.PROTOCOL, USER_MESSAGES[FailureKind.PROTOCOL])
                return failure, f"controller replied 0x{command:02X}"
            return None, None

        error = result.error
        logger.warning(f"Price update: Panel {panel.id} of station {station.id} failed: {error}")
        if isinstance(error, Timeout):
            failure = PanelError(panel.id, FailureKind.DEVICE_UNREACHABLE, "device did not respond in time")
        elif isinstance(error, ConnectionRefused):
            failure = PanelError(panel.id, FailureKind.DEVICE_UNREACHABLE, USER_MESSAGES[FailureKind.DEVICE_UNREACHABLE])
        elif isinstance(error, ProtocolError):
            failure = PanelError(panel.id, FailureKind.PROTOCOL, USER_MESSAGES[FailureKind.PROTOCOL])
        else:
            failure = PanelError(panel.id, FailureKind.INTERNAL, USER_MESSAGES[FailureKind.INTERNAL])
        return failure, str(error)

    async def _audit(self, entry: AuditEntry) -> None:
        try:
            await self.sink.append_audit(entry)
        except Exception as e:
            logger.error(f"Price update: Failed to write audit entry for panel {entry.panel_id}: {e}")
