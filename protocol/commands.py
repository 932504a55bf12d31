"""Command codes and high-level frame builders for LED price controllers.

Price updates use binary framing around a UTF-8 JSON record so controllers
and bench tools can read the payload as text. Field controllers running
older firmware may answer with non-JSON payloads; the price decoder falls
back to DEFAULT_PRICES for those instead of failing.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import IntEnum

from protocol.codec import Frame, decode_frame, encode_frame, MalformedFrame
from sources.base import FuelPrices

logger = logging.getLogger(__name__)


class Command(IntEnum):
    """Command codes, shared by requests and replies."""

    NAK = 0x15
    PRICE_UPDATE = 0x31
    STATUS_QUERY = 0x32
    PING = 0x33
    ERROR = 0xFF


# Reply commands that mean the controller rejected the request
REJECTION_COMMANDS = frozenset({Command.NAK, Command.ERROR})

# Shown when a legacy price payload cannot be parsed
DEFAULT_PRICES = FuelPrices(Decimal("3.50"), Decimal("3.70"), Decimal("3.30"))


@dataclass
class PriceUpdate:
    """
    Decoded price-update payload.

    Attributes:
        prices: Prices carried by the frame, or DEFAULT_PRICES when degraded.
        panel_id: Correlation id of the target panel, if present.
        timestamp: ISO-8601 creation time, if present.
        degraded: True when the payload was not a structured record.
    """
    prices: FuelPrices
    panel_id: str | None = None
    timestamp: str | None = None
    degraded: bool = False


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_price_payload(
    prices: FuelPrices, panel_id: str | None = None, timestamp: str | None = None
) -> bytes:
    """Serialise prices and correlation metadata as compact UTF-8 JSON."""
    record = {
        "panelId": panel_id or "default",
        "timestamp": timestamp or _utc_timestamp(),
        "prices": prices.as_dict(),
    }
    return json.dumps(record, separators=(",", ":")).encode("utf-8")


def create_price_update_frame(
    prices: FuelPrices, panel_id: str | None = None, timestamp: str | None = None
) -> bytes:
    """Build a PRICE_UPDATE (0x31) frame."""
    frame = encode_frame(Command.PRICE_UPDATE, build_price_payload(prices, panel_id, timestamp))
    logger.debug(f"Protocol: Built price frame for panel {panel_id or 'default'}: {frame.hex()}")
    return frame


def create_status_query_frame() -> bytes:
    """Build a STATUS_QUERY (0x32) frame with an empty payload."""
    return encode_frame(Command.STATUS_QUERY)


def create_ack_frame() -> bytes:
    """Build a PING/ACK (0x33) frame."""
    return encode_frame(Command.PING, b"ACK")


def create_nak_frame(reason: str = "NAK") -> bytes:
    """Build a NAK (0x15) frame carrying a text reason."""
    return encode_frame(Command.NAK, reason.encode("utf-8"))


def create_custom_frame(command: int, payload: bytes = b"") -> bytes:
    """Build a frame for an arbitrary command code."""
    return encode_frame(command, payload)


def parse_price_payload(payload: bytes) -> PriceUpdate:
    """
    Parse a price-update payload.

    Accepts the structured record ({"prices": {...}, "panelId": ...}) and
    the flat legacy shape ({"regular": ..., ...}). Anything else yields
    DEFAULT_PRICES with degraded=True.
    """
    try:
        record = json.loads(payload.decode("utf-8"))
        node = record.get("prices", record)
        prices = FuelPrices.from_dict(node)
        if not all(getattr(prices, name).is_finite() for name in FuelPrices.FIELDS):
            raise ValueError("non-finite price")
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as e:
        logger.warning(f"Protocol: Unstructured price payload ({e}), using default prices")
        return PriceUpdate(prices=DEFAULT_PRICES, degraded=True)

    panel_id = record.get("panelId")
    timestamp = record.get("timestamp")
    return PriceUpdate(
        prices=prices,
        panel_id=str(panel_id) if panel_id is not None else None,
        timestamp=str(timestamp) if timestamp is not None else None,
    )


def parse_price_update(frame: Frame) -> PriceUpdate:
    """Extract prices from a decoded PRICE_UPDATE frame."""
    if frame.command != Command.PRICE_UPDATE:
        raise MalformedFrame(
            f"expected command 0x{Command.PRICE_UPDATE:02X}, got 0x{frame.command:02X}"
        )
    return parse_price_payload(frame.payload)


def decode_price_update(data: bytes) -> PriceUpdate:
    """Decode raw frame bytes and extract the price record."""
    return parse_price_update(decode_frame(data))
