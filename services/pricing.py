"""Price input sanitisation and validation

The sanitiser keeps a leading minus sign and treats a string with more
than one dot as unreadable, so "-3.45" stays negative and "3.45.67"
becomes 0. Both are then rejected by validate_price_data.
"""
import math
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sources.base import FuelPrices

MIN_PRICE = Decimal("0.01")
MAX_PRICE = Decimal("999.99")
CENT = Decimal("0.01")

# Keep digits, separators and a sign; everything else (currency symbols, units, text) goes
_NON_NUMERIC = re.compile(r"[^0-9.,\-]")

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"select\s.*\sfrom\s", re.IGNORECASE),
    re.compile(r"insert\s+into", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
    re.compile(r"\.\./"),
    re.compile(r"\$\{.*\}"),
]


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def _parse_text(text: str) -> Decimal | None:
    cleaned = _NON_NUMERIC.sub("", text)
    if "," in cleaned:
        # "3,45" from pt-BR keyboards; with both separators the comma is a thousands mark
        cleaned = cleaned.replace(",", "") if "." in cleaned else cleaned.replace(",", ".")
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def _sanitize_value(raw) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        return Decimal("0")

    if isinstance(raw, str):
        value = _parse_text(raw)
    elif isinstance(raw, (int, float, Decimal)):
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            value = None
    else:
        value = None

    if value is None or not value.is_finite():
        return Decimal("0")
    try:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Too many digits to hold cents in the decimal context
        return Decimal("0")


def sanitize_price_data(raw) -> FuelPrices:
    """
    Turn untrusted price input into FuelPrices.

    Strips currency symbols and stray text from string values, maps anything
    unparseable or missing to 0 and rounds every field to 2 decimals.
    Tolerates None and non-mapping input.

    Args:
        raw: Mapping with "regular", "premium" and "diesel" keys (or anything else).

    Returns:
        FuelPrices; fields that could not be read are Decimal("0.00").
    """
    if not isinstance(raw, dict):
        raw = {}
    return FuelPrices(*(_sanitize_value(raw.get(name)) for name in FuelPrices.FIELDS))


def _decimal_or_none(value) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def validate_price_data(prices) -> ValidationResult:
    """
    Check every field of a FuelPrices (or mapping) against the display limits.

    Collects one message per failing field rather than stopping at the
    first, so the operator can fix everything in one go.
    """
    errors = []
    for name in FuelPrices.FIELDS:
        raw = prices.get(name) if isinstance(prices, dict) else getattr(prices, name, None)
        value = _decimal_or_none(raw)

        if value is None:
            errors.append(f"{name} price must be a valid number")
        elif value <= 0:
            errors.append(f"{name} price must be positive (greater than 0)")
        elif value < MIN_PRICE or value > MAX_PRICE:
            errors.append(f"{name} price must be between {MIN_PRICE} and {MAX_PRICE}")
        elif value != value.quantize(CENT):
            errors.append(f"{name} price cannot have more than 2 decimal places")

    return ValidationResult(is_valid=not errors, errors=errors)


def detect_suspicious_input(raw) -> bool:
    """True if any string inside raw looks like script or SQL injection."""
    if isinstance(raw, str):
        return any(pattern.search(raw) for pattern in _SUSPICIOUS_PATTERNS)
    if isinstance(raw, dict):
        return any(detect_suspicious_input(value) for value in raw.values())
    if isinstance(raw, (list, tuple)):
        return any(detect_suspicious_input(value) for value in raw)
    return False
