from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from coldchain.errors import BadRequestError
from coldchain.time_utils import parse_iso_datetime

KG = Decimal("0.001")
MONEY = Decimal("0.01")

# Upper bound for any single amount or quantity; keeps Numeric(14, x) from overflowing
MAX_VALUE = Decimal("99999999999")


def to_decimal(value: Any, field: str, *, places: Decimal = MONEY, positive: bool = True) -> Decimal:
    """
    Coerce user input into a quantized Decimal.

    Floats go through str() so 0.1 stays 0.1. Booleans, NaN and infinities
    are rejected.
    """
    if value is None or isinstance(value, bool):
        raise BadRequestError(f"{field} is required")
    if isinstance(value, float):
        value = str(value)
    try:
        number = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequestError(f"{field} must be a number")
    if not number.is_finite():
        raise BadRequestError(f"{field} must be a finite number")
    if positive and number <= 0:
        raise BadRequestError(f"{field} must be positive")
    if number > MAX_VALUE:
        raise BadRequestError(f"{field} is too large")
    return number.quantize(places, rounding=ROUND_HALF_UP)


def to_kg(value: Any, field: str = "quantity_kg") -> Decimal:
    return to_decimal(value, field, places=KG)


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def to_datetime(value: Any, field: str) -> datetime:
    """Accept a datetime or an ISO-8601 string; return UTC-naive."""
    if isinstance(value, datetime):
        return parse_iso_datetime(value.isoformat())
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise BadRequestError(f"{field} must be an ISO-8601 datetime")
        if dt is not None:
            return dt
    raise BadRequestError(f"{field} is required")


def to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise BadRequestError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise BadRequestError(f"{field} must be an integer")
