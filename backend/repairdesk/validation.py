from __future__ import annotations
from datetime import date
from typing import Any

from repairdesk.time_utils import parse_iso_date


# Largest single amount accepted from clients: 99,99,99,999.99 (in paise)
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., concurrent settlement creation)."""


class NotFoundError(LookupError):
    """404-level: resource does not exist within the caller's company scope."""


def coerce_int(key: str, value: Any) -> int:
    """
    Strict integer coercion for client input.

    Accepts ints and plain digit strings. Rejects bools, floats,
    decimals and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def coerce_amount_cents(key: str, value: Any) -> int:
    """Integer amount in minor units, bounded to MAX_AMOUNT_CENTS in magnitude."""
    amount = coerce_int(key, value)
    if abs(amount) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} exceeds maximum allowed amount")
    return amount


def require_fields(payload: dict | None, *keys: str) -> dict:
    """Ensure a JSON object body carrying every key in `keys` (null counts as missing)."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [k for k in keys if payload.get(k) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return payload


def parse_date_value(key: str, value: Any) -> date | None:
    """ISO date from a body field or query arg; None/blank passes through."""
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 date")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")


def parse_positive_int(key: str, value: Any, *, default: int, maximum: int | None = None) -> int:
    """Pagination-style integer: blank -> default, must be >= 1, clamped to maximum."""
    if value is None or value == "":
        return default
    parsed = coerce_int(key, value)
    if parsed < 1:
        raise ValidationError(f"{key} must be at least 1")
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed
