from __future__ import annotations

from datetime import datetime
from typing import Any

from hivis.time_utils import parse_iso_datetime


# Largest single vending purchase accepted from a source: $100,000.00
MAX_AMOUNT_CENTS = 10_000_000

CANONICAL_REQUIRED_FIELDS = ("externalId", "machineId", "amount", "productName", "timestamp")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., card number already linked)."""


def coerce_int(field: str, value: Any) -> int:
    """
    Strict integer coercion for money/points fields.

    Rejects floats, decimals, scientific notation and booleans.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_datetime(field: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return parse_iso_datetime(value.isoformat())
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_canonical_event(payload: Any) -> dict:
    """
    Validates + normalizes a canonical purchase event:

        {externalId, machineId, cardNumber?, phoneNumber?, amount, productName, timestamp}

    Returns a cleaned dict with snake_case keys ready for persistence.
    amount is integer minor units (cents) and must be >= 0.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = [f for f in CANONICAL_REQUIRED_FIELDS if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    amount = coerce_int("amount", payload["amount"])
    if amount < 0:
        raise ValidationError("amount must be >= 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount cannot exceed {MAX_AMOUNT_CENTS}")

    external_id = _text(payload["externalId"])
    machine_id = _text(payload["machineId"])
    product_name = _text(payload["productName"])
    if not external_id or not machine_id or not product_name:
        raise ValidationError("externalId, machineId and productName cannot be blank")
    if len(external_id) > 128:
        raise ValidationError("externalId exceeds max length 128")

    return {
        "external_id": external_id,
        "machine_id": machine_id,
        "card_number": _text(payload.get("cardNumber")),
        "phone_number": _text(payload.get("phoneNumber")),
        "amount": amount,
        "product_name": product_name,
        "timestamp": coerce_datetime("timestamp", payload["timestamp"]),
    }
