# Overview: Per-source field mapping from raw vending records to the canonical purchase event.

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from typing import Any

from ..validation import ValidationError


SOURCE_WEBHOOK = "webhook"
SOURCE_S3 = "s3"
SOURCE_CSV = "csv"
SOURCE_MANUAL = "manual"

UNKNOWN_MACHINE = "UNKNOWN"
UNKNOWN_PRODUCT = "Unknown Product"


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _dollars_to_cents(value: Any) -> int | None:
    """Dollar amount to integer cents: '4.50', 4.5 and '$4.50' all give 450."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("amount must be numeric")
    if isinstance(value, (int, float)):
        dollars = value
    else:
        text = str(value).strip().replace("$", "").replace(",", "")
        if not text:
            return None
        try:
            dollars = float(text)
        except ValueError:
            raise ValidationError("amount must be numeric")
    try:
        if not math.isfinite(dollars):
            raise ValueError(dollars)
        return int(round(dollars * 100))
    except (ValueError, OverflowError):
        raise ValidationError("amount must be numeric")


@dataclass
class SourceContext:
    """Per-batch information a schema may need (CSV row numbering)."""
    batch_id: str | None = None
    row_number: int | None = None


class BaseSourceSchema:
    name: str = ""

    def normalize(self, raw: dict[str, Any], context: SourceContext | None = None) -> dict[str, Any]:
        """Map one raw record to {externalId, machineId, cardNumber, phoneNumber, amount, productName, timestamp}."""
        raise NotImplementedError

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        """Split a delivery (webhook body, S3 object, ...) into raw records."""
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return [payload]
        raise ValidationError("Invalid payload")


class WebhookSchema(BaseSourceSchema):
    """Vending platform push webhook; amounts arrive in cents or dollars."""
    name = SOURCE_WEBHOOK

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict):
            if isinstance(payload.get("transactions"), list):
                return payload["transactions"]
            if isinstance(payload.get("transaction"), dict):
                return [payload["transaction"]]
        return super().extract_records(payload)

    def normalize(self, raw: dict[str, Any], context: SourceContext | None = None) -> dict[str, Any]:
        amount = _first(raw, "amount_cents", "amountCents")
        if amount is None:
            amount = _dollars_to_cents(raw.get("amount"))
        return {
            "externalId": _to_text(_first(raw, "id", "transaction_id", "transactionId")),
            "machineId": _to_text(_first(raw, "machine_id", "deviceId", "machineId")),
            "cardNumber": _to_text(_first(raw, "card_number", "cardNumber")),
            "phoneNumber": _to_text(_first(raw, "phone_number", "phoneNumber")),
            "amount": amount,
            "productName": _to_text(_first(raw, "product_name", "productName", "item")),
            "timestamp": _first(raw, "timestamp", "created_at"),
        }


class S3Schema(BaseSourceSchema):
    """Polled AWS export object; amount is already in cents."""
    name = SOURCE_S3

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict) and isinstance(payload.get("transactions"), list):
            return payload["transactions"]
        return super().extract_records(payload)

    def normalize(self, raw: dict[str, Any], context: SourceContext | None = None) -> dict[str, Any]:
        return {
            "externalId": _to_text(raw.get("transactionId")),
            "machineId": _to_text(raw.get("machineId")) or UNKNOWN_MACHINE,
            "cardNumber": _to_text(raw.get("cardNumber")),
            "phoneNumber": _to_text(raw.get("phoneNumber")),
            "amount": raw.get("amount"),
            "productName": _to_text(raw.get("product")),
            "timestamp": raw.get("date"),
        }


class CsvSchema(BaseSourceSchema):
    """
    Admin-uploaded sales export. Headers are case-insensitive; amount is in
    dollars. Rows without their own id get CSV_<batch>_<row>.
    """
    name = SOURCE_CSV

    def extract_records(self, payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, str):
            return parse_csv(payload)
        return super().extract_records(payload)

    def normalize(self, raw: dict[str, Any], context: SourceContext | None = None) -> dict[str, Any]:
        row = {str(k).strip().lower(): v for k, v in raw.items() if k is not None}
        external_id = _to_text(_first(row, "external_id", "transaction_id", "id"))
        if not external_id and context is not None:
            external_id = f"CSV_{context.batch_id}_{context.row_number}"
        return {
            "externalId": external_id,
            "machineId": _to_text(_first(row, "machine_id", "machine")) or UNKNOWN_MACHINE,
            "cardNumber": _to_text(_first(row, "card_number", "card")),
            "phoneNumber": _to_text(_first(row, "phone_number", "phone")),
            "amount": _dollars_to_cents(row.get("amount")),
            "productName": _to_text(_first(row, "product", "item")) or UNKNOWN_PRODUCT,
            "timestamp": _first(row, "date", "timestamp"),
        }


class ManualSchema(BaseSourceSchema):
    """Admin-pasted JSON already in canonical shape."""
    name = SOURCE_MANUAL

    def normalize(self, raw: dict[str, Any], context: SourceContext | None = None) -> dict[str, Any]:
        return dict(raw)


SCHEMAS: dict[str, BaseSourceSchema] = {
    SOURCE_WEBHOOK: WebhookSchema(),
    SOURCE_S3: S3Schema(),
    SOURCE_CSV: CsvSchema(),
    SOURCE_MANUAL: ManualSchema(),
}


def schema_for(source: str) -> BaseSourceSchema:
    schema = SCHEMAS.get(source)
    if not schema:
        raise ValidationError(f"Unknown source: {source}")
    return schema


def parse_csv(text: str) -> list[dict[str, Any]]:
    """Header row + data rows; blank lines are skipped."""
    reader = csv.DictReader(io.StringIO(text.strip()), skipinitialspace=True)
    return [row for row in reader if any((v or "").strip() for v in row.values() if isinstance(v, str))]
