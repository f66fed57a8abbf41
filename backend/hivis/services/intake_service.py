# Overview: External transaction intake; idempotent on external_id, best-effort synchronous matching.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ExternalTransaction
from ..validation import ValidationError, validate_canonical_event
from hivis.time_utils import utcnow
from .intake_sources import SOURCE_MANUAL, SourceContext, schema_for
from .matcher_service import MatchResult, match_external_transaction


@dataclass
class IngestResult:
    external_transaction: ExternalTransaction
    created: bool
    match: MatchResult | None = None

    @property
    def duplicate(self) -> bool:
        return not self.created

    def to_dict(self) -> dict:
        return {
            "external_transaction": self.external_transaction.to_dict(),
            "created": self.created,
            "duplicate": self.duplicate,
            "match": self.match.to_dict() if self.match else None,
        }


def get_by_external_id(external_id: str) -> ExternalTransaction | None:
    return db.session.query(ExternalTransaction).filter_by(external_id=external_id).first()


def ingest(event: Any, source: str = SOURCE_MANUAL) -> IngestResult:
    """
    Persist one canonical purchase event and try to match it.

    - A repeated externalId is a no-op returning the stored row.
    - Matching failures leave the row queued; they are not intake errors.

    Raises:
        ValidationError: malformed event (nothing stored)
    """
    data = validate_canonical_event(event)

    existing = get_by_external_id(data["external_id"])
    if existing:
        current_app.logger.info("Duplicate external transaction %s from %s ignored", data["external_id"], source)
        return IngestResult(existing, created=False)

    row = ExternalTransaction(
        source=source,
        is_processed=False,
        matched_user_id=None,
        created_at=utcnow(),
        **data,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same event.
        db.session.rollback()
        existing = get_by_external_id(data["external_id"])
        if not existing:
            raise
        current_app.logger.info("Duplicate external transaction %s from %s ignored", data["external_id"], source)
        return IngestResult(existing, created=False)

    try:
        match = match_external_transaction(row.id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Matching failed for external transaction %s; left for manual resolution", data["external_id"],
        )
        match = None

    db.session.refresh(row)
    return IngestResult(row, created=True, match=match)


def ingest_batch(records: list[dict[str, Any]], source: str, batch_id: str | None = None) -> dict:
    """
    Map and ingest raw records from one source.

    Row numbers in errors are 1-based positions in `records`.
    """
    schema = schema_for(source)
    batch_id = batch_id or utcnow().strftime("%Y%m%d%H%M%S%f")
    summary = {"processed": 0, "duplicates": 0, "matched": 0, "unmatched": 0, "errors": []}

    for row_number, raw in enumerate(records, start=1):
        try:
            if not isinstance(raw, dict):
                raise ValidationError("Record must be an object")
            event = schema.normalize(raw, SourceContext(batch_id=batch_id, row_number=row_number))
            result = ingest(event, source=source)
        except ValidationError as exc:
            summary["errors"].append({"row": row_number, "error": str(exc)})
            continue

        if result.duplicate:
            summary["duplicates"] += 1
            continue
        summary["processed"] += 1
        if result.match and result.match.matched:
            summary["matched"] += 1
        else:
            summary["unmatched"] += 1

    current_app.logger.info(
        "Ingested %s batch %s: %s processed, %s duplicates, %s errors",
        source, batch_id, summary["processed"], summary["duplicates"], len(summary["errors"]),
    )
    return summary


def ingest_payload(payload: Any, source: str, batch_id: str | None = None) -> dict:
    """Split a source delivery (webhook body, CSV text, S3 object) into records and ingest them."""
    records = schema_for(source).extract_records(payload)
    return ingest_batch(records, source, batch_id=batch_id)
