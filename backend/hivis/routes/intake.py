# Overview: Flask API routes for vending/POS intake; machine-to-machine, guarded by the intake API key.

"""
Intake Routes

Status codes tell the sender whether to redeliver:
- 2xx: stored (or already stored); do not resend
- 400: malformed; resending won't help
- 5xx: transient storage failure; resend
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_api_key
from ..services import intake_service
from ..services.intake_sources import SOURCE_MANUAL, SOURCE_S3, SOURCE_WEBHOOK
from ..validation import ValidationError


intake_bp = Blueprint("intake", __name__, url_prefix="/api/external")


@intake_bp.post("/transaction")
@require_api_key("INTAKE_API_KEY")
def ingest_transaction_route():
    """Single canonical event: {externalId, machineId, cardNumber?, amount, productName, timestamp}."""
    data = request.get_json(silent=True)
    try:
        result = intake_service.ingest(data, source=SOURCE_MANUAL)
        return jsonify(result.to_dict()), 201 if result.created else 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to ingest external transaction")
        return jsonify({"error": "Failed to process transaction"}), 500


def _ingest_delivery(source: str):
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Invalid JSON payload"}), 400
    try:
        summary = intake_service.ingest_payload(data, source)
        return jsonify({"success": True, **summary}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process %s delivery", source)
        return jsonify({"error": "Failed to process delivery"}), 500


@intake_bp.post("/webhook")
@require_api_key("INTAKE_API_KEY")
def webhook_route():
    """Vending platform push: {transactions: [...]} or {transaction: {...}}."""
    return _ingest_delivery(SOURCE_WEBHOOK)


@intake_bp.post("/s3")
@require_api_key("INTAKE_API_KEY")
def s3_route():
    """AWS export relay: a list of records or {transactions: [...]}."""
    return _ingest_delivery(SOURCE_S3)
