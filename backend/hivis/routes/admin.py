# Overview: Flask API routes for operators; unprocessed queue, manual matching, code claims and maintenance.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_api_key
from ..services import (
    award_service,
    intake_service,
    ledger_service,
    machine_service,
    matcher_service,
    notification_service,
    redemption_service,
    stats_service,
    sync_poller,
)
from ..services.intake_sources import SOURCE_CSV, SOURCE_MANUAL
from ..services.ledger_service import LedgerError
from ..services.machine_service import MachineNotFoundError
from ..services.matcher_service import MatchError
from ..services.redemption_service import AlreadyClaimedError, CodeNotFoundError
from ..validation import ConflictError, ValidationError, coerce_int


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.before_request
@require_api_key("ADMIN_API_KEY")
def _guard():
    return None


@admin_bp.get("/unprocessed-transactions")
def unprocessed_route():
    limit = request.args.get("limit", type=int)
    rows = matcher_service.get_unprocessed(limit=limit)
    return jsonify({"transactions": [r.to_dict() for r in rows]}), 200


@admin_bp.post("/match-transaction")
def match_transaction_route():
    data = request.get_json(silent=True) or {}
    try:
        ext_id = coerce_int("externalTransactionId", data.get("externalTransactionId"))
        user_id = coerce_int("userId", data.get("userId"))
        result = matcher_service.manual_match(ext_id, user_id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except MatchError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to match transaction")
        return jsonify({"error": "Failed to match transaction"}), 500

    if result.already_processed:
        return jsonify({"error": "Transaction already processed", **result.to_dict()}), 409
    return jsonify({"success": True, **result.to_dict()}), 200


@admin_bp.post("/validate-redemption")
def validate_redemption_route():
    data = request.get_json(silent=True) or {}
    try:
        claim = redemption_service.validate_and_claim(data.get("redemptionCode"))
        return jsonify(claim.to_dict()), 200
    except CodeNotFoundError as e:
        return jsonify({"valid": False, "message": str(e)}), 404
    except AlreadyClaimedError as e:
        return jsonify({"valid": False, "message": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to validate redemption code")
        return jsonify({"error": "Failed to validate redemption code"}), 500


@admin_bp.post("/upload-csv")
def upload_csv_route():
    data = request.get_json(silent=True) or {}
    csv_data = data.get("csvData")
    if not csv_data or not isinstance(csv_data, str):
        return jsonify({"error": "csvData is required"}), 400
    try:
        summary = intake_service.ingest_payload(csv_data, SOURCE_CSV)
        return jsonify({"success": True, **summary}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process CSV upload")
        return jsonify({"error": "Failed to process CSV data"}), 500


@admin_bp.post("/external-transactions")
def manual_ingest_route():
    """Admin-pasted canonical events: a single object or a list."""
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"error": "Invalid JSON payload"}), 400
    try:
        summary = intake_service.ingest_payload(data, SOURCE_MANUAL)
        return jsonify({"success": True, **summary}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to ingest manual transactions")
        return jsonify({"error": "Failed to ingest transactions"}), 500


@admin_bp.get("/stats")
def stats_route():
    return jsonify(stats_service.get_admin_stats()), 200


@admin_bp.post("/machines")
def register_machine_route():
    data = request.get_json(silent=True) or {}
    try:
        machine = machine_service.register_machine(data.get("machineId"), data.get("name"), data.get("location"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(machine.to_dict()), 201


@admin_bp.post("/machines/<machine_id>/status")
def machine_status_route(machine_id: str):
    data = request.get_json(silent=True) or {}
    try:
        machine = machine_service.update_status(machine_id, data.get("isOnline"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except MachineNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(machine.to_dict()), 200


@admin_bp.get("/reconcile")
def balance_drift_route():
    drift = ledger_service.find_balance_drift()
    return jsonify({"consistent": not drift, "drift": drift}), 200


@admin_bp.post("/reconcile/<int:user_id>")
def reconcile_user_route(user_id: int):
    try:
        return jsonify(ledger_service.reconcile_balance(user_id)), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), 404


@admin_bp.post("/reset-streak-rewards")
def reset_streak_rewards_route():
    data = request.get_json(silent=True) or {}
    user_ids = data.get("userIds")
    if user_ids is not None:
        if not isinstance(user_ids, list):
            return jsonify({"error": "userIds must be a list"}), 400
        try:
            user_ids = [coerce_int("userIds", u) for u in user_ids]
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
    count = award_service.reset_streak_rewards(user_ids)
    return jsonify({"reset": count}), 200


@admin_bp.post("/send-notification")
def send_notification_route():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    message = (data.get("message") or "").strip()
    if not title or not message:
        return jsonify({"error": "title and message are required"}), 400
    user_ids = data.get("userIds")
    if user_ids is not None and not isinstance(user_ids, list):
        return jsonify({"error": "userIds must be a list"}), 400
    sent = notification_service.broadcast(
        title,
        message,
        data.get("kind") or notification_service.KIND_ANNOUNCEMENT,
        user_ids,
    )
    return jsonify({"success": True, "sent": sent}), 200


@admin_bp.get("/sync")
def sync_status_route():
    pollers = sync_poller.all_pollers(current_app._get_current_object())
    return jsonify({"pollers": [p.status() for p in pollers]}), 200


@admin_bp.post("/sync/<source>/<action>")
def sync_control_route(source: str, action: str):
    app = current_app._get_current_object()
    poller = sync_poller.get_poller(app, source)
    if not poller:
        return jsonify({"error": f"No poller registered for {source}"}), 404

    if action == "start":
        started = poller.start()
        return jsonify({"started": started, **poller.status()}), 200
    if action == "stop":
        stopped = poller.stop()
        return jsonify({"stopped": stopped, **poller.status()}), 200
    if action == "run":
        summary = poller.run_once()
        return jsonify({"summary": summary, **poller.status()}), 200
    return jsonify({"error": "action must be start, stop or run"}), 400
