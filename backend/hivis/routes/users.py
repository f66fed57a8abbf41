# Overview: Flask API routes for member profiles, history, scans, referrals and the notification inbox.

from flask import Blueprint, request, jsonify, current_app

from ..services import (
    ledger_service,
    notification_service,
    referral_service,
    user_service,
)
from ..services.referral_service import ReferralError
from ..services.user_service import UserNotFoundError
from ..validation import ConflictError, ValidationError


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.errorhandler(UserNotFoundError)
def _user_not_found(e):
    return jsonify({"error": str(e)}), 404


@users_bp.post("")
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.create_user(
            data.get("email"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            suburb=data.get("suburb"),
            card_number=data.get("cardNumber"),
            phone_number=data.get("phoneNumber"),
        )
        return jsonify({"user": user.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409


@users_bp.get("/<int:user_id>")
def get_user_route(user_id: int):
    return jsonify({"user": user_service.get_profile(user_id)}), 200


@users_bp.patch("/<int:user_id>")
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    field_map = {
        "firstName": "first_name",
        "lastName": "last_name",
        "suburb": "suburb",
        "phoneNumber": "phone_number",
    }
    unknown = [k for k in data if k not in field_map]
    if unknown:
        return jsonify({"error": f"Fields not editable: {', '.join(sorted(unknown))}"}), 400
    user = user_service.update_profile(user_id, {field_map[k]: v for k, v in data.items()})
    return jsonify({"user": user.to_dict()}), 200


@users_bp.get("/<int:user_id>/transactions")
def transactions_route(user_id: int):
    user_service.get_user(user_id)
    limit = request.args.get("limit", default=20, type=int)
    limit = max(1, min(limit, 200))
    rows = ledger_service.get_user_transactions(user_id, limit=limit)
    return jsonify({"transactions": [t.to_dict() for t in rows]}), 200


@users_bp.post("/<int:user_id>/card")
def link_card_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = user_service.link_card(user_id, data.get("cardNumber"))
        return jsonify({"success": True, "user": user.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409


@users_bp.post("/<int:user_id>/scan")
def scan_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        result = user_service.record_scan(user_id, data.get("qrData"), data.get("amount"))
        return jsonify({"success": True, **result.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except UserNotFoundError:
        raise
    except Exception:
        current_app.logger.exception("Failed to process QR scan")
        return jsonify({"error": "Failed to process QR scan"}), 500


@users_bp.get("/<int:user_id>/referral-code")
def referral_code_route(user_id: int):
    try:
        code = referral_service.get_or_create_referral_code(user_id)
        return jsonify({"referral_code": code}), 200
    except ReferralError as e:
        return jsonify({"error": str(e)}), 404


@users_bp.post("/<int:user_id>/referral")
def use_referral_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        result = referral_service.apply_referral_code(user_id, data.get("referralCode"))
        return jsonify({"success": True, **result}), 200
    except ReferralError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to use referral code")
        return jsonify({"error": "Failed to use referral code"}), 500


@users_bp.get("/<int:user_id>/notifications")
def notifications_route(user_id: int):
    user_service.get_user(user_id)
    return jsonify({"notifications": notification_service.list_notifications(user_id)}), 200


@users_bp.post("/<int:user_id>/notifications/<int:notification_id>/read")
def mark_read_route(user_id: int, notification_id: int):
    if not notification_service.mark_read(notification_id, user_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"success": True}), 200
