# Overview: Flask API routes for the reward catalog and point redemption.

from flask import Blueprint, request, jsonify, current_app

from ..services import redemption_service
from ..services.redemption_service import (
    InsufficientPointsError,
    RedemptionError,
    RewardNotFoundError,
)
from ..validation import ValidationError, coerce_int


rewards_bp = Blueprint("rewards", __name__, url_prefix="/api/rewards")


@rewards_bp.get("")
def list_rewards_route():
    rewards = redemption_service.list_rewards()
    return jsonify({"rewards": [r.to_dict() for r in rewards]}), 200


@rewards_bp.post("/redeem")
def redeem_route():
    data = request.get_json(silent=True) or {}
    try:
        user_id = coerce_int("userId", data.get("userId"))
        reward_id = coerce_int("rewardId", data.get("rewardId"))
        result = redemption_service.redeem(user_id, reward_id)
        return jsonify({
            "success": True,
            "message": f"{result.reward_name} redeemed successfully!",
            **result.to_dict(),
        }), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InsufficientPointsError as e:
        return jsonify({"error": "Insufficient points", "available": e.available, "required": e.required}), 400
    except RewardNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except RedemptionError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to redeem reward")
        return jsonify({"error": "Failed to redeem reward"}), 500
