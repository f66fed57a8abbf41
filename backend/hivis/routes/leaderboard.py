# Overview: Flask API routes for the all-time and monthly leaderboards (read-only).

from flask import Blueprint, request, jsonify

from ..services import season_service
from ..services.season_service import SeasonError


leaderboard_bp = Blueprint("leaderboard", __name__, url_prefix="/api/leaderboard")


@leaderboard_bp.get("")
def all_time_route():
    """All-time standings by suburb, ranked on lifetime total_points."""
    return jsonify({"suburbs": season_service.get_leaderboard_by_suburb()}), 200


@leaderboard_bp.get("/seasons")
def seasons_route():
    return jsonify({"seasons": [s.to_dict() for s in season_service.list_seasons()]}), 200


@leaderboard_bp.get("/monthly")
def monthly_route():
    """Season standings; defaults to the active season."""
    season_id = request.args.get("seasonId", type=int)
    suburb = request.args.get("suburb") or None
    if season_id is None:
        season = season_service.get_current_season()
        if not season:
            return jsonify({"season": None, "entries": []}), 200
        season_id = season.id
    try:
        entries = season_service.get_monthly_leaderboard(season_id, suburb=suburb)
    except SeasonError as e:
        return jsonify({"error": str(e)}), 404
    season = season_service.get_season(season_id)
    return jsonify({"season": season.to_dict(), "entries": entries}), 200
