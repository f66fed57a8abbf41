# Overview: Flask API route for the vending machine list (read-only).

from flask import Blueprint, jsonify

from ..services import machine_service


machines_bp = Blueprint("machines", __name__, url_prefix="/api/machines")


@machines_bp.get("")
def list_machines_route():
    return jsonify({"machines": [m.to_dict() for m in machine_service.list_machines()]}), 200
