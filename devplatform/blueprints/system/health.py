from flask import Blueprint, jsonify

health_bp = Blueprint("health_bp", __name__, url_prefix="/health")

@health_bp.get("/")
def health() -> jsonify:
    """
    Liveness probe. Does not touch the database.

    Returns:
        {"status": "ok"}
    """
    return jsonify({"status": "ok"})
