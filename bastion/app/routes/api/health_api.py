from __future__ import annotations

from flask import Blueprint, jsonify

from bastion.app.extensions import get_security_service

health_api_bp = Blueprint("api_health", __name__)


@health_api_bp.get("/health")
def healthcheck():
    """Return a basic health payload; the store flag never fails the check."""

    store_ok = get_security_service().store.ping()
    return jsonify({"status": "ok", "store": store_ok})
