"""API blueprint aggregator."""
from __future__ import annotations

from flask import Blueprint

api_bp = Blueprint("api", __name__)

from .health_api import health_api_bp
from .security_api import security_api_bp

api_bp.register_blueprint(health_api_bp)
api_bp.register_blueprint(security_api_bp, url_prefix="/security")

__all__ = ["api_bp"]
