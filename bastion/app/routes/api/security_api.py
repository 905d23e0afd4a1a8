"""Administrative endpoints of the mitigation engine."""
from __future__ import annotations

from flask import Blueprint, jsonify, request

from bastion.app.extensions import get_security_service
from bastion.models.Security_event import EventType, Severity
from bastion.repository.Base_repository import StoreUnavailable
from bastion.services.security_service import EVENT_SOURCES
from bastion.utils.logs import get_logger
from bastion.utils.role.roles import admin_key_required

from .common import clamp_page, error_response, normalize_ip, parse_bool

logger = get_logger(__name__)

security_api_bp = Blueprint("api_security", __name__)


@security_api_bp.route("/stats", methods=["GET"])
@admin_key_required
def security_stats():
    return jsonify({"success": True, "data": get_security_service().get_security_stats()})


@security_api_bp.route("/events", methods=["GET"])
@admin_key_required
def security_events():
    limit, offset = clamp_page(
        request.args.get("limit", type=int),
        request.args.get("offset", type=int),
    )
    source = request.args.get("source", "memory")
    if source not in EVENT_SOURCES:
        return error_response(f"source must be one of {', '.join(EVENT_SOURCES)}", 400, "invalid_source")

    try:
        event_type = EventType(request.args["type"]) if "type" in request.args else None
        severity = Severity(request.args["severity"]) if "severity" in request.args else None
    except ValueError as exc:
        return error_response(str(exc), 400, "invalid_filter")

    ip = None
    if "ip" in request.args:
        ip = normalize_ip(request.args["ip"])
        if ip is None:
            return error_response("invalid IP address", 400, "invalid_ip")

    try:
        events = get_security_service().get_security_events(
            limit,
            offset,
            event_type=event_type,
            severity=severity,
            ip=ip,
            source=source,
        )
    except StoreUnavailable as exc:
        logger.error("Erro ao ler eventos persistidos: %s", exc)
        return error_response("event store unavailable", 503, "store_unavailable")

    return jsonify({
        "success": True,
        "data": [event.to_dict() for event in events],
        "pagination": {"limit": limit, "offset": offset, "count": len(events)},
    })


@security_api_bp.route("/threats", methods=["GET"])
@admin_key_required
def threat_intelligence():
    min_score = request.args.get("min_score", type=int)
    try:
        blocked = parse_bool(request.args.get("blocked"))
    except ValueError as exc:
        return error_response(str(exc), 400, "invalid_filter")

    entries = get_security_service().get_threat_intelligence(min_score=min_score, blocked=blocked)
    return jsonify({"success": True, "data": [entry.to_dict() for entry in entries]})


@security_api_bp.route("/threats/<ip>", methods=["GET"])
@admin_key_required
def threat_detail(ip: str):
    normalized = normalize_ip(ip)
    if normalized is None:
        return error_response("invalid IP address", 400, "invalid_ip")

    entry = get_security_service().get_threat(normalized)
    if entry is None:
        return error_response("no reputation entry for this IP", 404, "not_found")
    return jsonify({"success": True, "data": entry.to_dict()})


@security_api_bp.route("/block", methods=["POST"])
@admin_key_required
def block_ip():
    data = request.get_json(silent=True) or {}
    ip = normalize_ip(data.get("ip"))
    if ip is None:
        return error_response("invalid IP address", 400, "invalid_ip")

    reason = str(data.get("reason") or "").strip()
    result = get_security_service().block_ip(ip, reason)
    return jsonify({
        "success": True,
        "data": result["entry"].to_dict(),
        "persisted": result["persisted"],
    })


@security_api_bp.route("/unblock", methods=["POST"])
@admin_key_required
def unblock_ip():
    data = request.get_json(silent=True) or {}
    ip = normalize_ip(data.get("ip"))
    if ip is None:
        return error_response("invalid IP address", 400, "invalid_ip")

    result = get_security_service().unblock_ip(ip)
    entry = result["entry"]
    return jsonify({
        "success": True,
        "data": entry.to_dict() if entry is not None else None,
        "persisted": result["persisted"],
    })
