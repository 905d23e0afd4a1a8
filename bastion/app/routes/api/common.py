"""Shared helpers for API blueprints."""
from __future__ import annotations

import ipaddress
from typing import Any, Optional, Tuple

from flask import Response, jsonify

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}

MAX_PAGE_SIZE = 1000


def error_response(message: str, status: int, code: Optional[str] = None) -> Tuple[Response, int]:
    payload: dict[str, Any] = {"success": False, "error": message}
    if code:
        payload["code"] = code
    return jsonify(payload), status


def normalize_ip(value: Any) -> str | None:
    """Return the canonical text form of an IPv4/IPv6 address, or ``None``."""

    if not isinstance(value, str):
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def parse_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    text = value.strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value}")


def clamp_page(limit: int | None, offset: int | None, default_limit: int = 100) -> tuple[int, int]:
    limit = default_limit if limit is None else limit
    offset = 0 if offset is None else offset
    return max(0, min(limit, MAX_PAGE_SIZE)), max(0, offset)
