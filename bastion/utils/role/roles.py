from __future__ import annotations

import hmac
from functools import wraps
from typing import Any, Callable, Optional

from flask import current_app, jsonify, request

ADMIN_KEY_HEADER = "X-Admin-Key"


def require_admin_key():
    """Devolve ``None`` se o pedido traz a chave de administração correta.

    Sem chave configurada a superfície de administração fica fechada.
    """

    expected: Optional[str] = current_app.config.get("ADMIN_API_KEY") or None
    provided = request.headers.get(ADMIN_KEY_HEADER, "")

    if expected and provided and hmac.compare_digest(provided.encode(), expected.encode()):
        return None

    payload = {
        "success": False,
        "error": "forbidden",
        "message": "Chave de administração ausente ou inválida.",
    }
    return jsonify(payload), 403


def admin_key_required(fn: Callable) -> Callable:
    @wraps(fn)
    def decorator_view(*args: Any, **kwargs: Any):
        result = require_admin_key()
        if result is not None:
            return result
        return fn(*args, **kwargs)

    return decorator_view
