"""Ligação do motor de segurança ao ciclo de pedido do Flask.

``install_security`` deve ser chamado depois de registados os hooks de
autenticação: a identidade vem de ``flask.g.user`` (atributos ou chaves
``id`` e ``company_id``).
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Mapping, Optional, Pattern, Sequence, Tuple

from flask import Flask, Response, g, jsonify, request

from bastion.app.extensions import get_security_service
from bastion.models.Request import Decision, RequestContext
from bastion.services.security.patterns import SQL_INJECTION_PATTERNS, XSS_PATTERNS, scan_payload
from bastion.services.security_service import SecurityService
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

DEFAULT_VALIDATION_PATTERNS: Tuple[Pattern[str], ...] = SQL_INJECTION_PATTERNS + XSS_PATTERNS


def _user_attr(user: Any, *names: str) -> Optional[str]:
    for name in names:
        if isinstance(user, Mapping):
            value = user.get(name)
        else:
            value = getattr(user, name, None)
        if value is not None:
            return str(value)
    return None


def current_identity() -> Tuple[Optional[str], Optional[str]]:
    user = g.get("user")
    if user is None:
        return None, None
    return _user_attr(user, "id"), _user_attr(user, "company_id", "companyId")


def _request_body() -> Any:
    if request.is_json:
        return request.get_json(silent=True)
    if request.form:
        return request.form.to_dict(flat=False)
    return None


def build_request_context() -> RequestContext:
    user_id, company_id = current_identity()
    return RequestContext(
        method=request.method,
        path=request.path,
        ip=request.remote_addr or "unknown",
        url=request.full_path.rstrip("?"),
        user_agent=request.headers.get("User-Agent", ""),
        body=_request_body(),
        user_id=user_id,
        company_id=company_id,
    )


def rejection_response(decision: Decision) -> Tuple[Response, int]:
    response = jsonify(decision.to_payload())
    if decision.retry_after is not None:
        response.headers["Retry-After"] = str(decision.retry_after)
    return response, decision.status


def install_security(app: Flask, service: SecurityService) -> None:
    """Regista os hooks ``before_request``/``after_request`` do motor."""

    @app.before_request
    def _security_check():
        ctx = build_request_context()
        decision = service.check_request(ctx)
        g.security_decision = decision
        if not decision.allowed:
            return rejection_response(decision)
        return None

    @app.after_request
    def _security_release(response: Response) -> Response:
        decision = g.get("security_decision")
        if decision is not None and decision.rate_limit_identity:
            service.on_response(decision.rate_limit_identity, response.status_code)
        return response

    logger.info("Hooks de segurança instalados")


def report_failed_login(endpoint: Optional[str] = None) -> Optional[int]:
    """Para views de login: regista uma tentativa falhada do pedido atual."""

    service = get_security_service()
    return service.record_failed_attempt(request.remote_addr or "unknown", endpoint or request.path)


def validate_payload(patterns: Optional[Sequence[Pattern[str]]] = None) -> Callable:
    """Rejeita com 400 pedidos cujo JSON/form/query contenha padrões perigosos.

    A resposta lista apenas os caminhos dos campos, nunca o conteúdo.
    """

    active = tuple(patterns) if patterns is not None else DEFAULT_VALIDATION_PATTERNS

    def wrapper(fn: Callable) -> Callable:
        @wraps(fn)
        def decorated_view(*args: Any, **kwargs: Any):
            payload = {
                "body": _request_body(),
                "query": request.args.to_dict(flat=False),
            }
            hits = scan_payload(payload, active)
            if not hits:
                return fn(*args, **kwargs)

            fields = sorted({path for path, _ in hits})
            get_security_service().record_validation_error(build_request_context(), fields)
            return jsonify({
                "success": False,
                "error": "Validation failed",
                "code": "validation_failed",
                "fields": fields,
            }), 400

        return decorated_view

    return wrapper


__all__ = [
    "build_request_context",
    "current_identity",
    "install_security",
    "rejection_response",
    "report_failed_login",
    "validate_payload",
]
