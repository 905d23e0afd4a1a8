from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from flask import Flask, current_app

from bastion.services.security_service import SecurityService

if TYPE_CHECKING:  # pragma: no cover
    import redis

    from bastion.app.settings import AppSettings

# chave do serviço em app.extensions
SECURITY_SERVICE_KEY = "security_service"


def init_security_service(
    app: Flask,
    settings: "AppSettings",
    *,
    client: Optional["redis.Redis"] = None,
) -> SecurityService:
    """Constrói, inicia e regista o motor de segurança na aplicação."""

    service = SecurityService.from_settings(settings, client=client)
    service.init()
    app.extensions[SECURITY_SERVICE_KEY] = service
    return service


def get_security_service(app: Optional[Flask] = None) -> SecurityService:
    app_obj = app or current_app
    service = app_obj.extensions.get(SECURITY_SERVICE_KEY)
    if isinstance(service, SecurityService):
        return service
    raise RuntimeError("SecurityService not initialised for this Flask application")
