#bastion/app/__init__.py


from __future__ import annotations

import atexit
from typing import TYPE_CHECKING, Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from bastion.app.extensions import init_security_service
from bastion.app.middleware import install_security
from bastion.app.settings import AppSettings, load_settings, store_settings
from bastion.utils.logs import logger

if TYPE_CHECKING:  # pragma: no cover
    import redis


def create_app(
    config_name: str | None = None,
    *,
    store: Optional["redis.Redis"] = None,
    settings: Optional[AppSettings] = None,
) -> Flask:
    """Application factory.

    ``store`` injeta um cliente Redis já construído (p.ex. ``fakeredis`` nos
    testes); ``settings`` substitui o carregamento a partir do ambiente.
    """

    logger.process("Criando app")
    if settings is None:
        settings = load_settings(config_name)
    elif config_name:
        settings = settings.with_environment(config_name)
    app = Flask(__name__)
    app.config.update(settings.as_flask_config())
    app.debug = settings.debug
    app.testing = settings.testing
    store_settings(app, settings)
    logger.info("app criado")

    logger.process("Configurando app")
    logger.warning(f"USANDO STORE: {settings.store.url if store is None else 'cliente injetado'}")
    if settings.trust_proxy_hops > 0:
        hops = settings.trust_proxy_hops
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)
        logger.info("ProxyFix ativo (%d hops)", hops)
    logger.info("app configurado")

    logger.process("Iniciando motor de segurança")
    service = init_security_service(app, settings, client=store)
    install_security(app, service)
    if not settings.testing:
        atexit.register(service.shutdown)
    logger.info("motor de segurança iniciado")

    logger.info("Registrando blueprints")
    register_blueprints(app)

    return app


def register_blueprints(app: Flask) -> None:
    from bastion.app.routes.api import api_bp

    app.register_blueprint(api_bp, url_prefix='/api')
    logger.info("API registrada")
