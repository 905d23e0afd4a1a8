# tests/conftest.py
import fakeredis
import pytest

from bastion.app import create_app
from bastion.app.extensions import get_security_service
from bastion.app.settings import (
    AppSettings,
    BruteForceSettings,
    RateLimitSettings,
    SecretsSettings,
)
from bastion.models.Security_config import BruteForceConfig, RateLimitConfig, SecurityConfig
from bastion.repository.Base_repository import SecurityStore
from bastion.services.security.writer import BackgroundWriter
from bastion.services.security_service import SecurityService

ADMIN_KEY = "test-admin-key"


@pytest.fixture(scope="function")
def redis_client():
    """Redis em memória; cada teste começa com o store vazio."""
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    yield client
    client.flushall()


@pytest.fixture(scope="function")
def store(redis_client):
    return SecurityStore(redis_client)


@pytest.fixture(scope="function")
def security_config():
    return SecurityConfig(
        rate_limit=RateLimitConfig(window_ms=60_000, max=3),
        brute_force=BruteForceConfig(free_retries=2, min_wait_ms=5_000, max_wait_ms=60_000),
        ip_blocklist=frozenset({"203.0.113.66"}),
        ip_allowlist=frozenset({"10.0.0.1"}),
    )


@pytest.fixture(scope="function")
def make_service(store):
    """Fábrica de serviços com writer não iniciado (escritas drenadas por ``flush``)."""
    created = []

    def _make(config=None, **kwargs):
        service = SecurityService(config or SecurityConfig(), store, writer=BackgroundWriter(100), **kwargs)
        created.append(service)
        return service

    yield _make
    for service in created:
        service.writer.stop(timeout=1)


@pytest.fixture(scope="function")
def service(make_service, security_config):
    return make_service(security_config)


@pytest.fixture(scope="function")
def app_settings():
    settings = AppSettings(
        rate_limit=RateLimitSettings(window_ms=60_000, max=20),
        brute_force=BruteForceSettings(free_retries=2, min_wait_ms=5_000, max_wait_ms=60_000),
        secrets=SecretsSettings(secret_key="test-secret-key", admin_api_key=ADMIN_KEY),
    )
    return settings.with_environment("testing")


@pytest.fixture(scope="function")
def app(redis_client, app_settings):
    """Cria a aplicação Flask em modo testing com o store em memória."""
    app = create_app(store=redis_client, settings=app_settings)

    ctx = app.app_context()
    ctx.push()

    yield app

    ctx.pop()
    get_security_service(app).shutdown()


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


@pytest.fixture(scope="function")
def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
