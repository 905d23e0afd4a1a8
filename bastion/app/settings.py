"""Application configuration powered by ``pydantic-settings``.

Settings are grouped into typed sections (store, rate limiting, brute-force
protection, IP filters, background writer, secrets). Every section can be
overridden from the environment using the ``__`` nested delimiter, e.g.
``RATE_LIMIT__MAX=50`` or ``FILTERS__IP_BLOCKLIST='["203.0.113.9"]'``.
``REDIS_URL`` and ``ADMIN_API_KEY`` are accepted as flat shortcuts.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from flask import Flask, current_app
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bastion.models.Security_config import (
    DEFAULT_SUSPICIOUS_PATTERNS,
    BruteForceConfig,
    RateLimitConfig,
    SecurityConfig,
    compile_patterns,
)

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent.parent
DEFAULT_STORE_URL = "redis://localhost:6379/3"
DEFAULT_EXEMPT_PATHS = ["/api/health"]


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class StoreSettings(BaseModel):
    """Shared state store (Redis). DB 3 is reserved for security state."""

    url: str = Field(default=DEFAULT_STORE_URL)
    socket_timeout: float = Field(default=0.25, gt=0)
    connect_timeout: float = Field(default=0.25, gt=0)
    key_prefix: str = Field(default="")


class RateLimitSettings(BaseModel):
    window_ms: int = Field(default=15 * 60 * 1000, ge=1)
    max: int = Field(default=100, ge=1)
    skip_successful_requests: bool = Field(default=False)


class BruteForceSettings(BaseModel):
    free_retries: int = Field(default=5, ge=0)
    min_wait_ms: int = Field(default=5 * 60 * 1000, ge=0)
    max_wait_ms: int = Field(default=60 * 60 * 1000, ge=0)
    lifetime_ms: int = Field(default=24 * 60 * 60 * 1000, ge=1)

    @model_validator(mode="after")
    def _check_waits(self) -> "BruteForceSettings":
        if self.min_wait_ms > self.max_wait_ms:
            raise ValueError("min_wait_ms must not exceed max_wait_ms")
        return self


class FilterSettings(BaseModel):
    """Static IP lists, suspicious patterns and paths that skip the chain."""

    ip_allowlist: List[str] = Field(default_factory=list)
    ip_blocklist: List[str] = Field(default_factory=list)
    suspicious_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SUSPICIOUS_PATTERNS)
    )
    exempt_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_EXEMPT_PATHS))

    @field_validator("ip_allowlist", "ip_blocklist", "exempt_paths", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("suspicious_patterns")
    @classmethod
    def _check_patterns(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid suspicious pattern {pattern!r}: {exc}") from exc
        return value


class WriterSettings(BaseModel):
    """Background persistence worker."""

    queue_size: int = Field(default=10000, ge=1)
    shutdown_timeout: float = Field(default=5.0, ge=0)
    # segundos entre reconciliações da reputação; 0 desliga
    sync_interval: float = Field(default=30.0, ge=0)


class SecretsSettings(BaseModel):
    """Secret tokens and credentials."""

    secret_key: str = Field(default="dev-secret-key-change-in-production")
    admin_api_key: str = Field(default="")


class AppSettings(BaseSettings):
    """Typed application configuration backed by environment variables."""

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["development", "production", "testing"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENV", "FLASK_ENV", "ENVIRONMENT"),
    )
    debug: bool = Field(default=False)
    testing: bool = Field(default=False)
    store: StoreSettings = Field(default_factory=StoreSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    brute_force: BruteForceSettings = Field(default_factory=BruteForceSettings)
    filters: FilterSettings = Field(default_factory=FilterSettings)
    writer: WriterSettings = Field(default_factory=WriterSettings)
    secrets: SecretsSettings = Field(default_factory=SecretsSettings)
    trust_proxy_hops: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("TRUST_PROXY_HOPS")
    )
    redis_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("REDIS_URL", "SECURITY_REDIS_URL")
    )
    admin_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ADMIN_API_KEY")
    )

    def with_environment(self, environment: Optional[str]) -> "AppSettings":
        """Return a copy adjusted for the selected environment."""

        env = (environment or self.environment or "development").lower()
        store = self.store
        writer = self.writer
        secrets = self.secrets
        debug = self.debug
        testing = self.testing

        if self.redis_url:
            store = store.model_copy(update={"url": self.redis_url})
        if self.admin_api_key:
            secrets = secrets.model_copy(update={"admin_api_key": self.admin_api_key})

        if env == "development":
            debug = True
        elif env == "testing":
            testing = True
            debug = False
            writer = writer.model_copy(update={"sync_interval": 0.0})

        return self.model_copy(
            update={
                "environment": env,
                "debug": debug,
                "testing": testing,
                "store": store,
                "writer": writer,
                "secrets": secrets,
            }
        )

    def to_security_config(self) -> SecurityConfig:
        """Build the immutable engine configuration."""

        return SecurityConfig(
            rate_limit=RateLimitConfig(
                window_ms=self.rate_limit.window_ms,
                max=self.rate_limit.max,
                skip_successful_requests=self.rate_limit.skip_successful_requests,
            ),
            brute_force=BruteForceConfig(
                free_retries=self.brute_force.free_retries,
                min_wait_ms=self.brute_force.min_wait_ms,
                max_wait_ms=self.brute_force.max_wait_ms,
                lifetime_ms=self.brute_force.lifetime_ms,
            ),
            ip_allowlist=frozenset(self.filters.ip_allowlist),
            ip_blocklist=frozenset(self.filters.ip_blocklist),
            suspicious_patterns=compile_patterns(self.filters.suspicious_patterns),
            exempt_paths=frozenset(self.filters.exempt_paths),
        )

    def as_flask_config(self) -> Dict[str, Any]:
        """Translate settings into the dict expected by ``Flask``."""

        return {
            "DEBUG": self.debug,
            "TESTING": self.testing,
            "SECRET_KEY": self.secrets.secret_key,
            "ADMIN_API_KEY": self.secrets.admin_api_key,
            "SECURITY_REDIS_URL": self.store.url,
            "TRUST_PROXY_HOPS": self.trust_proxy_hops,
        }


def load_settings(config_name: Optional[str] = None) -> AppSettings:
    """Instantiate :class:`AppSettings` applying environment overrides."""

    base = AppSettings()
    return base.with_environment(config_name)


def store_settings(app: Flask, settings: AppSettings) -> None:
    """Attach the settings object to the Flask application instance."""

    app.extensions["app_settings"] = settings
    app.config["APP_SETTINGS"] = settings


def get_app_settings(app: Optional[Flask] = None) -> AppSettings:
    """Return the settings registered on the Flask application."""

    app_obj = app or current_app
    settings = app_obj.extensions.get("app_settings")
    if isinstance(settings, AppSettings):
        return settings
    raise RuntimeError("AppSettings not initialised for this Flask application")


__all__ = [
    "AppSettings",
    "BruteForceSettings",
    "FilterSettings",
    "RateLimitSettings",
    "SecretsSettings",
    "StoreSettings",
    "WriterSettings",
    "get_app_settings",
    "load_settings",
    "store_settings",
]
