"""Framework-neutral view of an inbound request and the engine's verdict."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RequestContext:
    method: str
    path: str
    ip: str
    url: str = ""
    user_agent: str = ""
    body: Any = None
    user_id: Optional[str] = None
    company_id: Optional[str] = None

    @property
    def full_url(self) -> str:
        return self.url or self.path


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status: int = 200
    code: Optional[str] = None
    message: Optional[str] = None
    retry_after: Optional[int] = None
    # identidade cujo contador de rate limit foi incrementado neste pedido
    rate_limit_identity: Optional[str] = field(default=None, compare=False)

    @classmethod
    def allow(cls, rate_limit_identity: Optional[str] = None) -> "Decision":
        return cls(allowed=True, rate_limit_identity=rate_limit_identity)

    @classmethod
    def reject(
        cls,
        status: int,
        code: str,
        message: str,
        retry_after: Optional[int] = None,
    ) -> "Decision":
        if retry_after is not None:
            retry_after = max(0, int(retry_after))
        return cls(
            allowed=False,
            status=status,
            code=code,
            message=message,
            retry_after=retry_after,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON seguro para o cliente: sem score, contadores ou traces."""

        payload: Dict[str, Any] = {
            "success": self.allowed,
            "error": self.message,
            "code": self.code,
        }
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload


CONTINUE = Decision.allow()
