"""Security events recorded by the mitigation engine."""

from __future__ import annotations

import enum
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class EventType(str, enum.Enum):
    RATE_LIMIT = "rate_limit"
    BRUTE_FORCE = "brute_force"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    BLOCKED_IP = "blocked_ip"
    VALIDATION_ERROR = "validation_error"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def generate_event_id() -> str:
    return f"sec_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SecurityEvent:
    """Fato imutável: criado uma vez e nunca alterado."""

    type: EventType
    severity: Severity
    ip: str
    endpoint: str
    method: str
    blocked: bool
    details: Dict[str, Any] = field(default_factory=dict)
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    company_id: Optional[str] = None
    id: str = field(default_factory=generate_event_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "ip": self.ip,
            "endpoint": self.endpoint,
            "method": self.method,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
            "blocked": self.blocked,
        }
        if self.user_agent is not None:
            payload["userAgent"] = self.user_agent
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.company_id is not None:
            payload["companyId"] = self.company_id
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityEvent":
        return cls(
            id=str(data.get("id") or generate_event_id()),
            type=EventType(data["type"]),
            severity=Severity(data["severity"]),
            ip=str(data.get("ip", "")),
            endpoint=str(data.get("endpoint", "")),
            method=str(data.get("method", "")),
            blocked=bool(data.get("blocked", False)),
            details=dict(data.get("details") or {}),
            user_agent=data.get("userAgent"),
            user_id=data.get("userId"),
            company_id=data.get("companyId"),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.type.value}/{self.severity.value} {self.ip} {self.endpoint}>"
