"""Per-IP reputation aggregate."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Set

from bastion.models.Security_event import _parse_timestamp

MAX_RISK_SCORE = 100
AUTO_BLOCK_THRESHOLD = 80
HIGH_RISK_THRESHOLD = 50


@dataclass
class ThreatIntelligenceEntry:
    """Reputação acumulada de um IP; ``risk_score`` fica sempre em [0, 100]."""

    ip: str
    risk_score: int = 0
    threat_types: Set[str] = field(default_factory=set)
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    blocked: bool = False

    def __post_init__(self) -> None:
        self.risk_score = clamp_score(self.risk_score)

    @property
    def is_high_risk(self) -> bool:
        return self.risk_score >= HIGH_RISK_THRESHOLD

    def copy(self) -> "ThreatIntelligenceEntry":
        return ThreatIntelligenceEntry(
            ip=self.ip,
            risk_score=self.risk_score,
            threat_types=set(self.threat_types),
            last_seen=self.last_seen,
            blocked=self.blocked,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "riskScore": self.risk_score,
            "threatTypes": sorted(self.threat_types),
            "lastSeen": self.last_seen.isoformat(),
            "blocked": self.blocked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatIntelligenceEntry":
        return cls(
            ip=str(data["ip"]),
            risk_score=int(data.get("riskScore", 0) or 0),
            threat_types=set(data.get("threatTypes") or []),
            last_seen=_parse_timestamp(data.get("lastSeen")),
            blocked=bool(data.get("blocked", False)),
        )


def clamp_score(value: int) -> int:
    return max(0, min(MAX_RISK_SCORE, int(value)))
