# bastion/models/__init__.py
from bastion.models.Request import CONTINUE, Decision, RequestContext
from bastion.models.Security_config import (
    DEFAULT_SUSPICIOUS_PATTERNS,
    BruteForceConfig,
    RateLimitConfig,
    SecurityConfig,
)
from bastion.models.Security_event import EventType, SecurityEvent, Severity
from bastion.models.Threat import ThreatIntelligenceEntry

__all__ = [
    "BruteForceConfig",
    "CONTINUE",
    "DEFAULT_SUSPICIOUS_PATTERNS",
    "Decision",
    "EventType",
    "RateLimitConfig",
    "RequestContext",
    "SecurityConfig",
    "SecurityEvent",
    "Severity",
    "ThreatIntelligenceEntry",
]
