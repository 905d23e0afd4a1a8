"""Componentes do motor de mitigação aplicados a cada pedido."""
from .counters import BruteForceCounter, RateLimitCounter, backoff_wait_ms
from .events import IN_MEMORY_EVENT_LIMIT, EventRecorder
from .middleware import (
    BruteForceGuard,
    IPFilter,
    RateLimiter,
    SecurityChain,
    SuspiciousActivityDetector,
)
from .reputation import AccessLists, ReputationTable, calculate_risk_increase
from .writer import BackgroundWriter

__all__ = [
    "AccessLists",
    "BackgroundWriter",
    "BruteForceCounter",
    "BruteForceGuard",
    "EventRecorder",
    "IN_MEMORY_EVENT_LIMIT",
    "IPFilter",
    "RateLimitCounter",
    "RateLimiter",
    "ReputationTable",
    "SecurityChain",
    "SuspiciousActivityDetector",
    "backoff_wait_ms",
    "calculate_risk_increase",
]
