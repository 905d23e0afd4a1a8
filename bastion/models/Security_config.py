from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Pattern, Tuple

DEFAULT_SUSPICIOUS_PATTERNS: Tuple[str, ...] = (
    r"bot|crawler|spider|scraper",
    r"sqlmap|nmap|nikto|burp|owasp",
    r"\.\.",
    r"<script|javascript:|vbscript:",
    r"union.*select|insert.*into|delete.*from",
)


def compile_patterns(patterns) -> Tuple[Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            compiled.append(pattern)
        else:
            compiled.append(re.compile(pattern, re.IGNORECASE))
    return tuple(compiled)


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int = 15 * 60 * 1000
    max: int = 100
    skip_successful_requests: bool = False


@dataclass(frozen=True)
class BruteForceConfig:
    free_retries: int = 5
    min_wait_ms: int = 5 * 60 * 1000
    max_wait_ms: int = 60 * 60 * 1000
    lifetime_ms: int = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class SecurityConfig:
    """Configuração imutável do motor, construída uma vez por processo."""

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    brute_force: BruteForceConfig = field(default_factory=BruteForceConfig)
    ip_allowlist: FrozenSet[str] = frozenset()
    ip_blocklist: FrozenSet[str] = frozenset()
    suspicious_patterns: Tuple[Pattern[str], ...] = field(
        default_factory=lambda: compile_patterns(DEFAULT_SUSPICIOUS_PATTERNS)
    )
    exempt_paths: FrozenSet[str] = frozenset()
