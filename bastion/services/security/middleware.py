"""Decision middlewares: cada estágio devolve ``CONTINUE`` ou uma rejeição.

Ordem fixa: IP filter -> rate limiter -> brute-force guard -> detector de
atividade suspeita. A primeira rejeição interrompe a cadeia.

Falhas do store nunca rejeitam um pedido (fail-open): o erro é registado e
o pedido segue.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Pattern, Sequence

from bastion.models.Request import CONTINUE, Decision, RequestContext
from bastion.models.Security_config import RateLimitConfig
from bastion.models.Security_event import EventType, Severity
from bastion.repository.Base_repository import StoreUnavailable
from bastion.services.security.counters import BruteForceCounter, RateLimitCounter
from bastion.services.security.events import EventRecorder
from bastion.services.security.patterns import first_match, serialize_body
from bastion.services.security.reputation import AccessLists, ReputationTable
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

ACCESS_DENIED = "Access denied"
TOO_MANY_REQUESTS = "Too many requests"
TOO_MANY_FAILED_ATTEMPTS = "Too many failed attempts"


class SecurityStage(ABC):
    name = "stage"

    @abstractmethod
    def check(self, ctx: RequestContext) -> Decision:
        """Devolve ``CONTINUE`` ou uma rejeição."""


class IPFilter(SecurityStage):
    """Rejeita IPs da blocklist estática ou marcados como bloqueados na reputação.

    Apenas lê a tabela de reputação; a mutação acontece só via Event Recorder.
    """

    name = "ip_filter"

    def __init__(self, lists: AccessLists, reputation: ReputationTable, recorder: EventRecorder) -> None:
        self.lists = lists
        self.reputation = reputation
        self.recorder = recorder

    def check(self, ctx: RequestContext) -> Decision:
        if self.lists.is_blocklisted(ctx.ip):
            self.recorder.record_for(
                ctx, EventType.BLOCKED_IP, Severity.HIGH,
                blocked=True, details={"reason": "blacklisted"},
            )
            return _denied()

        if self.lists.is_allowlisted(ctx.ip):
            return CONTINUE

        entry = self.reputation.get(ctx.ip)
        if entry is not None and entry.blocked:
            self.recorder.record_for(
                ctx, EventType.BLOCKED_IP, Severity.CRITICAL,
                blocked=True,
                details={"reason": "threat_intelligence", "riskScore": entry.risk_score},
            )
            return _denied()

        return CONTINUE


class RateLimiter(SecurityStage):
    """Janela fixa por identidade (user id autenticado, senão IP)."""

    name = "rate_limiter"

    def __init__(
        self,
        counter: RateLimitCounter,
        config: RateLimitConfig,
        lists: AccessLists,
        recorder: EventRecorder,
    ) -> None:
        self.counter = counter
        self.config = config
        self.lists = lists
        self.recorder = recorder

    @staticmethod
    def identity(ctx: RequestContext) -> str:
        if ctx.user_id:
            return f"user:{ctx.user_id}"
        return f"ip:{ctx.ip}"

    def check(self, ctx: RequestContext) -> Decision:
        if self.lists.is_allowlisted(ctx.ip):
            return CONTINUE

        identity = self.identity(ctx)
        try:
            count, retry_after = self.counter.hit(identity)
        except StoreUnavailable as exc:
            logger.error("Rate limit indisponível para %s (%s); pedido segue", identity, exc)
            return CONTINUE

        if count > self.config.max:
            self.recorder.record_for(
                ctx, EventType.RATE_LIMIT, Severity.MEDIUM,
                blocked=True,
                details={"limit": self.config.max, "window": self.config.window_ms},
            )
            return Decision.reject(429, "rate_limited", TOO_MANY_REQUESTS, retry_after)

        return Decision.allow(rate_limit_identity=identity)

    def release(self, identity: str) -> None:
        """Desconta um pedido já contado (``skip_successful_requests``)."""

        try:
            self.counter.release(identity)
        except StoreUnavailable as exc:
            logger.error("Falha ao descontar pedido bem-sucedido de %s (%s)", identity, exc)


class BruteForceGuard(SecurityStage):
    """Bloqueia ``(ip, endpoint)`` com mais de ``free_retries`` falhas ativas.

    Não incrementa nada: as falhas chegam por ``record_failed_attempt``.
    """

    name = "brute_force_guard"

    def __init__(
        self,
        counter: BruteForceCounter,
        free_retries: int,
        lists: AccessLists,
        recorder: EventRecorder,
    ) -> None:
        self.counter = counter
        self.free_retries = free_retries
        self.lists = lists
        self.recorder = recorder

    def check(self, ctx: RequestContext) -> Decision:
        if self.lists.is_allowlisted(ctx.ip):
            return CONTINUE

        try:
            attempts, retry_after = self.counter.status(ctx.ip, ctx.path)
        except StoreUnavailable as exc:
            logger.error("Brute-force guard indisponível para %s %s (%s); pedido segue",
                         ctx.ip, ctx.path, exc)
            return CONTINUE

        if attempts > self.free_retries:
            self.recorder.record_for(
                ctx, EventType.BRUTE_FORCE, Severity.HIGH,
                blocked=True, details={"attempts": attempts, "ttl": retry_after},
            )
            return Decision.reject(429, "too_many_attempts", TOO_MANY_FAILED_ATTEMPTS, retry_after)

        return CONTINUE


class SuspiciousActivityDetector(SecurityStage):
    """Só deteta: regista ``suspicious_activity`` e deixa o pedido seguir.

    O bloqueio acontece mais tarde, quando o score acumulado do IP cruza o
    limiar de auto-block.
    """

    name = "suspicious_activity"

    def __init__(self, patterns: Sequence[Pattern[str]], recorder: EventRecorder) -> None:
        self.patterns = tuple(patterns)
        self.recorder = recorder

    def check(self, ctx: RequestContext) -> Decision:
        if not self.patterns:
            return CONTINUE
        match = first_match(
            (
                ("user_agent", ctx.user_agent),
                ("url", ctx.full_url),
                ("body", serialize_body(ctx.body)),
            ),
            self.patterns,
        )
        if match is not None:
            pattern, source = match
            self.recorder.record_for(
                ctx, EventType.SUSPICIOUS_ACTIVITY, Severity.MEDIUM,
                blocked=False,
                details={"pattern": pattern.pattern, "source": source, "matchedContent": ctx.full_url},
            )
        return CONTINUE


class SecurityChain:
    def __init__(self, stages: List[SecurityStage]) -> None:
        self.stages = list(stages)

    def run(self, ctx: RequestContext) -> Decision:
        counted: Optional[str] = None
        for stage in self.stages:
            decision = stage.check(ctx)
            if decision.rate_limit_identity:
                counted = decision.rate_limit_identity
            if not decision.allowed:
                logger.info("Pedido %s %s de %s rejeitado por %s (%s)",
                            ctx.method, ctx.path, ctx.ip, stage.name, decision.code)
                return decision
        return Decision.allow(rate_limit_identity=counted) if counted else CONTINUE


def _denied() -> Decision:
    return Decision.reject(403, "ip_blocked", ACCESS_DENIED)


__all__ = [
    "BruteForceGuard",
    "IPFilter",
    "RateLimiter",
    "SecurityChain",
    "SecurityStage",
    "SuspiciousActivityDetector",
]
