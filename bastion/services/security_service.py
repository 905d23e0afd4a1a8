"""Fachada do motor de mitigação.

Um único :class:`SecurityService` é construído no arranque do processo e
injetado em quem precisa dele (hooks HTTP, blueprint de administração,
jobs). O ciclo de vida é explícito:

``init()``
    carrega a tabela de reputação e a blocklist persistidas e arranca o
    writer em background.
``shutdown()``
    escreve o que estiver pendente e fecha a ligação ao store.

Política de falhas: erros do store no caminho do pedido são registados e o
pedido segue (fail-open). Nunca rejeitamos um pedido por indisponibilidade
do store.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from bastion.models.Request import CONTINUE, Decision, RequestContext
from bastion.models.Security_config import SecurityConfig
from bastion.models.Security_event import EventType, SecurityEvent, Severity
from bastion.models.Threat import ThreatIntelligenceEntry
from bastion.repository.Base_repository import SecurityStore, StoreUnavailable
from bastion.repository.Events_repository import PERSISTED_EVENT_LIMIT, EventRepo
from bastion.repository.Threat_repository import ThreatRepo
from bastion.services.security.counters import BruteForceCounter, RateLimitCounter
from bastion.services.security.events import IN_MEMORY_EVENT_LIMIT, EventRecorder
from bastion.services.security.middleware import (
    BruteForceGuard,
    IPFilter,
    RateLimiter,
    SecurityChain,
    SuspiciousActivityDetector,
)
from bastion.services.security.reputation import AccessLists, ReputationTable
from bastion.services.security.writer import BackgroundWriter
from bastion.utils.logs import get_logger

if TYPE_CHECKING:  # pragma: no cover
    import redis

    from bastion.app.settings import AppSettings

logger = get_logger(__name__)

EVENT_SOURCES = ("memory", "store")


class SecurityService:
    def __init__(
        self,
        config: SecurityConfig,
        store: SecurityStore,
        *,
        writer: Optional[BackgroundWriter] = None,
        sync_interval: float = 0.0,
        shutdown_timeout: float = 5.0,
        buffer_size: int = IN_MEMORY_EVENT_LIMIT,
        persisted_limit: int = PERSISTED_EVENT_LIMIT,
    ) -> None:
        self.config = config
        self.store = store
        self.writer = writer or BackgroundWriter()
        self.sync_interval = sync_interval
        self.shutdown_timeout = shutdown_timeout
        self.initialized = False

        # tabela de reputação, listas e buffer de eventos sob o mesmo lock
        self._lock = threading.RLock()
        self.reputation = ReputationTable(self._lock)
        self.lists = AccessLists(config.ip_allowlist, config.ip_blocklist, self._lock)

        self.threat_repo = ThreatRepo(store)
        self.event_repo = EventRepo(store, max_len=persisted_limit)
        self.recorder = EventRecorder(
            self.reputation,
            self.event_repo,
            self.threat_repo,
            self.writer,
            lock=self._lock,
            buffer_size=buffer_size,
        )

        self.rate_counter = RateLimitCounter(store, config.rate_limit)
        self.brute_counter = BruteForceCounter(store, config.brute_force)

        self.ip_filter = IPFilter(self.lists, self.reputation, self.recorder)
        self.rate_limiter = RateLimiter(self.rate_counter, config.rate_limit, self.lists, self.recorder)
        self.brute_force_guard = BruteForceGuard(
            self.brute_counter, config.brute_force.free_retries, self.lists, self.recorder
        )
        self.suspicious_detector = SuspiciousActivityDetector(config.suspicious_patterns, self.recorder)
        self.chain = SecurityChain([
            self.ip_filter,
            self.rate_limiter,
            self.brute_force_guard,
            self.suspicious_detector,
        ])

    @classmethod
    def from_settings(
        cls,
        settings: "AppSettings",
        *,
        client: Optional["redis.Redis"] = None,
    ) -> "SecurityService":
        """Constrói o serviço a partir das settings; ``client`` substitui a ligação por URL."""

        store_cfg = settings.store
        if client is not None:
            store = SecurityStore(client, key_prefix=store_cfg.key_prefix)
        else:
            store = SecurityStore.from_url(
                store_cfg.url,
                socket_timeout=store_cfg.socket_timeout,
                connect_timeout=store_cfg.connect_timeout,
                key_prefix=store_cfg.key_prefix,
            )
        return cls(
            settings.to_security_config(),
            store,
            writer=BackgroundWriter(settings.writer.queue_size),
            sync_interval=settings.writer.sync_interval,
            shutdown_timeout=settings.writer.shutdown_timeout,
        )

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------
    def init(self) -> None:
        logger.process("Iniciando motor de segurança")
        try:
            entries = self.threat_repo.load_all()
        except StoreUnavailable as exc:
            logger.error("Erro ao carregar reputação do store (%s); a começar vazio", exc)
        else:
            self.reputation.load(entries)
            logger.info("%d entradas de reputação carregadas", len(entries))

        try:
            persisted = self.threat_repo.load_blocklist()
        except StoreUnavailable as exc:
            logger.error("Erro ao carregar blocklist persistida (%s)", exc)
        else:
            self.lists.extend_blocklist(persisted)

        self.writer.start()
        if self.sync_interval > 0:
            self.writer.every(self.sync_interval, self.sync_from_store, "reconciliação de reputação")
        self.initialized = True
        logger.info("motor de segurança iniciado")

    def shutdown(self) -> None:
        logger.process("Encerrando motor de segurança")
        self.writer.stop(self.shutdown_timeout)
        try:
            self.store.close()
        except StoreUnavailable as exc:
            logger.error("Erro ao fechar ligação ao store: %s", exc)
        self.initialized = False
        logger.info("motor de segurança encerrado")

    # ------------------------------------------------------------------
    # Caminho do pedido
    # ------------------------------------------------------------------
    def is_exempt(self, path: str) -> bool:
        return path in self.config.exempt_paths

    def check_request(self, ctx: RequestContext) -> Decision:
        if self.is_exempt(ctx.path):
            return CONTINUE
        try:
            return self.chain.run(ctx)
        except Exception:
            logger.exception("Erro inesperado no motor de segurança para %s %s; pedido segue",
                             ctx.method, ctx.path)
            return CONTINUE

    def on_response(self, rate_limit_identity: Optional[str], status_code: int) -> None:
        """Ponto de conclusão da resposta: desconta pedidos 2xx quando configurado."""

        if not rate_limit_identity or not self.config.rate_limit.skip_successful_requests:
            return
        if 200 <= status_code < 300:
            self.rate_limiter.release(rate_limit_identity)

    def record_failed_attempt(self, ip: str, endpoint: str) -> Optional[int]:
        """Chamado pela autenticação após um login falhado.

        Devolve o número de tentativas ativas, ou ``None`` se o store falhar.
        """

        try:
            attempts, ttl_ms = self.brute_counter.record_failure(ip, endpoint)
        except StoreUnavailable as exc:
            logger.error("Erro ao registar tentativa falhada de %s em %s: %s", ip, endpoint, exc)
            return None
        logger.info("Tentativa falhada %d de %s em %s (espera %d ms)", attempts, ip, endpoint, ttl_ms)
        return attempts

    def record_validation_error(self, ctx: RequestContext, fields: Iterable[str]) -> SecurityEvent:
        return self.recorder.record_for(
            ctx,
            EventType.VALIDATION_ERROR,
            Severity.LOW,
            blocked=True,
            details={"fields": list(fields)},
        )

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------
    def get_security_events(
        self,
        limit: int = 100,
        offset: int = 0,
        *,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        ip: Optional[str] = None,
        source: str = "memory",
    ) -> List[SecurityEvent]:
        """Eventos do mais recente para o mais antigo.

        ``source="store"`` lê o log persistido (pode levantar
        :class:`StoreUnavailable`); o padrão é o buffer em memória.
        """

        if source not in EVENT_SOURCES:
            raise ValueError(f"unknown event source: {source}")
        if source == "memory":
            return self.recorder.recent(limit, offset, event_type=event_type, severity=severity, ip=ip)

        if event_type is None and severity is None and ip is None:
            return self.event_repo.list_recent(offset, limit)
        selected = [
            event
            for event in self.event_repo.list_recent(0, self.event_repo.max_len)
            if (event_type is None or event.type is event_type)
            and (severity is None or event.severity is severity)
            and (ip is None or event.ip == ip)
        ]
        start = max(0, offset)
        return selected[start:start + max(0, limit)]

    def get_threat_intelligence(
        self,
        *,
        min_score: Optional[int] = None,
        blocked: Optional[bool] = None,
    ) -> List[ThreatIntelligenceEntry]:
        entries = [
            entry
            for entry in self.reputation.snapshot()
            if (min_score is None or entry.risk_score >= min_score)
            and (blocked is None or entry.blocked is blocked)
        ]
        entries.sort(key=lambda entry: (-entry.risk_score, entry.ip))
        return entries

    def get_threat(self, ip: str) -> Optional[ThreatIntelligenceEntry]:
        return self.reputation.get(ip)

    def get_security_stats(self) -> Dict[str, Any]:
        stats = self.recorder.summary()
        entries = self.reputation.snapshot()
        stats.update({
            "blockedIPs": len(self.lists.blocklist()),
            "autoBlockedIPs": sum(1 for entry in entries if entry.blocked),
            "threatIntelligenceEntries": len(entries),
            "highRiskIPs": sum(1 for entry in entries if entry.is_high_risk),
            "persistence": {
                "pending": self.writer.pending,
                "completed": self.writer.completed,
                "failed": self.writer.failed,
                "dropped": self.writer.dropped,
            },
        })
        return stats

    # ------------------------------------------------------------------
    # Administração
    # ------------------------------------------------------------------
    def block_ip(self, ip: str, reason: str = "") -> Dict[str, Any]:
        """Bloqueio manual: score 100, ``blocked`` e entrada na blocklist estática.

        O estado em memória muda sempre; ``persisted`` indica se o store
        também foi atualizado.
        """

        self.lists.block(ip)
        entry = self.reputation.block(ip)

        def _persist() -> None:
            self.recorder.persist_entry(ip)
            self.threat_repo.add_to_blocklist(ip)

        persisted = self._write_through(_persist, f"bloqueio manual {ip}")
        logger.warning("IP %s bloqueado manualmente: %s", ip, reason or "sem motivo")
        return {"entry": entry, "persisted": persisted}

    def unblock_ip(self, ip: str) -> Dict[str, Any]:
        """Desbloqueio manual: retira da blocklist e alivia o score em 50."""

        self.lists.unblock(ip)
        entry = self.reputation.unblock(ip)

        def _persist() -> None:
            self.recorder.persist_entry(ip)
            self.threat_repo.remove_from_blocklist(ip)

        persisted = self._write_through(_persist, f"desbloqueio manual {ip}")
        logger.warning("IP %s desbloqueado manualmente", ip)
        return {"entry": entry, "persisted": persisted}

    def _write_through(self, job: Callable[[], None], description: str) -> bool:
        """Escrita síncrona pela mesma fila FIFO das escritas em background.

        As escritas já enfileiradas correm antes desta, por isso nenhuma
        escrita antiga sobrepõe o resultado de uma operação de admin.
        """

        done: List[bool] = []

        def _run() -> None:
            job()
            done.append(True)

        if not self.writer.submit(_run, description):
            return False
        if not self.writer.flush(self.shutdown_timeout):
            logger.error("Timeout à espera da escrita '%s'", description)
            return False
        return bool(done)

    def sync_from_store(self) -> int:
        """Reconcilia com o que outras réplicas persistiram; devolve entradas alteradas."""

        try:
            remote = self.threat_repo.load_all()
            blocklist = self.threat_repo.load_blocklist()
        except StoreUnavailable as exc:
            logger.error("Erro ao reconciliar reputação: %s", exc)
            return 0
        changed = self.reputation.merge(remote.values())
        self.lists.extend_blocklist(blocklist)
        if changed:
            logger.info("Reconciliação: %d entradas de reputação atualizadas", changed)
        return changed


__all__ = ["EVENT_SOURCES", "SecurityService"]
