"""Event Recorder: constrói, guarda e persiste eventos de segurança."""

from __future__ import annotations

import threading
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Deque, Dict, List, Optional

from bastion.models.Request import RequestContext
from bastion.models.Security_event import EventType, SecurityEvent, Severity
from bastion.repository.Events_repository import EventRepo
from bastion.repository.Threat_repository import ThreatRepo
from bastion.services.security.reputation import ReputationTable
from bastion.services.security.writer import BackgroundWriter
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

IN_MEMORY_EVENT_LIMIT = 1000


class EventRecorder:
    def __init__(
        self,
        reputation: ReputationTable,
        event_repo: EventRepo,
        threat_repo: ThreatRepo,
        writer: BackgroundWriter,
        *,
        lock: Optional[threading.RLock] = None,
        buffer_size: int = IN_MEMORY_EVENT_LIMIT,
    ) -> None:
        self.reputation = reputation
        self.event_repo = event_repo
        self.threat_repo = threat_repo
        self.writer = writer
        self._lock = lock or threading.RLock()
        self._events: Deque[SecurityEvent] = deque(maxlen=buffer_size)

    def record(
        self,
        event_type: EventType,
        severity: Severity,
        *,
        ip: str,
        endpoint: str,
        method: str,
        blocked: bool,
        details: Optional[Dict[str, Any]] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
        company_id: Optional[str] = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            type=event_type,
            severity=severity,
            ip=ip,
            endpoint=endpoint,
            method=method,
            blocked=blocked,
            details=dict(details or {}),
            user_agent=user_agent,
            user_id=user_id,
            company_id=company_id,
        )

        # buffer e reputação atualizados antes de devolver: o próximo pedido
        # do mesmo IP, mesmo concorrente, já vê o novo estado
        with self._lock:
            self._events.append(event)
            self.reputation.apply(event)

        if event.severity is Severity.CRITICAL:
            logger.critical("EVENTO DE SEGURANÇA CRÍTICO: %s %s", event, event.details)
        else:
            logger.info("Evento de segurança %s/%s de %s em %s", event.type.value,
                        event.severity.value, event.ip, event.endpoint)

        self.writer.submit(partial(self.event_repo.append, event), f"evento {event.id}")
        self.writer.submit(partial(self.persist_entry, event.ip), f"reputação {event.ip}")
        return event

    def persist_entry(self, ip: str) -> None:
        """Grava o estado atual do IP; lido na execução, nunca um snapshot antigo."""

        entry = self.reputation.get(ip)
        if entry is not None:
            self.threat_repo.save(entry)

    def record_for(
        self,
        ctx: RequestContext,
        event_type: EventType,
        severity: Severity,
        *,
        blocked: bool,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        return self.record(
            event_type,
            severity,
            ip=ctx.ip,
            endpoint=ctx.path,
            method=ctx.method,
            blocked=blocked,
            details=details,
            user_agent=ctx.user_agent or None,
            user_id=ctx.user_id,
            company_id=ctx.company_id,
        )

    def events(self) -> List[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def recent(
        self,
        limit: int = 100,
        offset: int = 0,
        *,
        event_type: Optional[EventType] = None,
        severity: Optional[Severity] = None,
        ip: Optional[str] = None,
    ) -> List[SecurityEvent]:
        """Página de eventos do buffer, do mais recente para o mais antigo."""

        selected = [
            event
            for event in reversed(self.events())
            if (event_type is None or event.type is event_type)
            and (severity is None or event.severity is severity)
            and (ip is None or event.ip == ip)
        ]
        start = max(0, offset)
        return selected[start:start + max(0, limit)]

    def summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        events = self.events()
        last_hour = now - timedelta(hours=1)
        last_day = now - timedelta(days=1)
        return {
            "totalEvents": len(events),
            "recentEvents": sum(1 for e in events if e.timestamp > last_hour),
            "todayEvents": sum(1 for e in events if e.timestamp > last_day),
            "eventsByType": dict(Counter(e.type.value for e in events)),
            "eventsBySeverity": dict(Counter(e.severity.value for e in events)),
        }
