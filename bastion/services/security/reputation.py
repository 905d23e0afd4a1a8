"""Tabela de reputação por IP e listas estáticas de acesso.

Ambas vivem em memória no processo e partilham um único lock com o buffer
de eventos: a acumulação do score é read-modify-write e dois eventos
concorrentes para o mesmo IP não podem perder um incremento.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from bastion.models.Security_event import EventType, SecurityEvent, Severity
from bastion.models.Threat import (
    AUTO_BLOCK_THRESHOLD,
    MAX_RISK_SCORE,
    ThreatIntelligenceEntry,
    clamp_score,
)
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

BASE_SCORES: Dict[EventType, int] = {
    EventType.RATE_LIMIT: 5,
    EventType.BRUTE_FORCE: 15,
    EventType.SUSPICIOUS_ACTIVITY: 10,
    EventType.BLOCKED_IP: 20,
    EventType.VALIDATION_ERROR: 3,
}

SEVERITY_MULTIPLIERS: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 5,
}

UNBLOCK_SCORE_RELIEF = 50


def calculate_risk_increase(event_type: EventType, severity: Severity) -> int:
    return BASE_SCORES[event_type] * SEVERITY_MULTIPLIERS[severity]


class ReputationTable:
    def __init__(self, lock: Optional[threading.RLock] = None) -> None:
        self._lock = lock or threading.RLock()
        self._entries: Dict[str, ThreatIntelligenceEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def load(self, entries: Dict[str, ThreatIntelligenceEntry]) -> None:
        with self._lock:
            self._entries = {ip: entry.copy() for ip, entry in entries.items()}

    def get(self, ip: str) -> Optional[ThreatIntelligenceEntry]:
        with self._lock:
            entry = self._entries.get(ip)
            return entry.copy() if entry else None

    def snapshot(self) -> List[ThreatIntelligenceEntry]:
        with self._lock:
            return [entry.copy() for entry in self._entries.values()]

    def apply(self, event: SecurityEvent) -> Tuple[ThreatIntelligenceEntry, bool]:
        """Aplica o evento ao IP; devolve ``(cópia da entrada, bloqueado_agora)``."""

        increase = calculate_risk_increase(event.type, event.severity)
        with self._lock:
            entry = self._entries.get(event.ip)
            if entry is None:
                entry = ThreatIntelligenceEntry(ip=event.ip, last_seen=event.timestamp)
                self._entries[event.ip] = entry
            entry.risk_score = clamp_score(entry.risk_score + increase)
            entry.last_seen = event.timestamp
            entry.threat_types.add(event.type.value)
            newly_blocked = False
            if entry.risk_score >= AUTO_BLOCK_THRESHOLD and not entry.blocked:
                entry.blocked = True
                newly_blocked = True
            snapshot = entry.copy()

        if newly_blocked:
            logger.warning(
                "IP %s bloqueado automaticamente (score=%d, tipos=%s)",
                event.ip,
                snapshot.risk_score,
                ",".join(sorted(snapshot.threat_types)),
            )
        return snapshot, newly_blocked

    def block(self, ip: str) -> ThreatIntelligenceEntry:
        """Bloqueio manual. ``threat_types`` só guarda tipos de evento: não muda aqui."""

        with self._lock:
            entry = self._entries.get(ip)
            if entry is None:
                entry = ThreatIntelligenceEntry(ip=ip)
                self._entries[ip] = entry
            entry.risk_score = MAX_RISK_SCORE
            entry.blocked = True
            return entry.copy()

    def unblock(self, ip: str) -> Optional[ThreatIntelligenceEntry]:
        """Desbloqueia e alivia o score em 50 (perdão parcial, nunca negativo)."""

        with self._lock:
            entry = self._entries.get(ip)
            if entry is None:
                return None
            entry.blocked = False
            entry.risk_score = max(0, entry.risk_score - UNBLOCK_SCORE_RELIEF)
            return entry.copy()

    def merge(self, entries: Iterable[ThreatIntelligenceEntry]) -> int:
        """Reconcilia com entradas persistidas por outras réplicas.

        Score é o máximo, tipos são unidos e bloqueios convergem (OR).
        Desbloqueios feitos noutra réplica só chegam aqui num reload completo.
        """

        changed = 0
        with self._lock:
            for remote in entries:
                local = self._entries.get(remote.ip)
                if local is None:
                    self._entries[remote.ip] = remote.copy()
                    changed += 1
                    continue
                before = (local.risk_score, frozenset(local.threat_types), local.blocked, local.last_seen)
                local.risk_score = clamp_score(max(local.risk_score, remote.risk_score))
                local.threat_types |= remote.threat_types
                local.blocked = local.blocked or remote.blocked
                local.last_seen = max(local.last_seen, remote.last_seen)
                after = (local.risk_score, frozenset(local.threat_types), local.blocked, local.last_seen)
                if before != after:
                    changed += 1
        return changed


class AccessLists:
    """Allowlist e blocklist estáticas, mutáveis em runtime pelo admin."""

    def __init__(
        self,
        allowlist: Iterable[str] = (),
        blocklist: Iterable[str] = (),
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._lock = lock or threading.RLock()
        self._allow: Set[str] = set(allowlist)
        self._block: Set[str] = set(blocklist)

    def is_allowlisted(self, ip: str) -> bool:
        with self._lock:
            return ip in self._allow

    def is_blocklisted(self, ip: str) -> bool:
        with self._lock:
            return ip in self._block

    def block(self, ip: str) -> None:
        with self._lock:
            self._block.add(ip)

    def unblock(self, ip: str) -> None:
        with self._lock:
            self._block.discard(ip)

    def extend_blocklist(self, ips: Iterable[str]) -> None:
        with self._lock:
            self._block.update(ips)

    def blocklist(self) -> Set[str]:
        with self._lock:
            return set(self._block)


