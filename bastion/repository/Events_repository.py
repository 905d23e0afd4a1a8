"""Log persistido de eventos de segurança (lista FIFO limitada)."""

import json
from typing import List

from bastion.models.Security_event import SecurityEvent
from bastion.repository.Base_repository import EVENTS_NS, BaseRepo, SecurityStore
from bastion.utils.logs import get_logger

logger = get_logger(__name__)

PERSISTED_EVENT_LIMIT = 5000


class EventRepo(BaseRepo):
    namespace = EVENTS_NS

    def __init__(self, store: SecurityStore, max_len: int = PERSISTED_EVENT_LIMIT) -> None:
        super().__init__(store)
        self.max_len = max_len

    @property
    def log_key(self) -> str:
        return self.key("log")

    def append(self, event: SecurityEvent) -> None:
        # LPUSH + LTRIM: o mais recente fica no índice 0, os mais antigos saem primeiro
        self.store.list_push_trim(self.log_key, json.dumps(event.to_dict()), self.max_len)

    def list_recent(self, offset: int = 0, limit: int = 100) -> List[SecurityEvent]:
        if limit <= 0:
            return []
        start = max(0, offset)
        events: List[SecurityEvent] = []
        for raw in self.store.list_range(self.log_key, start, start + limit - 1):
            try:
                events.append(SecurityEvent.from_dict(json.loads(raw)))
            except (ValueError, KeyError, TypeError):
                logger.warning("Evento persistido inválido ignorado")
        return events
