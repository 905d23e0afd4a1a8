"""Repositório da tabela de reputação e da blocklist persistida."""

import json
from typing import Dict, Set

from bastion.models.Threat import ThreatIntelligenceEntry
from bastion.repository.Base_repository import THREAT_NS, BaseRepo
from bastion.utils.logs import get_logger

logger = get_logger(__name__)


class ThreatRepo(BaseRepo):
    namespace = THREAT_NS

    @property
    def table_key(self) -> str:
        return self.key("intelligence")

    @property
    def blocklist_key(self) -> str:
        return self.key("blocklist")

    def load_all(self) -> Dict[str, ThreatIntelligenceEntry]:
        entries: Dict[str, ThreatIntelligenceEntry] = {}
        for ip, raw in self.store.hash_get_all(self.table_key).items():
            try:
                entries[ip] = ThreatIntelligenceEntry.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError):
                logger.warning("Entrada de reputação inválida ignorada para %s", ip)
        return entries

    def save(self, entry: ThreatIntelligenceEntry) -> None:
        self.store.hash_set(self.table_key, entry.ip, json.dumps(entry.to_dict()))

    def load_blocklist(self) -> Set[str]:
        return self.store.set_members(self.blocklist_key)

    def add_to_blocklist(self, ip: str) -> None:
        self.store.set_add(self.blocklist_key, ip)

    def remove_from_blocklist(self, ip: str) -> None:
        self.store.set_remove(self.blocklist_key, ip)
