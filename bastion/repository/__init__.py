from bastion.repository.Base_repository import BaseRepo, SecurityStore, StoreUnavailable
from bastion.repository.Events_repository import EventRepo
from bastion.repository.Threat_repository import ThreatRepo

__all__ = ["BaseRepo", "EventRepo", "SecurityStore", "StoreUnavailable", "ThreatRepo"]
