"""
In-Memory Lead Repository
Dict-backed storage used in development and tests.
"""
import logging
from typing import Dict, Iterable, List, Optional

from agent_runtime.domain.interfaces.lead_repository import DuplicatePhoneError, LeadRepository
from agent_runtime.domain.models.lead import Lead, LeadState

logger = logging.getLogger(__name__)


class InMemoryLeadRepository(LeadRepository):
    """Stores deep copies keyed by id, with a phone -> id index."""

    def __init__(self):
        self._leads: Dict[str, Lead] = {}
        self._phone_index: Dict[str, str] = {}

    def add(self, lead: Lead) -> Lead:
        existing_id = self._phone_index.get(lead.phone)
        if existing_id is not None:
            raise DuplicatePhoneError(lead.phone, existing_id)

        self._leads[lead.id] = lead.model_copy(deep=True)
        self._phone_index[lead.phone] = lead.id
        return lead.model_copy(deep=True)

    def save(self, lead: Lead) -> Lead:
        current = self._leads.get(lead.id)
        if current is None:
            raise KeyError(lead.id)

        if current.phone != lead.phone:
            owner = self._phone_index.get(lead.phone)
            if owner is not None and owner != lead.id:
                raise DuplicatePhoneError(lead.phone, owner)
            self._phone_index.pop(current.phone, None)
            self._phone_index[lead.phone] = lead.id

        self._leads[lead.id] = lead.model_copy(deep=True)
        return lead.model_copy(deep=True)

    def get(self, lead_id: str) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        return lead.model_copy(deep=True) if lead else None

    def get_by_phone(self, phone: str) -> Optional[Lead]:
        lead_id = self._phone_index.get(phone)
        return self.get(lead_id) if lead_id else None

    def list(self, states: Optional[Iterable[LeadState]] = None) -> List[Lead]:
        wanted = set(states) if states is not None else None
        leads = [
            lead.model_copy(deep=True)
            for lead in self._leads.values()
            if wanted is None or lead.state in wanted
        ]
        return sorted(leads, key=lambda lead: lead.created_at)

    def delete(self, lead_id: str) -> bool:
        lead = self._leads.pop(lead_id, None)
        if lead is None:
            return False
        self._phone_index.pop(lead.phone, None)
        return True

    def count(self) -> int:
        return len(self._leads)
