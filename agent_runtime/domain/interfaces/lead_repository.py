"""
Lead Repository Interface
Persistence boundary for Lead records.
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from agent_runtime.domain.models.lead import Lead, LeadState


class DuplicatePhoneError(Exception):
    """Raised when a save would give two leads the same phone number."""

    def __init__(self, phone: str, existing_id: Optional[str] = None):
        self.phone = phone
        self.existing_id = existing_id
        super().__init__(f"A lead with phone {phone} already exists")


class LeadRepository(ABC):
    """
    Key-indexed lead storage with a unique phone index.

    Keeping the phone index consistent (including when a lead's phone
    changes) is the repository's job, not the caller's. Returned leads
    are copies; mutating them does not change stored state until `save`.
    """

    @abstractmethod
    def add(self, lead: Lead) -> Lead:
        """Insert a new lead. Raises DuplicatePhoneError on a phone clash."""
        pass

    @abstractmethod
    def save(self, lead: Lead) -> Lead:
        """Replace an existing lead. Raises KeyError if it does not exist."""
        pass

    @abstractmethod
    def get(self, lead_id: str) -> Optional[Lead]:
        pass

    @abstractmethod
    def get_by_phone(self, phone: str) -> Optional[Lead]:
        """Look up by normalized phone number."""
        pass

    @abstractmethod
    def list(self, states: Optional[Iterable[LeadState]] = None) -> List[Lead]:
        """All leads, optionally restricted to the given states, oldest first."""
        pass

    @abstractmethod
    def delete(self, lead_id: str) -> bool:
        pass

    def count(self) -> int:
        return len(self.list())
