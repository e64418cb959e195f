"""
Calendar Provider Interface
Abstract base class for appointment slot stores.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

from agent_runtime.domain.models.lead import AppointmentSlot


@dataclass
class BookingResult:
    """Outcome of a booking attempt; race losers get success=False."""
    success: bool
    slot: Optional[AppointmentSlot] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "slot": self.slot.model_dump(mode="json") if self.slot else None,
            "error": self.error,
        }


class CalendarProvider(ABC):
    """
    Abstract base class for calendar providers.

    `book` must be an atomic check-and-set on slot availability: of two
    concurrent bookings for the same slot exactly one succeeds.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def list_available(self, start: datetime, end: datetime) -> List[AppointmentSlot]:
        """Available slots starting within [start, end]."""
        pass

    @abstractmethod
    async def book(self, slot_id: str, lead_id: str) -> BookingResult:
        pass

    @abstractmethod
    async def cancel(self, slot_id: str) -> bool:
        """Release a booked slot. False if the slot is unknown or not booked."""
        pass

    @abstractmethod
    async def get(self, slot_id: str) -> Optional[AppointmentSlot]:
        pass

    async def mark_confirmation_sent(self, slot_id: str) -> Optional[AppointmentSlot]:
        """Record that the lead was sent a confirmation for this slot."""
        return None
