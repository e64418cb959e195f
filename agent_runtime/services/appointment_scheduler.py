"""
Appointment Scheduler
Lists, proposes, books and cancels appointment slots for leads.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import pytz

from agent_runtime.domain.interfaces.calendar_provider import BookingResult, CalendarProvider
from agent_runtime.domain.models.lead import AppointmentSlot, Lead, LeadState, utcnow
from agent_runtime.domain.services.quiet_hours import is_quiet_hours as _is_quiet_hours

logger = logging.getLogger(__name__)

SLOT_TAKEN_ERROR = "Slot no longer available: already booked"


@dataclass
class SlotProposal:
    """Slots offered to a lead and their SMS descriptions, index-aligned."""
    slots: List[AppointmentSlot] = field(default_factory=list)
    formatted: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.slots)


class AppointmentScheduler:
    """
    Wraps a calendar provider.

    The provider's check-and-set booking is the only point of contention;
    losers get SLOT_TAKEN_ERROR and the caller re-proposes.
    """

    def __init__(
        self,
        provider: CalendarProvider,
        timezone: str = "America/New_York",
        horizon_days: int = 14
    ):
        self._provider = provider
        self.timezone = timezone
        self.horizon_days = horizon_days

    async def get_available_slots(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AppointmentSlot]:
        """
        Available slots in a window, earliest first.

        Args:
            start: Window start (default: now)
            end: Window end (default: start + horizon)
            limit: Maximum number of slots
        """
        start = start or utcnow()
        end = end or start + timedelta(days=self.horizon_days)

        slots = await self._provider.list_available(start, end)
        slots.sort(key=lambda slot: slot.date)

        if limit is not None:
            return slots[:limit]
        return slots

    async def book_appointment(self, lead: Lead, slot_id: str) -> BookingResult:
        """
        Book a slot for a lead.

        Opted-out leads and leads that already hold a confirmed appointment
        are rejected before the calendar is touched.
        """
        if lead.state == LeadState.OPTED_OUT:
            return BookingResult(success=False, error="Lead has opted out")
        if lead.state == LeadState.APPOINTMENT_CONFIRMED:
            return BookingResult(success=False, error="Lead already has a confirmed appointment")

        result = await self._provider.book(slot_id, lead.id)
        if not result.success:
            if result.error == "Slot already booked":
                logger.info(f"Lead {lead.id} lost the race for slot {slot_id}")
                return BookingResult(success=False, error=SLOT_TAKEN_ERROR)
            return result

        slot = result.slot or await self._provider.get(slot_id)
        if slot is None:
            return BookingResult(success=False, error="Slot not found after booking")

        logger.info(f"Booked slot {slot_id} ({slot.date.isoformat()}) for lead {lead.id}")
        return BookingResult(success=True, slot=slot)

    async def cancel_appointment(self, slot_id: str) -> bool:
        cancelled = await self._provider.cancel(slot_id)
        if cancelled:
            logger.info(f"Cancelled slot {slot_id}")
        return cancelled

    async def get_slot(self, slot_id: str) -> Optional[AppointmentSlot]:
        return await self._provider.get(slot_id)

    async def confirm_appointment(self, slot_id: str) -> Optional[AppointmentSlot]:
        """Mark that a confirmation was sent for a booked slot."""
        return await self._provider.mark_confirmation_sent(slot_id)

    async def propose_slots(self, lead: Lead, count: int = 3) -> SlotProposal:
        slots = await self.get_available_slots(limit=count)
        logger.debug(f"Proposing {len(slots)} slots to lead {lead.id}")
        return SlotProposal(slots=slots, formatted=self.format_slots_for_sms(slots))

    def _local(self, slot: AppointmentSlot) -> datetime:
        tz = pytz.timezone((slot.metadata or {}).get("timezone", self.timezone))
        moment = slot.date if slot.date.tzinfo else pytz.UTC.localize(slot.date)
        return moment.astimezone(tz)

    def format_slot_date(self, slot: AppointmentSlot) -> str:
        """'Mon, Jan 5' in the slot's local timezone."""
        local = self._local(slot)
        return f"{local.strftime('%a, %b')} {local.day}"

    def format_slots_for_sms(self, slots: List[AppointmentSlot]) -> List[str]:
        """One 'Mon, Jan 5 at 09:00' line per slot."""
        return [f"{self.format_slot_date(slot)} at {slot.start_time}" for slot in slots]

    @staticmethod
    def is_quiet_hours(
        at: Optional[datetime],
        start: str,
        end: str,
        timezone: str = "UTC"
    ) -> bool:
        return _is_quiet_hours(at, start, end, timezone)
