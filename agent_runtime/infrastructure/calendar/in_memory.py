"""
In-Memory Calendar Provider
Generated slot store with lock-guarded booking.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta, time
from typing import Dict, List, Optional, Iterable

import pytz

from agent_runtime.domain.interfaces.calendar_provider import BookingResult, CalendarProvider
from agent_runtime.domain.models.lead import AppointmentSlot, utcnow

logger = logging.getLogger(__name__)


class InMemoryCalendarProvider(CalendarProvider):
    """
    Calendar backed by a dict of generated slots.

    Slots are laid out on allowed weekdays from the day after `start_date`
    for `horizon_days`, spaced by duration plus buffer, and must end by the
    configured closing time. `prebooked_ratio` marks a random share as
    already taken to mimic a real calendar.
    """

    def __init__(
        self,
        duration_minutes: int = 60,
        buffer_minutes: int = 15,
        hours_start: str = "09:00",
        hours_end: str = "17:00",
        available_days: Iterable[int] = (0, 1, 2, 3, 4),
        timezone: str = "America/New_York",
        horizon_days: int = 14,
        prebooked_ratio: float = 0.0,
        seed: Optional[int] = None,
        start_date: Optional[datetime] = None,
        generate: bool = True
    ):
        self.duration_minutes = duration_minutes
        self.buffer_minutes = buffer_minutes
        self.hours_start = hours_start
        self.hours_end = hours_end
        self.available_days = set(available_days)
        self.timezone = timezone
        self.horizon_days = horizon_days
        self.prebooked_ratio = prebooked_ratio
        self._random = random.Random(seed)

        self._slots: Dict[str, AppointmentSlot] = {}
        self._lock = asyncio.Lock()

        if generate:
            self.generate_slots(start_date or utcnow())

    @property
    def provider_name(self) -> str:
        return "mock"

    def generate_slots(self, start_date: datetime) -> int:
        """
        Lay out slots for the horizon after `start_date`.

        Returns:
            Number of slots created
        """
        tz = pytz.timezone(self.timezone)
        if start_date.tzinfo is None:
            start_date = pytz.UTC.localize(start_date)
        local_start = start_date.astimezone(tz)

        open_h, open_m = map(int, self.hours_start.split(":"))
        close_h, close_m = map(int, self.hours_end.split(":"))
        step = timedelta(minutes=self.duration_minutes + self.buffer_minutes)
        length = timedelta(minutes=self.duration_minutes)

        created = 0
        for day_offset in range(1, self.horizon_days + 1):
            day = local_start.date() + timedelta(days=day_offset)
            if day.weekday() not in self.available_days:
                continue

            cursor = tz.localize(datetime.combine(day, time(open_h, open_m)))
            closing = tz.localize(datetime.combine(day, time(close_h, close_m)))

            while cursor + length <= closing:
                end = cursor + length
                slot = AppointmentSlot(
                    date=cursor.astimezone(pytz.UTC),
                    start_time=cursor.strftime("%H:%M"),
                    end_time=end.strftime("%H:%M"),
                    calendar_id=self.provider_name,
                    metadata={"timezone": self.timezone},
                )
                if self.prebooked_ratio and self._random.random() < self.prebooked_ratio:
                    slot.available = False
                self._slots[slot.id] = slot
                created += 1
                cursor = cursor + step

        logger.info(f"Generated {created} calendar slots over {self.horizon_days} days")
        return created

    def add_slot(self, slot: AppointmentSlot) -> AppointmentSlot:
        self._slots[slot.id] = slot.model_copy(deep=True)
        return slot

    async def list_available(self, start: datetime, end: datetime) -> List[AppointmentSlot]:
        return [
            slot.model_copy(deep=True)
            for slot in self._slots.values()
            if slot.available and start <= slot.date <= end
        ]

    async def book(self, slot_id: str, lead_id: str) -> BookingResult:
        # Check-and-set must not interleave with another booking
        async with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None:
                return BookingResult(success=False, error="Slot not found")
            if not slot.available:
                return BookingResult(success=False, error="Slot already booked")

            slot.available = False
            slot.lead_id = lead_id

        logger.info(f"Booked slot {slot_id} for lead {lead_id}")
        return BookingResult(success=True, slot=slot.model_copy(deep=True))

    async def cancel(self, slot_id: str) -> bool:
        async with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None or slot.available:
                return False

            slot.available = True
            slot.lead_id = None
            slot.confirmed_at = None
            slot.confirmation_sent = False

        logger.info(f"Cancelled slot {slot_id}")
        return True

    async def get(self, slot_id: str) -> Optional[AppointmentSlot]:
        slot = self._slots.get(slot_id)
        return slot.model_copy(deep=True) if slot else None

    async def mark_confirmation_sent(self, slot_id: str) -> Optional[AppointmentSlot]:
        async with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None:
                return None
            slot.confirmation_sent = True
            slot.confirmed_at = utcnow()
            return slot.model_copy(deep=True)
