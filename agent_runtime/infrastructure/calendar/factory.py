"""
Calendar Provider Factory
"""
import logging
from typing import Callable, Dict

from agent_runtime.core.config import Settings
from agent_runtime.domain.interfaces.calendar_provider import CalendarProvider
from agent_runtime.infrastructure.calendar.in_memory import InMemoryCalendarProvider

logger = logging.getLogger(__name__)


def _build_mock(settings: Settings) -> CalendarProvider:
    calendar = settings.calendar
    return InMemoryCalendarProvider(
        duration_minutes=calendar.default_duration_minutes,
        buffer_minutes=calendar.buffer_minutes,
        hours_start=calendar.available_hours_start,
        hours_end=calendar.available_hours_end,
        available_days=calendar.available_days,
        timezone=calendar.timezone,
        horizon_days=calendar.horizon_days,
        prebooked_ratio=calendar.prebooked_ratio,
        seed=calendar.seed,
    )


class CalendarProviderFactory:
    """Factory for creating calendar provider instances"""

    _providers: Dict[str, Callable[[Settings], CalendarProvider]] = {}

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> CalendarProvider:
        """Create calendar provider instance"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown calendar provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], CalendarProvider]) -> None:
        """Register a provider builder"""
        cls._providers[name] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())


CalendarProviderFactory.register("mock", _build_mock)


def select_calendar_provider(settings: Settings) -> CalendarProvider:
    provider = CalendarProviderFactory.create(settings.calendar.provider, settings)
    logger.info(f"Using calendar provider: {provider.provider_name}")
    return provider
