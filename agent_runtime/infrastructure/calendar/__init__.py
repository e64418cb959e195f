"""Calendar providers"""
from .in_memory import InMemoryCalendarProvider
from .factory import CalendarProviderFactory, select_calendar_provider
