"""Provider interfaces for external collaborators"""
from .sms_provider import SMSProvider, SMSResult
from .calendar_provider import CalendarProvider, BookingResult
from .language_provider import LanguageProvider
from .lead_repository import LeadRepository, DuplicatePhoneError
