"""Application services: lead store, collaborator adapters and the workflow orchestrator"""
from .lead_store import (
    LeadStore,
    LeadValidationError,
    DuplicateLeadError,
    CONTACTABLE_STATES,
)
from .message_channel import MessageChannel, TIMEOUT_ERROR
from .appointment_scheduler import AppointmentScheduler, SlotProposal, SLOT_TAKEN_ERROR
from .language_classifier import LanguageClassifier
from .event_bus import EventBus
