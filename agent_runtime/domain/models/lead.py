"""
Lead Domain Models
Lead record, lifecycle states, audit trail and contact attempts.
"""
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator

from agent_runtime.domain.models.classification import MessageClassification


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


def normalize_phone_number(number: str) -> str:
    """
    Normalize a phone number towards E.164.

    Strips common formatting characters and adds a leading '+' to
    numbers long enough to already carry a country code.
    """
    number = (number or "").strip()
    number = number.replace(" ", "").replace("-", "").replace("(", "").replace(")", "").replace(".", "")

    if number and not number.startswith("+") and len(number) >= 10:
        number = "+" + number

    return number


class LeadState(str, Enum):
    """Lifecycle stages of a lead in the appointment setting workflow"""
    NEW = "new"
    CONSENT_PENDING = "consent_pending"
    CONSENT_VERIFIED = "consent_verified"
    CONTACT_SCHEDULED = "contact_scheduled"
    INITIAL_CONTACT_SENT = "initial_contact_sent"
    AWAITING_RESPONSE = "awaiting_response"
    RESPONSE_RECEIVED = "response_received"
    INTERESTED = "interested"
    APPOINTMENT_PROPOSED = "appointment_proposed"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_COMPLETED = "appointment_completed"
    NOT_INTERESTED = "not_interested"
    OPTED_OUT = "opted_out"
    FAILED = "failed"
    ESCALATED = "escalated"


class ConsentMethod(str, Enum):
    FORM = "form"
    SMS = "sms"
    PHONE = "phone"
    API = "api"


class ContactChannel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    PHONE = "phone"


class ContactDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class ContactStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RESPONDED = "responded"


class StateChange(BaseModel):
    """Immutable audit record of one lifecycle transition"""
    model_config = {"frozen": True}

    id: str = Field(default_factory=generate_id)
    from_state: LeadState
    to_state: LeadState
    trigger: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None


class ContactAttempt(BaseModel):
    """One outbound or inbound touch with a lead"""
    model_config = {"frozen": True}

    id: str = Field(default_factory=generate_id)
    lead_id: str
    channel: ContactChannel = ContactChannel.SMS
    direction: ContactDirection
    timestamp: datetime = Field(default_factory=utcnow)
    message: Optional[str] = None
    status: ContactStatus
    provider_id: Optional[str] = None
    failure_reason: Optional[str] = None
    classification: Optional[MessageClassification] = None
    metadata: Optional[Dict[str, Any]] = None


class AppointmentSlot(BaseModel):
    """Bookable calendar window with single-occupancy semantics"""
    id: str = Field(default_factory=generate_id)
    date: datetime  # slot start
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    available: bool = True
    lead_id: Optional[str] = None
    calendar_id: Optional[str] = None
    confirmation_sent: bool = False
    confirmed_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class Lead(BaseModel):
    """
    Prospective customer tracked through the outbound-contact pipeline.

    Mutated only by the workflow orchestrator through the state machine;
    `state_history` is append-only.
    """
    id: str = Field(default_factory=generate_id)
    external_id: Optional[str] = None

    # Contact information
    first_name: str
    last_name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None

    # State machine
    state: LeadState = LeadState.NEW
    state_history: List[StateChange] = Field(default_factory=list)

    # Consent
    consent_verified: bool = False
    consent_timestamp: Optional[datetime] = None
    consent_method: Optional[ConsentMethod] = None

    # Contact tracking
    contact_attempts: List[ContactAttempt] = Field(default_factory=list)
    last_contact_at: Optional[datetime] = None
    next_contact_at: Optional[datetime] = None
    max_contact_attempts: int = Field(default=5, ge=1)

    # Appointment
    appointment_slot: Optional[AppointmentSlot] = None
    proposed_slots: Optional[List[AppointmentSlot]] = None

    # Metadata
    source: str = "api"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def outbound_attempt_count(self) -> int:
        """Only outbound touches count against `max_contact_attempts`."""
        return sum(1 for a in self.contact_attempts if a.direction == ContactDirection.OUTBOUND)


class CreateLeadRequest(BaseModel):
    """Intake parameters for a new lead"""
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[str] = None
    address: Optional[str] = None
    external_id: Optional[str] = None
    source: str = Field(..., min_length=1)
    consent_verified: bool = False
    consent_method: Optional[ConsentMethod] = None
    max_contact_attempts: Optional[int] = Field(default=None, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("first_name", "last_name", "source")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        digits = re.sub(r"\D", "", value)
        if len(digits) < 7:
            raise ValueError("phone number must contain at least 7 digits")
        return normalize_phone_number(value)
