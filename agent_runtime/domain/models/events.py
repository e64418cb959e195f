"""
Runtime Event Models
Events delivered to external observers (dashboards, audit sinks).
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Union

from agent_runtime.domain.models.lead import (
    AppointmentSlot,
    ContactDirection,
    LeadState,
    utcnow,
)
from agent_runtime.domain.models.classification import MessageClassification


class EventType(str, Enum):
    LEAD_STATE_UPDATE = "lead_state_update"
    SMS_SENT = "sms_sent"
    SMS_RECEIVED = "sms_received"
    SMS_DELIVERED = "sms_delivered"
    SMS_FAILED = "sms_failed"
    APPOINTMENT_PROPOSED = "appointment_proposed"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"


@dataclass
class LeadStateUpdateEvent:
    lead_id: str
    from_state: LeadState
    to_state: LeadState
    trigger: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None
    type: EventType = EventType.LEAD_STATE_UPDATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "lead_id": self.lead_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class SMSEvent:
    type: EventType
    message_id: str
    lead_id: str
    direction: ContactDirection
    body: str
    classification: Optional[MessageClassification] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message_id": self.message_id,
            "lead_id": self.lead_id,
            "direction": self.direction.value,
            "body": self.body,
            "classification": self.classification.model_dump(mode="json") if self.classification else None,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AppointmentEvent:
    type: EventType
    lead_id: str
    slot: AppointmentSlot
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "lead_id": self.lead_id,
            "slot": self.slot.model_dump(mode="json"),
            "timestamp": self.timestamp.isoformat(),
        }


RuntimeEvent = Union[LeadStateUpdateEvent, SMSEvent, AppointmentEvent]
