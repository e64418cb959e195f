"""
Message Log Models
Records kept by the message channel for every send and receive.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from agent_runtime.domain.models.lead import (
    ContactAttempt,
    ContactDirection,
    generate_id,
    utcnow,
)


class MessageStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    RECEIVED = "received"
    REFUSED = "refused"


class SMSMessage(BaseModel):
    """One logged text message, outbound or inbound"""
    id: str = Field(default_factory=generate_id)
    lead_id: Optional[str] = None
    direction: ContactDirection
    from_number: str
    to_number: str
    body: str
    status: MessageStatus
    provider_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class SendMessageResult:
    """Outcome of a channel send; failures are reported, never raised."""
    success: bool
    message: SMSMessage
    attempt: Optional[ContactAttempt] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message_id": self.message.id,
            "provider_id": self.message.provider_id,
            "status": self.message.status.value,
            "error": self.error,
        }
