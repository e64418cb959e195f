"""
Message Classification Models
Intent produced by the language collaborator for an inbound message.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class MessageIntent(str, Enum):
    """Closed set of intents the orchestrator branches on"""
    INTERESTED = "interested"
    NOT_NOW = "not_now"
    STOP = "stop"
    QUESTION = "question"
    CONFIRM = "confirm"
    RESCHEDULE = "reschedule"
    UNKNOWN = "unknown"


class ExtractedInfo(BaseModel):
    """Optional fields pulled out of free text"""
    preferred_day: Optional[str] = None
    preferred_time: Optional[str] = None
    preferred_slot: Optional[int] = Field(default=None, ge=1)
    reason: Optional[str] = None


class MessageClassification(BaseModel):
    """
    Intent tag with a confidence in [0, 1].

    Pure information: the orchestrator maps intent to triggers itself.
    """
    model_config = {"frozen": True}

    intent: MessageIntent
    confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_info: Optional[ExtractedInfo] = None
    provider: str = "rule_based"

    @property
    def preferred_slot(self) -> Optional[int]:
        if self.extracted_info is None:
            return None
        if self.extracted_info.preferred_slot is not None:
            return self.extracted_info.preferred_slot
        time_hint = (self.extracted_info.preferred_time or "").strip()
        if time_hint.isdigit():
            return int(time_hint)
        return None


class DraftPurpose(str, Enum):
    QUESTION_ANSWER = "question_answer"
    GENERIC_REPLY = "generic_reply"
    FOLLOW_UP = "follow_up"


class DraftContext(BaseModel):
    """Input for drafting outbound text"""
    purpose: DraftPurpose
    first_name: str
    company_name: str
    inbound_message: Optional[str] = None
    lead_state: Optional[str] = None
