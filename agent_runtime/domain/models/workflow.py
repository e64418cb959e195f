"""
Workflow Domain Models
Execution records for orchestration runs and results of inbound processing.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from agent_runtime.domain.models.lead import Lead, generate_id, utcnow
from agent_runtime.domain.models.classification import MessageClassification


SMS_APPOINTMENT_WORKFLOW_ID = "sms_appointment_setter"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WorkflowExecution(BaseModel):
    """
    One orchestration run for a lead.

    Held in memory only; executions do not survive a restart.
    """
    id: str = Field(default_factory=generate_id)
    workflow_id: str = SMS_APPOINTMENT_WORKFLOW_ID
    lead_id: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: str = "start"
    attempts: int = 0
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in (WorkflowStatus.PENDING, WorkflowStatus.RUNNING)


class IncomingAction(str, Enum):
    """Outcome tags reported for an inbound message"""
    LEAD_NOT_FOUND = "lead_not_found"
    OPT_OUT = "opt_out"
    ALREADY_OPTED_OUT = "already_opted_out"
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    SLOTS_REPROPOSED = "slots_reproposed"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    QUESTION_RECEIVED = "question_received"
    UNKNOWN_RESPONSE = "unknown_response"
    NO_ACTION = "no_action"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


@dataclass
class IncomingMessageResult:
    """Result of processing one inbound message."""
    success: bool
    action: IncomingAction
    lead: Optional[Lead] = None
    classification: Optional[MessageClassification] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action.value,
            "lead_id": self.lead.id if self.lead else None,
            "state": self.lead.state.value if self.lead else None,
            "intent": self.classification.intent.value if self.classification else None,
            "error": self.error,
        }

