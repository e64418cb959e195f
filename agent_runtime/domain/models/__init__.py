"""Domain models"""

# Lead lifecycle
from .lead import (
    LeadState,
    ConsentMethod,
    ContactChannel,
    ContactDirection,
    ContactStatus,
    StateChange,
    ContactAttempt,
    AppointmentSlot,
    Lead,
    CreateLeadRequest,
    normalize_phone_number,
    utcnow,
)

# Language classification
from .classification import (
    MessageIntent,
    ExtractedInfo,
    MessageClassification,
    DraftPurpose,
    DraftContext,
)

# Message log
from .messages import (
    MessageStatus,
    SMSMessage,
    SendMessageResult,
)

# Workflow executions
from .workflow import (
    SMS_APPOINTMENT_WORKFLOW_ID,
    WorkflowStatus,
    WorkflowExecution,
    IncomingAction,
    IncomingMessageResult,
)

# Observer events
from .events import (
    EventType,
    LeadStateUpdateEvent,
    SMSEvent,
    AppointmentEvent,
    RuntimeEvent,
)
