"""
Lead State Machine
Transition table and lifecycle rules for leads.

Pure logic: no I/O and no persistence. Callers own the Lead object and
decide whether a rejected transition (None result) is an error.
"""
import logging
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Any

from pydantic import BaseModel, ConfigDict, Field

from agent_runtime.domain.models.lead import Lead, LeadState, StateChange, utcnow

logger = logging.getLogger(__name__)


class LeadTrigger(str, Enum):
    """Named events that move a lead between states"""
    REQUEST_CONSENT = "request_consent"
    CONSENT_ALREADY_VERIFIED = "consent_already_verified"
    CONSENT_RECEIVED = "consent_received"
    CONSENT_DECLINED = "consent_declined"
    CONSENT_TIMEOUT = "consent_timeout"
    SCHEDULE_CONTACT = "schedule_contact"
    SEND_INITIAL_SMS = "send_initial_sms"
    AWAIT_RESPONSE = "await_response"
    RECEIVE_RESPONSE = "receive_response"
    SCHEDULE_RETRY = "schedule_retry"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    CLASSIFY_INTERESTED = "classify_interested"
    CLASSIFY_NOT_INTERESTED = "classify_not_interested"
    CLASSIFY_STOP = "classify_stop"
    CLASSIFY_QUESTION = "classify_question"
    PROPOSE_APPOINTMENT = "propose_appointment"
    AWAIT_CONFIRMATION = "await_confirmation"
    CONFIRM_APPOINTMENT = "confirm_appointment"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    COMPLETE_APPOINTMENT = "complete_appointment"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    OPT_OUT_RECEIVED = "opt_out_received"
    ESCALATE = "escalate"


class LeadTransition(BaseModel):
    """One (from, trigger) -> to entry of the transition table"""
    model_config = ConfigDict(frozen=True)

    from_state: LeadState = Field(..., description="Source state")
    to_state: LeadState = Field(..., description="Destination state")
    trigger: LeadTrigger = Field(..., description="Event that fires the transition")


TERMINAL_STATES: FrozenSet[LeadState] = frozenset({
    LeadState.APPOINTMENT_COMPLETED,
    LeadState.OPTED_OUT,
    LeadState.ESCALATED,
})

CONTACT_BLOCKED_STATES: FrozenSet[LeadState] = TERMINAL_STATES | frozenset({
    LeadState.FAILED,
    LeadState.NOT_INTERESTED,
})

# States from which an explicit opt-out request is accepted through the table
_OPT_OUT_SOURCES = (
    LeadState.INITIAL_CONTACT_SENT,
    LeadState.AWAITING_RESPONSE,
    LeadState.RESPONSE_RECEIVED,
    LeadState.INTERESTED,
    LeadState.APPOINTMENT_PROPOSED,
    LeadState.APPOINTMENT_CONFIRMED,
)

_ESCALATION_SOURCES = (
    LeadState.FAILED,
    LeadState.INTERESTED,
    LeadState.NOT_INTERESTED,
)


def _t(from_state: LeadState, trigger: LeadTrigger, to_state: LeadState) -> LeadTransition:
    return LeadTransition(from_state=from_state, to_state=to_state, trigger=trigger)


TRANSITIONS: Tuple[LeadTransition, ...] = (
    # Consent
    _t(LeadState.NEW, LeadTrigger.REQUEST_CONSENT, LeadState.CONSENT_PENDING),
    _t(LeadState.NEW, LeadTrigger.CONSENT_ALREADY_VERIFIED, LeadState.CONSENT_VERIFIED),
    _t(LeadState.CONSENT_PENDING, LeadTrigger.CONSENT_RECEIVED, LeadState.CONSENT_VERIFIED),
    _t(LeadState.CONSENT_PENDING, LeadTrigger.CONSENT_DECLINED, LeadState.OPTED_OUT),
    _t(LeadState.CONSENT_PENDING, LeadTrigger.CONSENT_TIMEOUT, LeadState.FAILED),

    # Contact
    _t(LeadState.CONSENT_VERIFIED, LeadTrigger.SCHEDULE_CONTACT, LeadState.CONTACT_SCHEDULED),
    _t(LeadState.CONTACT_SCHEDULED, LeadTrigger.SEND_INITIAL_SMS, LeadState.INITIAL_CONTACT_SENT),
    _t(LeadState.INITIAL_CONTACT_SENT, LeadTrigger.AWAIT_RESPONSE, LeadState.AWAITING_RESPONSE),
    _t(LeadState.AWAITING_RESPONSE, LeadTrigger.RECEIVE_RESPONSE, LeadState.RESPONSE_RECEIVED),
    _t(LeadState.AWAITING_RESPONSE, LeadTrigger.SCHEDULE_RETRY, LeadState.CONTACT_SCHEDULED),
    _t(LeadState.AWAITING_RESPONSE, LeadTrigger.MAX_ATTEMPTS_REACHED, LeadState.FAILED),

    # Intent branching
    _t(LeadState.RESPONSE_RECEIVED, LeadTrigger.CLASSIFY_INTERESTED, LeadState.INTERESTED),
    _t(LeadState.RESPONSE_RECEIVED, LeadTrigger.CLASSIFY_NOT_INTERESTED, LeadState.NOT_INTERESTED),
    _t(LeadState.RESPONSE_RECEIVED, LeadTrigger.CLASSIFY_STOP, LeadState.OPTED_OUT),
    _t(LeadState.RESPONSE_RECEIVED, LeadTrigger.CLASSIFY_QUESTION, LeadState.AWAITING_RESPONSE),

    # Appointment
    _t(LeadState.INTERESTED, LeadTrigger.PROPOSE_APPOINTMENT, LeadState.APPOINTMENT_PROPOSED),
    _t(LeadState.APPOINTMENT_PROPOSED, LeadTrigger.AWAIT_CONFIRMATION, LeadState.AWAITING_RESPONSE),
    _t(LeadState.APPOINTMENT_PROPOSED, LeadTrigger.CONFIRM_APPOINTMENT, LeadState.APPOINTMENT_CONFIRMED),
    _t(LeadState.APPOINTMENT_PROPOSED, LeadTrigger.RESCHEDULE_REQUESTED, LeadState.INTERESTED),
    _t(LeadState.APPOINTMENT_CONFIRMED, LeadTrigger.COMPLETE_APPOINTMENT, LeadState.APPOINTMENT_COMPLETED),
    _t(LeadState.APPOINTMENT_CONFIRMED, LeadTrigger.APPOINTMENT_CANCELLED, LeadState.INTERESTED),

    # Opt-out and escalation
    *(_t(state, LeadTrigger.OPT_OUT_RECEIVED, LeadState.OPTED_OUT) for state in _OPT_OUT_SOURCES),
    *(_t(state, LeadTrigger.ESCALATE, LeadState.ESCALATED) for state in _ESCALATION_SOURCES),
)

STATE_DESCRIPTIONS: Dict[LeadState, str] = {
    LeadState.NEW: "New lead, consent not yet requested",
    LeadState.CONSENT_PENDING: "Waiting for the lead to grant contact consent",
    LeadState.CONSENT_VERIFIED: "Consent verified, ready for first contact",
    LeadState.CONTACT_SCHEDULED: "Initial contact scheduled",
    LeadState.INITIAL_CONTACT_SENT: "Initial message sent",
    LeadState.AWAITING_RESPONSE: "Waiting for the lead to reply",
    LeadState.RESPONSE_RECEIVED: "Reply received, classifying",
    LeadState.INTERESTED: "Lead is interested",
    LeadState.APPOINTMENT_PROPOSED: "Appointment times proposed",
    LeadState.APPOINTMENT_CONFIRMED: "Appointment confirmed",
    LeadState.APPOINTMENT_COMPLETED: "Appointment completed",
    LeadState.NOT_INTERESTED: "Lead is not interested",
    LeadState.OPTED_OUT: "Lead opted out of all contact",
    LeadState.FAILED: "Automation could not reach the lead",
    LeadState.ESCALATED: "Handed over to a human",
}


class LeadStateMachine:
    """
    Deterministic lifecycle rules for leads.

    `transition` never raises: an unknown (state, trigger) pair returns
    None and leaves the lead untouched. Terminal states absorb every trigger.
    """

    def __init__(self, transitions: Tuple[LeadTransition, ...] = TRANSITIONS):
        self._table: Dict[Tuple[LeadState, LeadTrigger], LeadState] = {}
        for entry in transitions:
            key = (entry.from_state, entry.trigger)
            if key in self._table:
                raise ValueError(f"Duplicate transition for {entry.from_state.value}/{entry.trigger.value}")
            self._table[key] = entry.to_state

    @staticmethod
    def _coerce_trigger(trigger: Any) -> Optional[LeadTrigger]:
        if isinstance(trigger, LeadTrigger):
            return trigger
        try:
            return LeadTrigger(trigger)
        except ValueError:
            return None

    def get_target_state(self, state: LeadState, trigger: Any) -> Optional[LeadState]:
        """Destination for a trigger, or None if the table has no entry."""
        if state in TERMINAL_STATES:
            return None
        trigger = self._coerce_trigger(trigger)
        if trigger is None:
            return None
        return self._table.get((state, trigger))

    def can_transition(self, state: LeadState, trigger: Any) -> bool:
        return self.get_target_state(state, trigger) is not None

    def available_triggers(self, state: LeadState) -> List[LeadTrigger]:
        if state in TERMINAL_STATES:
            return []
        return [trigger for (from_state, trigger) in self._table if from_state == state]

    def is_valid_transition(self, from_state: LeadState, to_state: LeadState) -> bool:
        if from_state in TERMINAL_STATES:
            return False
        return any(
            source == from_state and target == to_state
            for (source, _), target in self._table.items()
        )

    def transition(
        self,
        lead: Lead,
        trigger: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[StateChange]:
        """
        Apply a table transition to the lead in place.

        Args:
            lead: Lead to mutate
            trigger: LeadTrigger or its string value
            metadata: Optional audit metadata

        Returns:
            The appended StateChange, or None if the trigger is not valid
            for the lead's current state
        """
        target = self.get_target_state(lead.state, trigger)
        if target is None:
            logger.debug(
                f"Rejected transition for lead {lead.id}: "
                f"{lead.state.value} + {getattr(trigger, 'value', trigger)}"
            )
            return None

        return self._apply(lead, target, self._coerce_trigger(trigger).value, metadata)

    def force_transition(
        self,
        lead: Lead,
        target_state: LeadState,
        trigger: Any,
        metadata: Optional[Dict[str, Any]] = None
    ) -> StateChange:
        """
        Move the lead to `target_state` bypassing the table.

        Reserved for opt-out and explicit escalation. The audit record is
        tagged `forced:<trigger>` with `forced: True` in its metadata.
        """
        trigger_name = getattr(trigger, "value", trigger)
        audit = dict(metadata or {})
        audit["forced"] = True

        logger.warning(
            f"Forced transition for lead {lead.id}: {lead.state.value} -> {target_state.value} ({trigger_name})"
        )
        return self._apply(lead, target_state, f"forced:{trigger_name}", audit)

    @staticmethod
    def _apply(
        lead: Lead,
        target: LeadState,
        trigger_name: str,
        metadata: Optional[Dict[str, Any]]
    ) -> StateChange:
        now = utcnow()
        change = StateChange(
            from_state=lead.state,
            to_state=target,
            trigger=trigger_name,
            timestamp=now,
            metadata=metadata,
        )
        lead.state_history.append(change)
        lead.state = target
        lead.updated_at = now
        return change

    # Derived checks

    @staticmethod
    def is_terminal(state: LeadState) -> bool:
        return state in TERMINAL_STATES

    @staticmethod
    def is_opted_out(lead: Lead) -> bool:
        return lead.state == LeadState.OPTED_OUT

    @staticmethod
    def can_contact(lead: Lead) -> bool:
        """Outbound contact needs verified consent and a non-blocked state."""
        return lead.consent_verified and lead.state not in CONTACT_BLOCKED_STATES

    @staticmethod
    def get_state_description(state: LeadState) -> str:
        return STATE_DESCRIPTIONS.get(state, state.value)
