"""
Workflow Orchestrator
Drives leads from consent through contact, intent branching and appointment
booking.

All lead mutation happens here, through the state machine. Each call works
on a copy of the lead and commits it to the store once; events for that
call are emitted after the commit, in the order they happened.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent_runtime.core.config import RetryPolicy
from agent_runtime.core.context import RuntimeContext
from agent_runtime.domain.models.classification import (
    DraftContext,
    DraftPurpose,
    MessageClassification,
    MessageIntent,
)
from agent_runtime.domain.models.events import (
    AppointmentEvent,
    EventType,
    LeadStateUpdateEvent,
    RuntimeEvent,
    SMSEvent,
)
from agent_runtime.domain.models.lead import (
    AppointmentSlot,
    ContactAttempt,
    ContactChannel,
    ContactDirection,
    ContactStatus,
    Lead,
    LeadState,
    utcnow,
)
from agent_runtime.domain.models.messages import SendMessageResult
from agent_runtime.domain.models.workflow import (
    IncomingAction,
    IncomingMessageResult,
    WorkflowExecution,
    WorkflowStatus,
)
from agent_runtime.domain.services.lead_state_machine import CONTACT_BLOCKED_STATES, LeadTrigger
from agent_runtime.services.lead_store import is_contact_exhausted, is_ready_for_contact

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for workflow-level failures captured into executions."""
    def __init__(self, message: str, lead_id: Optional[str] = None):
        self.message = message
        self.lead_id = lead_id
        super().__init__(self.message)


class LeadNotFoundError(WorkflowError):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}", lead_id)


class ConsentNotVerifiedError(WorkflowError):
    def __init__(self, lead_id: str):
        super().__init__(f"Lead {lead_id} has not verified consent", lead_id)


class ContactBlockedError(WorkflowError):
    def __init__(self, lead_id: str, state: LeadState):
        self.state = state
        super().__init__(f"Lead {lead_id} cannot be contacted in state {state.value}", lead_id)


class InvalidTransitionError(WorkflowError):
    def __init__(self, lead_id: str, state: LeadState, trigger: LeadTrigger):
        self.state = state
        self.trigger = trigger
        super().__init__(f"Invalid transition for lead {lead_id}: {state.value} + {trigger.value}", lead_id)


class MessageSendError(WorkflowError):
    def __init__(self, lead_id: str, error: Optional[str]):
        self.error = error
        super().__init__(f"Failed to send SMS to lead {lead_id}: {error}", lead_id)


class WorkflowCancelledError(WorkflowError):
    pass


@dataclass
class CancellationToken:
    """
    Cooperative cancellation flag for one workflow call.

    Checked between collaborator calls; an in-flight provider call is
    allowed to finish.
    """
    cancelled: bool = False
    reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise WorkflowCancelledError(f"Workflow cancelled: {self.reason}")


@dataclass
class ScheduledContactReport:
    """Outcome of one scheduled-contact pass."""
    started_at: datetime
    sent: int = 0
    failed: int = 0
    exhausted: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.sent + self.failed + self.exhausted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


IntentHandler = Callable[[Lead, MessageClassification], Awaitable[IncomingMessageResult]]


class WorkflowOrchestrator:
    """
    Decision core of the runtime.

    Intent handling is a closed mapping from MessageIntent to a handler;
    construction fails if any intent is left unhandled.
    """

    def __init__(self, context: RuntimeContext):
        self.context = context
        self.store = context.store
        self.state_machine = context.state_machine
        self.scheduler = context.scheduler
        self.channel = context.channel
        self.classifier = context.classifier
        self.templates = context.templates
        self.events = context.events

        settings = context.settings
        self.follow_up_delay = timedelta(hours=settings.contact.follow_up_delay_hours)
        self.slots_per_proposal = settings.contact.slots_per_proposal
        self.retry_policy: RetryPolicy = settings.workflow.retry_policy
        self.min_confidence = settings.language.min_confidence
        self.company_name = settings.sms.company_name

        self._executions: Dict[str, WorkflowExecution] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._lead_locks: Dict[str, asyncio.Lock] = {}

        self._intent_handlers: Dict[MessageIntent, IntentHandler] = {
            MessageIntent.STOP: self._handle_stop,
            MessageIntent.INTERESTED: self._handle_interested,
            MessageIntent.NOT_NOW: self._handle_not_now,
            MessageIntent.CONFIRM: self._handle_confirm,
            MessageIntent.RESCHEDULE: self._handle_reschedule,
            MessageIntent.QUESTION: self._handle_question,
            MessageIntent.UNKNOWN: self._handle_unknown,
        }
        missing = set(MessageIntent) - set(self._intent_handlers)
        if missing:
            raise RuntimeError(f"Unhandled message intents: {sorted(i.value for i in missing)}")

    # ------------------------------------------------------------------
    # Transition and commit helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        lead: Lead,
        trigger: LeadTrigger,
        events: List[RuntimeEvent],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Apply a table transition or raise InvalidTransitionError."""
        change = self.state_machine.transition(lead, trigger, metadata)
        if change is None:
            raise InvalidTransitionError(lead.id, lead.state, trigger)
        events.append(LeadStateUpdateEvent(
            lead_id=lead.id,
            from_state=change.from_state,
            to_state=change.to_state,
            trigger=change.trigger,
            timestamp=change.timestamp,
            metadata=change.metadata,
        ))

    def _force(
        self,
        lead: Lead,
        target: LeadState,
        trigger: LeadTrigger,
        events: List[RuntimeEvent],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        change = self.state_machine.force_transition(lead, target, trigger, metadata)
        events.append(LeadStateUpdateEvent(
            lead_id=lead.id,
            from_state=change.from_state,
            to_state=change.to_state,
            trigger=change.trigger,
            timestamp=change.timestamp,
            metadata=change.metadata,
        ))

    @staticmethod
    def _record_attempt(lead: Lead, attempt: Optional[ContactAttempt]) -> None:
        if attempt is None:
            return
        lead.contact_attempts.append(attempt)
        if attempt.direction == ContactDirection.OUTBOUND:
            lead.last_contact_at = attempt.timestamp

    def _lead_lock(self, lead_id: str) -> asyncio.Lock:
        """
        Lock held for the whole read, await and commit of one lead.

        Each call commits a copy taken before its collaborator awaits, so
        two calls on the same lead must not interleave.
        """
        lock = self._lead_locks.get(lead_id)
        if lock is None:
            lock = self._lead_locks[lead_id] = asyncio.Lock()
        return lock

    def _commit(self, lead: Lead) -> Lead:
        """Write every workflow-owned field of the working copy in one update."""
        updated = self.store.update(lead.id, {
            "state": lead.state,
            "state_history": lead.state_history,
            "contact_attempts": lead.contact_attempts,
            "last_contact_at": lead.last_contact_at,
            "next_contact_at": lead.next_contact_at,
            "appointment_slot": lead.appointment_slot,
            "proposed_slots": lead.proposed_slots,
        })
        if updated is None:
            raise LeadNotFoundError(lead.id)
        return updated

    def _emit_all(self, events: List[RuntimeEvent]) -> None:
        for event in events:
            self.events.emit(event)

    @staticmethod
    def _sms_event(lead: Lead, result: SendMessageResult) -> SMSEvent:
        return SMSEvent(
            type=EventType.SMS_SENT if result.success else EventType.SMS_FAILED,
            message_id=result.message.id,
            lead_id=lead.id,
            direction=ContactDirection.OUTBOUND,
            body=result.message.body,
            error=result.error,
            timestamp=result.message.timestamp,
        )

    def _consecutive_failures(self, lead: Lead) -> int:
        count = 0
        for attempt in reversed(lead.contact_attempts):
            if attempt.direction != ContactDirection.OUTBOUND:
                continue
            if attempt.status != ContactStatus.FAILED:
                break
            count += 1
        return count

    def _retry_delay(self, lead: Lead, error: Optional[str]) -> timedelta:
        """
        Re-contact delay after a failed send.

        Retryable provider errors back off per the retry policy while the
        run of consecutive failures stays within its max attempts; anything
        else waits the normal follow-up delay.
        """
        failures = self._consecutive_failures(lead)
        if self.retry_policy.is_retryable(error) and failures <= self.retry_policy.max_attempts:
            return timedelta(seconds=self.retry_policy.delay_for(failures))
        return self.follow_up_delay

    def _record_failed_send(self, lead: Lead, result: SendMessageResult, now: datetime) -> None:
        """Store the failed attempt and the next retry time; leave state alone."""
        updated = lead
        if result.attempt is not None:
            updated = self.store.add_contact_attempt(lead.id, result.attempt) or lead

        delay = self._retry_delay(updated, result.error)
        self.store.update(lead.id, {"next_contact_at": now + delay})
        logger.warning(
            f"Send to lead {lead.id} failed ({result.error}); next attempt in {int(delay.total_seconds())}s"
        )
        self.events.emit(self._sms_event(lead, result))

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self._executions.get(execution_id)

    def get_executions_for_lead(self, lead_id: str) -> List[WorkflowExecution]:
        return [e for e in self._executions.values() if e.lead_id == lead_id]

    def get_active_executions(self) -> List[WorkflowExecution]:
        return [e for e in self._executions.values() if e.is_active]

    def cancel_execution(self, execution_id: str, reason: str = "cancelled") -> bool:
        """Request cancellation of an in-flight execution."""
        execution = self._executions.get(execution_id)
        token = self._tokens.get(execution_id)
        if execution is None or token is None or not execution.is_active:
            return False
        token.cancel(reason)
        logger.info(f"Cancellation requested for execution {execution_id}: {reason}")
        return True

    def cancel_all(self, reason: str) -> int:
        """
        Cancel every active execution.

        Executions are in-memory only, so they are marked cancelled here
        rather than silently lost. One whose provider call completes
        afterwards still records its real outcome.
        """
        cancelled = 0
        for execution in self.get_active_executions():
            token = self._tokens.get(execution.id)
            if token is not None:
                token.cancel(reason)
            execution.status = WorkflowStatus.CANCELLED
            execution.error = f"Workflow cancelled: {reason}"
            execution.completed_at = utcnow()
            cancelled += 1
        return cancelled

    # ------------------------------------------------------------------
    # Initial contact
    # ------------------------------------------------------------------

    async def start_for_lead(
        self,
        lead_id: str,
        token: Optional[CancellationToken] = None
    ) -> WorkflowExecution:
        """
        Run the initial-contact workflow for a lead.

        Failures are captured on the returned execution, never raised.

        Args:
            lead_id: Lead to contact
            token: Optional cancellation token

        Returns:
            WorkflowExecution with final status and, on failure, the error
        """
        execution = WorkflowExecution(lead_id=lead_id, status=WorkflowStatus.RUNNING)
        token = token or CancellationToken()
        self._executions[execution.id] = execution
        self._tokens[execution.id] = token

        logger.info(f"Starting workflow {execution.id} for lead {lead_id}")

        try:
            execution.attempts += 1
            async with self._lead_lock(lead_id):
                lead = self.store.get_by_id(lead_id)
                if lead is None:
                    raise LeadNotFoundError(lead_id)

                execution.current_step = "check_consent"
                if not lead.consent_verified:
                    execution.current_step = "consent_required"
                    raise ConsentNotVerifiedError(lead_id)

                if not self.state_machine.can_contact(lead):
                    execution.current_step = "contact_blocked"
                    raise ContactBlockedError(lead_id, lead.state)

                await self._send_initial_contact(lead, token=token, execution=execution)
            execution.status = WorkflowStatus.COMPLETED

        except WorkflowCancelledError as e:
            execution.status = WorkflowStatus.CANCELLED
            execution.error = e.message
            logger.info(f"Workflow {execution.id} cancelled at {execution.current_step}")
        except WorkflowError as e:
            execution.status = WorkflowStatus.FAILED
            execution.error = e.message
            logger.warning(f"Workflow {execution.id} failed at {execution.current_step}: {e.message}")
        except Exception as e:
            execution.status = WorkflowStatus.FAILED
            execution.error = str(e)
            logger.error(f"Workflow {execution.id} crashed at {execution.current_step}: {e}", exc_info=True)
        finally:
            execution.completed_at = utcnow()
            self._tokens.pop(execution.id, None)

        return execution

    async def _send_initial_contact(
        self,
        lead: Lead,
        token: Optional[CancellationToken] = None,
        execution: Optional[WorkflowExecution] = None,
        now: Optional[datetime] = None
    ) -> Lead:
        """
        Schedule, send and await: one unit.

        If the send fails none of the transitions are stored; only the
        failed attempt and the retry time are.
        """
        now = now or utcnow()
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)

        if execution:
            execution.current_step = "schedule_contact"
        if working.state == LeadState.CONSENT_VERIFIED:
            self._apply(working, LeadTrigger.SCHEDULE_CONTACT, events)
        elif working.state != LeadState.CONTACT_SCHEDULED:
            raise InvalidTransitionError(working.id, working.state, LeadTrigger.SCHEDULE_CONTACT)

        if execution:
            execution.current_step = "send_initial_sms"
        self._apply(working, LeadTrigger.SEND_INITIAL_SMS, events)

        if token:
            token.raise_if_cancelled()

        body = self.templates.render_initial_contact(lead.first_name)
        result = await self.channel.send_message(lead, body, {"template": "initial_contact"})
        if not result.success:
            self._record_failed_send(lead, result, now)
            raise MessageSendError(lead.id, result.error)

        self._record_attempt(working, result.attempt)
        events.append(self._sms_event(working, result))
        self._apply(working, LeadTrigger.AWAIT_RESPONSE, events)
        working.next_contact_at = now + self.follow_up_delay

        committed = self._commit(working)
        self._emit_all(events)

        if execution:
            execution.current_step = "awaiting_response"
        logger.info(f"Initial contact sent to lead {lead.id}")
        return committed

    async def _send_follow_up(self, lead: Lead, now: datetime) -> Lead:
        attempt_number = lead.outbound_attempt_count + 1
        body = self.templates.render_follow_up(lead.first_name, attempt_number)
        result = await self.channel.send_message(
            lead, body, {"template": "follow_up", "attempt_number": attempt_number}
        )
        if not result.success:
            self._record_failed_send(lead, result, now)
            raise MessageSendError(lead.id, result.error)

        working = lead.model_copy(deep=True)
        self._record_attempt(working, result.attempt)
        working.next_contact_at = now + self.follow_up_delay
        committed = self._commit(working)
        self.events.emit(self._sms_event(working, result))

        logger.info(f"Follow-up #{attempt_number} sent to lead {lead.id}")
        return committed

    # ------------------------------------------------------------------
    # Scheduled contacts
    # ------------------------------------------------------------------

    def _mark_exhausted(self, lead: Lead, report: ScheduledContactReport) -> None:
        working = lead.model_copy(deep=True)
        events: List[RuntimeEvent] = []
        if not self.state_machine.can_transition(working.state, LeadTrigger.MAX_ATTEMPTS_REACHED):
            logger.warning(
                f"Lead {lead.id} exhausted its attempts in state {lead.state.value}; leaving for review"
            )
            report.skipped += 1
            return

        self._apply(
            working,
            LeadTrigger.MAX_ATTEMPTS_REACHED,
            events,
            {"attempts": working.outbound_attempt_count, "max_attempts": working.max_contact_attempts},
        )
        working.next_contact_at = None
        self._commit(working)
        self._emit_all(events)
        report.exhausted += 1
        logger.info(f"Lead {lead.id} reached max contact attempts")

    async def run_scheduled_contacts(self, now: Optional[datetime] = None) -> ScheduledContactReport:
        """
        One sequential pass over due leads.

        Leads that used every attempt move to `failed`; the rest get their
        initial contact or a follow-up.
        """
        now = now or utcnow()
        report = ScheduledContactReport(started_at=now)

        # Each lead is re-read under its lock; an inbound reply may have
        # changed it since the due list was taken.
        for candidate in self.store.get_contact_exhausted(now):
            async with self._lead_lock(candidate.id):
                lead = self.store.get_by_id(candidate.id)
                if lead is None or not is_contact_exhausted(lead, now):
                    logger.debug(f"Lead {candidate.id} no longer exhausted; skipping")
                    continue
                self._mark_exhausted(lead, report)

        for candidate in self.store.get_ready_for_contact(now):
            async with self._lead_lock(candidate.id):
                lead = self.store.get_by_id(candidate.id)
                if lead is None or not is_ready_for_contact(lead, now):
                    logger.debug(f"Lead {candidate.id} no longer due for contact; skipping")
                    continue
                try:
                    if lead.state in (LeadState.CONSENT_VERIFIED, LeadState.CONTACT_SCHEDULED):
                        await self._send_initial_contact(lead, now=now)
                    else:
                        await self._send_follow_up(lead, now)
                    report.sent += 1
                except MessageSendError as e:
                    report.failed += 1
                    report.errors.append(e.message)
                except WorkflowError as e:
                    report.failed += 1
                    report.errors.append(e.message)
                    logger.warning(f"Scheduled contact for lead {lead.id} failed: {e.message}")

        if report.processed or report.skipped:
            logger.info(
                f"Scheduled contacts: sent={report.sent} failed={report.failed} "
                f"exhausted={report.exhausted} skipped={report.skipped}"
            )
        return report

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def process_incoming_message(
        self,
        from_number: str,
        body: str,
        provider_id: Optional[str] = None,
        token: Optional[CancellationToken] = None
    ) -> IncomingMessageResult:
        """
        Handle an inbound message.

        The classifier only informs; the branch taken for each intent is
        fixed. A stop request always wins.

        Args:
            from_number: Sender phone number
            body: Message text
            provider_id: Provider message id, if any
            token: Optional cancellation token

        Returns:
            IncomingMessageResult with the action taken
        """
        lead = self.store.get_by_phone(from_number)
        if lead is None:
            self.channel.process_incoming_message(from_number, body, provider_id)
            logger.warning(f"Inbound SMS from unknown number {from_number[:6]}...")
            return IncomingMessageResult(
                success=False,
                action=IncomingAction.LEAD_NOT_FOUND,
                error="No lead found for this phone number",
            )

        async with self._lead_lock(lead.id):
            lead = self.store.get_by_id(lead.id) or lead
            return await self._process_lead_message(lead, from_number, body, provider_id, token)

    async def _process_lead_message(
        self,
        lead: Lead,
        from_number: str,
        body: str,
        provider_id: Optional[str],
        token: Optional[CancellationToken]
    ) -> IncomingMessageResult:
        inbound = self.channel.process_incoming_message(from_number, body, provider_id, lead_id=lead.id)
        classification = self._apply_confidence_floor(await self.classifier.classify(body))

        attempt = ContactAttempt(
            lead_id=lead.id,
            channel=ContactChannel.SMS,
            direction=ContactDirection.INBOUND,
            timestamp=inbound.timestamp,
            message=body,
            status=ContactStatus.RESPONDED,
            provider_id=provider_id,
            classification=classification,
            metadata={"message_id": inbound.id},
        )
        lead = self.store.add_contact_attempt(lead.id, attempt) or lead
        self.events.emit(SMSEvent(
            type=EventType.SMS_RECEIVED,
            message_id=inbound.id,
            lead_id=lead.id,
            direction=ContactDirection.INBOUND,
            body=body,
            classification=classification,
            timestamp=inbound.timestamp,
        ))

        logger.info(
            f"Lead {lead.id} ({lead.state.value}) replied: "
            f"{classification.intent.value} ({classification.confidence:.2f})"
        )

        try:
            if token and classification.intent != MessageIntent.STOP:
                token.raise_if_cancelled()

            if classification.intent != MessageIntent.STOP and lead.state in CONTACT_BLOCKED_STATES:
                logger.info(f"Lead {lead.id} is in {lead.state.value}; no automated reply")
                return self._result(True, IncomingAction.NO_ACTION, lead.id, classification)

            handler = self._intent_handlers[classification.intent]
            return await handler(lead, classification)

        except WorkflowCancelledError as e:
            return self._result(False, IncomingAction.CANCELLED, lead.id, classification, e.message)
        except WorkflowError as e:
            logger.warning(f"Inbound handling for lead {lead.id} failed: {e.message}")
            return self._result(False, IncomingAction.NO_ACTION, lead.id, classification, e.message)

    def _apply_confidence_floor(self, classification: MessageClassification) -> MessageClassification:
        if classification.intent in (MessageIntent.STOP, MessageIntent.UNKNOWN):
            return classification
        if classification.confidence >= self.min_confidence:
            return classification
        logger.info(
            f"Low-confidence {classification.intent.value} ({classification.confidence:.2f}) treated as unknown"
        )
        return classification.model_copy(update={"intent": MessageIntent.UNKNOWN})

    def _result(
        self,
        success: bool,
        action: IncomingAction,
        lead_id: str,
        classification: Optional[MessageClassification] = None,
        error: Optional[str] = None
    ) -> IncomingMessageResult:
        return IncomingMessageResult(
            success=success,
            action=action,
            lead=self.store.get_by_id(lead_id),
            classification=classification,
            error=error,
        )

    async def _send_and_record(
        self,
        lead: Lead,
        body: str,
        events: List[RuntimeEvent],
        metadata: Optional[Dict[str, Any]] = None
    ) -> SendMessageResult:
        """Send to the lead and append the attempt to the working copy."""
        result = await self.channel.send_message(lead, body, metadata)
        self._record_attempt(lead, result.attempt)
        events.append(self._sms_event(lead, result))
        return result

    # Intent handlers

    async def _handle_stop(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        if lead.state == LeadState.OPTED_OUT:
            logger.info(f"Lead {lead.id} already opted out; nothing sent")
            return self._result(True, IncomingAction.ALREADY_OPTED_OUT, lead.id, classification)

        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)

        self._force(
            working,
            LeadState.OPTED_OUT,
            LeadTrigger.OPT_OUT_RECEIVED,
            events,
            {"confidence": classification.confidence},
        )

        if working.appointment_slot is not None:
            slot = working.appointment_slot
            if await self.scheduler.cancel_appointment(slot.id):
                events.append(AppointmentEvent(
                    type=EventType.APPOINTMENT_CANCELLED, lead_id=working.id, slot=slot
                ))
            working.appointment_slot = None
        working.proposed_slots = None
        working.next_contact_at = None

        body = self.templates.render_opt_out_confirmation()
        result = await self.channel.send_opt_out_confirmation(working, body)
        self._record_attempt(working, result.attempt)
        events.append(self._sms_event(working, result))

        self._commit(working)
        self._emit_all(events)

        logger.info(f"Lead {lead.id} opted out from {lead.state.value}")
        return self._result(True, IncomingAction.OPT_OUT, lead.id, classification)

    def _advance_to_interested(self, lead: Lead, events: List[RuntimeEvent]) -> bool:
        """
        Walk the table from the current state to `interested`.

        Returns:
            False if there is no path from this state
        """
        paths = {
            LeadState.AWAITING_RESPONSE: (LeadTrigger.RECEIVE_RESPONSE, LeadTrigger.CLASSIFY_INTERESTED),
            LeadState.RESPONSE_RECEIVED: (LeadTrigger.CLASSIFY_INTERESTED,),
            LeadState.APPOINTMENT_PROPOSED: (LeadTrigger.RESCHEDULE_REQUESTED,),
            LeadState.APPOINTMENT_CONFIRMED: (LeadTrigger.APPOINTMENT_CANCELLED,),
            LeadState.INTERESTED: (),
        }
        if lead.state not in paths:
            return False
        for trigger in paths[lead.state]:
            self._apply(lead, trigger, events)
        return True

    async def _propose(self, working: Lead, events: List[RuntimeEvent]) -> IncomingMessageResult:
        """
        Offer slots to a lead in `interested` and commit.

        No slots means escalation to a human instead of a stalled lead.
        The lead only moves to `appointment_proposed` once the offer is sent.
        """
        proposal = await self.scheduler.propose_slots(working, self.slots_per_proposal)

        if not proposal.slots:
            metadata = {"escalation_reason": "no_slots"}
            if self.state_machine.can_transition(working.state, LeadTrigger.ESCALATE):
                self._apply(working, LeadTrigger.ESCALATE, events, metadata)
            else:
                self._force(working, LeadState.ESCALATED, LeadTrigger.ESCALATE, events, metadata)
            working.next_contact_at = None
            self._commit(working)
            self._emit_all(events)
            logger.warning(f"No appointment slots available; lead {working.id} escalated")
            return self._result(True, IncomingAction.ESCALATED, working.id)

        body = self.templates.render_appointment_proposal(working.first_name, proposal.formatted)
        result = await self._send_and_record(working, body, events, {"template": "appointment_proposal"})

        if result.success:
            working.proposed_slots = proposal.slots
            self._apply(working, LeadTrigger.PROPOSE_APPOINTMENT, events)
            events.append(AppointmentEvent(
                type=EventType.APPOINTMENT_PROPOSED, lead_id=working.id, slot=proposal.slots[0]
            ))

        self._commit(working)
        self._emit_all(events)

        if not result.success:
            return self._result(False, IncomingAction.INTERESTED, working.id, error=result.error)
        return self._result(True, IncomingAction.INTERESTED, working.id)

    async def _resend_confirmation(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)
        slot = working.appointment_slot
        if slot is None:
            return self._result(True, IncomingAction.NO_ACTION, lead.id, classification)

        body = self.templates.render_appointment_confirmation(
            working.first_name, self.scheduler.format_slot_date(slot), slot.start_time
        )
        result = await self._send_and_record(working, body, events, {"template": "appointment_confirmation"})
        self._commit(working)
        self._emit_all(events)
        return self._result(result.success, IncomingAction.APPOINTMENT_CONFIRMED, lead.id, classification, result.error)

    async def _handle_interested(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        if lead.state == LeadState.APPOINTMENT_CONFIRMED:
            return await self._resend_confirmation(lead, classification)

        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)
        if not self._advance_to_interested(working, events):
            logger.info(f"Interest from lead {lead.id} in {lead.state.value} has no workflow path")
            return self._result(True, IncomingAction.NO_ACTION, lead.id, classification)

        result = await self._propose(working, events)
        result.classification = classification
        if lead.state == LeadState.APPOINTMENT_PROPOSED and result.action == IncomingAction.INTERESTED:
            result.action = IncomingAction.SLOTS_REPROPOSED
        return result

    async def _handle_not_now(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)
        reason = classification.extracted_info.reason if classification.extracted_info else None

        if working.state == LeadState.AWAITING_RESPONSE:
            self._apply(working, LeadTrigger.RECEIVE_RESPONSE, events)
        if working.state != LeadState.RESPONSE_RECEIVED:
            logger.info(f"Decline from lead {lead.id} in {lead.state.value} has no workflow path")
            return self._result(True, IncomingAction.NO_ACTION, lead.id, classification)

        self._apply(working, LeadTrigger.CLASSIFY_NOT_INTERESTED, events, {"reason": reason} if reason else None)
        working.next_contact_at = None

        body = self.templates.render_not_interested(working.first_name)
        result = await self._send_and_record(working, body, events, {"template": "not_interested"})

        self._commit(working)
        self._emit_all(events)
        return self._result(True, IncomingAction.NOT_INTERESTED, lead.id, classification, result.error)

    async def _handle_confirm(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        if lead.state == LeadState.APPOINTMENT_CONFIRMED:
            return await self._resend_confirmation(lead, classification)

        if lead.state != LeadState.APPOINTMENT_PROPOSED or not lead.proposed_slots:
            # A "yes"/"ok" before any offer reads as interest
            return await self._handle_interested(lead, classification)

        choice = classification.preferred_slot
        slots = lead.proposed_slots
        if choice is not None and not 1 <= choice <= len(slots):
            logger.info(f"Lead {lead.id} picked option {choice} of {len(slots)}; re-sending offer")
            return await self._resend_proposal(lead, classification)
        slot: AppointmentSlot = slots[(choice or 1) - 1]

        booking = await self.scheduler.book_appointment(lead, slot.id)
        if not booking.success:
            logger.info(f"Booking slot {slot.id} for lead {lead.id} failed ({booking.error}); re-proposing")
            events: List[RuntimeEvent] = []
            working = lead.model_copy(deep=True)
            self._apply(working, LeadTrigger.RESCHEDULE_REQUESTED, events, {"booking_error": booking.error})
            result = await self._propose(working, events)
            result.classification = classification
            if result.action == IncomingAction.INTERESTED:
                result.action = IncomingAction.SLOTS_REPROPOSED
            return result

        events = []
        working = lead.model_copy(deep=True)
        booked = booking.slot
        working.appointment_slot = booked
        working.proposed_slots = None
        working.next_contact_at = None
        self._apply(working, LeadTrigger.CONFIRM_APPOINTMENT, events, {"slot_id": booked.id})
        events.append(AppointmentEvent(type=EventType.APPOINTMENT_CONFIRMED, lead_id=working.id, slot=booked))

        body = self.templates.render_appointment_confirmation(
            working.first_name, self.scheduler.format_slot_date(booked), booked.start_time
        )
        result = await self._send_and_record(working, body, events, {"template": "appointment_confirmation"})
        if result.success:
            working.appointment_slot = await self.scheduler.confirm_appointment(booked.id) or booked

        self._commit(working)
        self._emit_all(events)

        logger.info(f"Lead {lead.id} confirmed slot {booked.id}")
        return self._result(True, IncomingAction.APPOINTMENT_CONFIRMED, lead.id, classification, result.error)

    async def _resend_proposal(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)
        formatted = self.scheduler.format_slots_for_sms(working.proposed_slots or [])
        body = self.templates.render_appointment_proposal(working.first_name, formatted)
        result = await self._send_and_record(working, body, events, {"template": "appointment_proposal"})
        self._commit(working)
        self._emit_all(events)
        return self._result(result.success, IncomingAction.SLOTS_REPROPOSED, lead.id, classification, result.error)

    async def _handle_reschedule(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)

        if working.state not in (
            LeadState.AWAITING_RESPONSE,
            LeadState.RESPONSE_RECEIVED,
            LeadState.INTERESTED,
            LeadState.APPOINTMENT_PROPOSED,
            LeadState.APPOINTMENT_CONFIRMED,
        ):
            logger.info(f"Reschedule from lead {lead.id} in {lead.state.value} has no workflow path")
            return self._result(True, IncomingAction.NO_ACTION, lead.id, classification)

        if working.appointment_slot is not None:
            slot = working.appointment_slot
            if await self.scheduler.cancel_appointment(slot.id):
                events.append(AppointmentEvent(
                    type=EventType.APPOINTMENT_CANCELLED, lead_id=working.id, slot=slot
                ))
            working.appointment_slot = None
        working.proposed_slots = None

        self._advance_to_interested(working, events)
        result = await self._propose(working, events)
        result.classification = classification
        if result.action == IncomingAction.INTERESTED:
            result.action = IncomingAction.RESCHEDULE_REQUESTED
        return result

    async def _reply_with_draft(
        self,
        lead: Lead,
        classification: MessageClassification,
        purpose: DraftPurpose,
        inbound_text: Optional[str],
        action: IncomingAction
    ) -> IncomingMessageResult:
        events: List[RuntimeEvent] = []
        working = lead.model_copy(deep=True)
        body = await self.classifier.draft(DraftContext(
            purpose=purpose,
            first_name=working.first_name,
            company_name=self.company_name,
            inbound_message=inbound_text,
            lead_state=working.state.value,
        ))
        result = await self._send_and_record(working, body, events, {"template": purpose.value})
        self._commit(working)
        self._emit_all(events)
        return self._result(result.success, action, lead.id, classification, result.error)

    def _last_inbound_text(self, lead: Lead) -> Optional[str]:
        for attempt in reversed(lead.contact_attempts):
            if attempt.direction == ContactDirection.INBOUND:
                return attempt.message
        return None

    async def _handle_question(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        return await self._reply_with_draft(
            lead, classification, DraftPurpose.QUESTION_ANSWER,
            self._last_inbound_text(lead), IncomingAction.QUESTION_RECEIVED
        )

    async def _handle_unknown(self, lead: Lead, classification: MessageClassification) -> IncomingMessageResult:
        return await self._reply_with_draft(
            lead, classification, DraftPurpose.GENERIC_REPLY,
            self._last_inbound_text(lead), IncomingAction.UNKNOWN_RESPONSE
        )
