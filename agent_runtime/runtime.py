"""
Agent Runtime
Headless entry point: owns the scheduled runner, exposes lead and workflow
operations to an outer layer, and tracks runtime health.
"""
import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from agent_runtime.core.config import Settings
from agent_runtime.core.context import RuntimeContext, build_context
from agent_runtime.domain.models.events import EventType, RuntimeEvent
from agent_runtime.domain.models.lead import CreateLeadRequest, Lead, LeadState, generate_id, utcnow
from agent_runtime.domain.models.workflow import IncomingMessageResult, WorkflowExecution, WorkflowStatus
from agent_runtime.services.workflow_orchestrator import WorkflowOrchestrator
from agent_runtime.workers.scheduled_contact_runner import ScheduledContactRunner

logger = logging.getLogger(__name__)

MAX_ERROR_LOG = 100
RECENT_ERROR_WINDOW = timedelta(minutes=5)
DEGRADED_THRESHOLD = 3
UNHEALTHY_THRESHOLD = 10


class RuntimeNotRunningError(Exception):
    """Raised when a workflow is started on a runtime that is not running."""
    def __init__(self, message: str = "Agent runtime is not running"):
        self.message = message
        super().__init__(self.message)


class ErrorType(str, Enum):
    SMS = "sms"
    CALENDAR = "calendar"
    WORKFLOW = "workflow"
    LANGUAGE = "language"
    SYSTEM = "system"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class AgentError:
    """One entry in the runtime error log."""
    type: ErrorType
    message: str
    lead_id: Optional[str] = None
    workflow_id: Optional[str] = None
    stack: Optional[str] = None
    resolved: bool = False
    id: str = field(default_factory=generate_id)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "message": self.message,
            "lead_id": self.lead_id,
            "workflow_id": self.workflow_id,
            "stack": self.stack,
            "resolved": self.resolved,
        }


class AgentRuntime:
    """
    Upward API of the lead runtime.

    Usage:
        runtime = AgentRuntime()
        await runtime.start()
        lead = runtime.create_lead({...})
        execution = await runtime.start_workflow(lead.id)
        await runtime.stop()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        context: Optional[RuntimeContext] = None
    ):
        self.context = context or build_context(settings)
        self.settings = self.context.settings
        self.orchestrator = WorkflowOrchestrator(self.context)
        self.runner = ScheduledContactRunner(self.context, self.orchestrator, on_error=self._on_runner_error)

        self.running = False
        self.started_at: Optional[datetime] = None
        self._runner_task: Optional[asyncio.Task] = None
        self._errors: List[AgentError] = []

        self._processed_day = utcnow().date()
        self._processed_today = 0

        self.context.events.subscribe(self._track_event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduled contact runner."""
        if self.running:
            logger.warning("Agent runtime already running")
            return

        self.running = True
        self.started_at = utcnow()
        self._runner_task = asyncio.create_task(self.runner.run())
        self._runner_task.add_done_callback(self._on_runner_exit)
        logger.info("Agent runtime started")

    async def stop(self) -> None:
        """
        Stop the runner and cancel in-flight workflows.

        Executions are held in memory only; running ones are marked
        cancelled rather than dropped.
        """
        if not self.running:
            return

        self.running = False
        self.runner.shutdown()

        if self._runner_task is not None:
            self._runner_task.cancel()
            try:
                await self._runner_task
            except asyncio.CancelledError:
                pass
            self._runner_task = None

        cancelled = self.orchestrator.cancel_all("runtime stopped")
        if cancelled:
            logger.info(f"Cancelled {cancelled} in-flight workflow(s)")
        logger.info("Agent runtime stopped")

    async def close(self) -> None:
        """Stop and release collaborator resources."""
        await self.stop()
        await self.context.classifier.cleanup()

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def create_lead(self, params: Union[CreateLeadRequest, Dict[str, Any]]) -> Lead:
        """
        Create a lead.

        Raises:
            LeadValidationError: On missing or invalid fields, or a duplicate phone
        """
        return self.context.store.create(params)

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        return self.context.store.get_by_id(lead_id)

    def get_all_leads(self) -> List[Lead]:
        return self.context.store.get_all()

    def get_lead_stats(self) -> Dict[str, Any]:
        return self.context.store.get_stats()

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def start_workflow(self, lead_id: str) -> WorkflowExecution:
        """
        Run the initial-contact workflow for a lead.

        Raises:
            RuntimeNotRunningError: If the runtime has not been started
        """
        if not self.running:
            raise RuntimeNotRunningError()

        execution = await self.orchestrator.start_for_lead(lead_id)
        if execution.status == WorkflowStatus.FAILED:
            self.log_error(
                ErrorType.WORKFLOW,
                execution.error or "Workflow failed",
                lead_id=lead_id,
                workflow_id=execution.id,
            )
        return execution

    async def process_incoming_sms(
        self,
        from_number: str,
        body: str,
        provider_id: Optional[str] = None
    ) -> IncomingMessageResult:
        try:
            return await self.orchestrator.process_incoming_message(from_number, body, provider_id)
        except Exception as e:
            self.log_error(ErrorType.WORKFLOW, f"Inbound SMS processing failed: {e}", error=e)
            raise

    def get_workflow_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return self.orchestrator.get_execution(execution_id)

    def get_lead_workflows(self, lead_id: str) -> List[WorkflowExecution]:
        return self.orchestrator.get_executions_for_lead(lead_id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_event(self, callback: Callable[[RuntimeEvent], None]) -> Callable[[], None]:
        """
        Subscribe to runtime events.

        Returns:
            Callable that unsubscribes the callback
        """
        return self.context.events.subscribe(callback)

    def _track_event(self, event: RuntimeEvent) -> None:
        if event.type == EventType.SMS_SENT:
            self._roll_processed_day()
            self._processed_today += 1
        elif event.type == EventType.SMS_FAILED:
            self.log_error(ErrorType.SMS, event.error or "SMS send failed", lead_id=event.lead_id)

    def _roll_processed_day(self) -> None:
        today = utcnow().date()
        if today != self._processed_day:
            self._processed_day = today
            self._processed_today = 0

    # ------------------------------------------------------------------
    # Status and errors
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """Runtime status for an outer dashboard or health check."""
        self._roll_processed_day()
        return {
            "running": self.running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "active_workflows": len(self.orchestrator.get_active_executions()),
            "pending_leads": self.context.store.count_by_state(LeadState.CONSENT_VERIFIED),
            "processed_today": self._processed_today,
            "errors": [e.to_dict() for e in self._errors[:10]],
            "health": self.calculate_health().value,
            "runner": self.runner.get_stats(),
        }

    def log_error(
        self,
        error_type: ErrorType,
        message: str,
        lead_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        error: Optional[BaseException] = None
    ) -> AgentError:
        stack = None
        if error is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        agent_error = AgentError(
            type=error_type,
            message=message,
            lead_id=lead_id,
            workflow_id=workflow_id,
            stack=stack,
        )
        self._errors.insert(0, agent_error)
        del self._errors[MAX_ERROR_LOG:]

        logger.error(f"{error_type.value} error: {message}")
        return agent_error

    def resolve_error(self, error_id: str) -> bool:
        for agent_error in self._errors:
            if agent_error.id == error_id:
                agent_error.resolved = True
                return True
        return False

    def get_errors(self, limit: Optional[int] = None) -> List[AgentError]:
        return list(self._errors[:limit] if limit else self._errors)

    def calculate_health(self, now: Optional[datetime] = None) -> HealthStatus:
        """Health from unresolved errors in the last five minutes."""
        cutoff = (now or utcnow()) - RECENT_ERROR_WINDOW
        recent = sum(1 for e in self._errors if not e.resolved and e.timestamp > cutoff)

        if recent > UNHEALTHY_THRESHOLD:
            return HealthStatus.UNHEALTHY
        if recent > DEGRADED_THRESHOLD:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _on_runner_error(self, error: Exception) -> None:
        self.log_error(ErrorType.SYSTEM, f"Scheduled task error: {error}", error=error)

    def _on_runner_exit(self, task: asyncio.Task) -> None:
        """The runner ended without stop(): the runtime is no longer running."""
        if task.cancelled() or task is not self._runner_task or not self.running:
            return

        error = task.exception()
        self.running = False
        self._runner_task = None
        self.log_error(
            ErrorType.SYSTEM,
            f"Scheduled contact runner stopped unexpectedly: {error or 'too many consecutive errors'}",
            error=error,
        )
        logger.critical("Scheduled contact runner exited; agent runtime marked stopped")
