"""
Unit Tests for the Agent Runtime
Lifecycle, upward API, event subscription and health tracking.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from agent_runtime.core.context import build_context
from agent_runtime.domain.models.events import EventType
from agent_runtime.domain.models.lead import LeadState, utcnow
from agent_runtime.domain.models.workflow import IncomingAction, WorkflowStatus
from agent_runtime.infrastructure.calendar.in_memory import InMemoryCalendarProvider
from agent_runtime.infrastructure.llm.rule_based import RuleBasedLanguageProvider
from agent_runtime.infrastructure.sms.mock import MockSMSProvider
from agent_runtime.infrastructure.storage.memory import InMemoryLeadRepository
from agent_runtime.runtime import (
    AgentRuntime,
    ErrorType,
    HealthStatus,
    MAX_ERROR_LOG,
    RuntimeNotRunningError,
)
from agent_runtime.services.lead_store import LeadValidationError

from conftest import lead_params


def idle_runtime(context) -> AgentRuntime:
    """Runtime whose background ticks do nothing, so tests drive workflows alone."""
    runtime = AgentRuntime(context=context)
    runtime.runner.run_once = AsyncMock(return_value=None)
    return runtime


@pytest.fixture
def runtime(context):
    return idle_runtime(context)


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, runtime):
        """start() launches the runner; stop() ends it."""
        await runtime.start()
        await asyncio.sleep(0)

        status = runtime.get_status()
        assert status["running"] is True
        assert status["started_at"] is not None
        assert runtime.runner.running

        await runtime.stop()

        assert not runtime.running
        assert not runtime.runner.running
        assert runtime.get_status()["running"] is False

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, runtime):
        """A second start keeps the existing runner task."""
        await runtime.start()
        task = runtime._runner_task

        await runtime.start()

        assert runtime._runner_task is task
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_runner_giving_up_marks_runtime_stopped(self, runtime):
        """A runner that stops on repeated errors leaves the runtime not running."""
        runtime.runner.MAX_CONSECUTIVE_ERRORS = 1
        runtime.runner.run_once = AsyncMock(side_effect=RuntimeError("store offline"))

        await runtime.start()
        await asyncio.wait_for(runtime._runner_task, timeout=1)
        await asyncio.sleep(0)

        assert runtime.running is False
        assert runtime.get_status()["running"] is False
        messages = [e.message for e in runtime.get_errors()]
        assert "stopped unexpectedly" in messages[0]
        assert any("store offline" in m for m in messages[1:])

        runtime.runner.run_once = AsyncMock(return_value=None)
        await runtime.start()
        assert runtime.running is True
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, runtime):
        """Stopping an idle runtime does nothing."""
        await runtime.stop()
        assert not runtime.running

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_workflows(self, settings):
        """Workflows still running at stop are marked cancelled."""
        context = build_context(
            settings,
            sms_provider=MockSMSProvider(latency=0.2),
            calendar_provider=InMemoryCalendarProvider(),
            language_provider=RuleBasedLanguageProvider(),
            repository=InMemoryLeadRepository(),
        )
        runtime = idle_runtime(context)
        await runtime.start()
        lead = runtime.create_lead(lead_params())

        task = asyncio.create_task(runtime.start_workflow(lead.id))
        await asyncio.sleep(0.05)
        assert runtime.get_status()["active_workflows"] == 1

        await runtime.stop()

        executions = runtime.get_lead_workflows(lead.id)
        assert [e.status for e in executions] == [WorkflowStatus.CANCELLED]
        assert runtime.get_status()["active_workflows"] == 0
        await task


class TestUpwardApi:
    """Tests for lead and workflow operations."""

    @pytest.mark.asyncio
    async def test_start_workflow_requires_running(self, runtime):
        """Workflows cannot start before the runtime does."""
        lead = runtime.create_lead(lead_params())

        with pytest.raises(RuntimeNotRunningError):
            await runtime.start_workflow(lead.id)

    @pytest.mark.asyncio
    async def test_start_workflow(self, runtime):
        """A started workflow contacts the lead and is retrievable."""
        await runtime.start()
        lead = runtime.create_lead(lead_params())
        assert runtime.get_status()["pending_leads"] == 1

        execution = await runtime.start_workflow(lead.id)

        assert execution.status == WorkflowStatus.COMPLETED
        assert runtime.get_workflow_execution(execution.id) is execution
        assert runtime.get_lead(lead.id).state == LeadState.AWAITING_RESPONSE
        status = runtime.get_status()
        assert status["pending_leads"] == 0
        assert status["processed_today"] == 1
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_failed_workflow_logged(self, runtime):
        """Failed executions land in the error log."""
        await runtime.start()
        lead = runtime.create_lead(lead_params(consent_verified=False))

        execution = await runtime.start_workflow(lead.id)

        assert execution.status == WorkflowStatus.FAILED
        error = runtime.get_errors()[0]
        assert error.type == ErrorType.WORKFLOW
        assert error.workflow_id == execution.id
        assert error.lead_id == lead.id
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_failed_send_logged_as_sms_error(self, runtime, sms_provider):
        """sms_failed events are recorded as SMS errors."""
        sms_provider.fail_next("Undeliverable number")
        await runtime.start()
        lead = runtime.create_lead(lead_params())

        await runtime.start_workflow(lead.id)

        types = [e.type for e in runtime.get_errors()]
        assert ErrorType.SMS in types
        assert ErrorType.WORKFLOW in types
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_process_incoming_sms(self, runtime):
        """Inbound SMS is routed through the orchestrator."""
        await runtime.start()
        lead = runtime.create_lead(lead_params())
        await runtime.start_workflow(lead.id)

        result = await runtime.process_incoming_sms("+15551234567", "STOP")

        assert result.action == IncomingAction.OPT_OUT
        assert runtime.get_lead(lead.id).state == LeadState.OPTED_OUT
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_process_incoming_sms_error_logged_and_raised(self, runtime):
        """Unexpected inbound failures are logged, then re-raised."""
        runtime.orchestrator.process_incoming_message = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await runtime.process_incoming_sms("+15551234567", "hi")

        error = runtime.get_errors()[0]
        assert "boom" in error.message
        assert error.stack is not None

    def test_create_lead_validation(self, runtime):
        """Invalid intake parameters raise."""
        with pytest.raises(LeadValidationError):
            runtime.create_lead(lead_params(first_name=""))

    def test_lead_queries(self, runtime):
        """Leads and lead stats are exposed."""
        runtime.create_lead(lead_params())

        assert len(runtime.get_all_leads()) == 1
        assert runtime.get_lead_stats()["total"] == 1


class TestEvents:
    """Tests for event subscription."""

    @pytest.mark.asyncio
    async def test_on_event_and_unsubscribe(self, runtime):
        """Subscribers see events until they unsubscribe."""
        seen = []
        unsubscribe = runtime.on_event(seen.append)
        await runtime.start()
        lead = runtime.create_lead(lead_params())

        await runtime.start_workflow(lead.id)
        count = len(seen)
        assert EventType.SMS_SENT in [e.type for e in seen]

        unsubscribe()
        await runtime.process_incoming_sms("+15551234567", "Yes")

        assert len(seen) == count
        await runtime.stop()


class TestHealth:
    """Tests for the error log and health status."""

    def test_healthy_by_default(self, runtime):
        assert runtime.calculate_health() == HealthStatus.HEALTHY

    def test_degraded_then_unhealthy(self, runtime):
        """More than three recent errors degrade; more than ten is unhealthy."""
        for _ in range(4):
            runtime.log_error(ErrorType.SMS, "send failed")
        assert runtime.calculate_health() == HealthStatus.DEGRADED

        for _ in range(7):
            runtime.log_error(ErrorType.CALENDAR, "calendar down")
        assert runtime.calculate_health() == HealthStatus.UNHEALTHY
        assert runtime.get_status()["health"] == "unhealthy"

    def test_resolved_errors_do_not_count(self, runtime):
        """Resolving errors restores health."""
        errors = [runtime.log_error(ErrorType.SMS, "send failed") for _ in range(4)]

        assert runtime.resolve_error(errors[0].id)
        assert not runtime.resolve_error("missing")
        assert runtime.calculate_health() == HealthStatus.HEALTHY

    def test_old_errors_do_not_count(self, runtime):
        """Only errors from the last five minutes affect health."""
        for _ in range(11):
            runtime.log_error(ErrorType.SYSTEM, "tick failed")

        assert runtime.calculate_health(now=utcnow() + timedelta(minutes=6)) == HealthStatus.HEALTHY

    def test_error_log_bounded_newest_first(self, runtime):
        """The log keeps the newest entries up to its bound."""
        for i in range(MAX_ERROR_LOG + 5):
            runtime.log_error(ErrorType.SYSTEM, f"error {i}")

        errors = runtime.get_errors()
        assert len(errors) == MAX_ERROR_LOG
        assert errors[0].message == f"error {MAX_ERROR_LOG + 4}"
        assert len(runtime.get_status()["errors"]) == 10
        assert len(runtime.get_errors(limit=3)) == 3

    @pytest.mark.asyncio
    async def test_runner_errors_logged(self, runtime):
        """Runner tick errors are recorded as system errors."""
        runtime._on_runner_error(RuntimeError("store offline"))

        error = runtime.get_errors()[0]
        assert error.type == ErrorType.SYSTEM
        assert "store offline" in error.message
