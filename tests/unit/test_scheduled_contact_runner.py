"""
Unit Tests for the Scheduled Contact Runner
"""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from agent_runtime.domain.models.lead import ContactDirection, ContactStatus, LeadState
from agent_runtime.domain.services.quiet_hours import QuietHours
from agent_runtime.workers.scheduled_contact_runner import ScheduledContactRunner

from conftest import FIXED_NOW, lead_params

# 22:00 in New York
NIGHT = datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def runner(context, orchestrator):
    return ScheduledContactRunner(context, orchestrator)


def outbound_count(lead):
    return sum(1 for a in lead.contact_attempts if a.direction == ContactDirection.OUTBOUND)


class TestRunOnce:
    """Tests for single ticks."""

    @pytest.mark.asyncio
    async def test_contacts_due_leads(self, context, runner, sms_provider):
        """New consented leads get their initial contact on the next tick."""
        first = context.store.create(lead_params())
        second = context.store.create(lead_params(phone="+15557654321", first_name="Ann"))

        report = await runner.run_once(FIXED_NOW)

        assert report.sent == 2
        assert len(sms_provider.sent_messages) == 2
        for lead_id in (first.id, second.id):
            lead = context.store.get_by_id(lead_id)
            assert lead.state == LeadState.AWAITING_RESPONSE
            assert lead.next_contact_at == FIXED_NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_quiet_hours_skip_tick(self, context, runner, sms_provider):
        """No lead is contacted during quiet hours."""
        context.store.create(lead_params())

        report = await runner.run_once(NIGHT)

        assert report is None
        assert sms_provider.sent_messages == []
        assert runner.get_stats()["ticks_skipped"] == 1

    @pytest.mark.asyncio
    async def test_follow_up_after_delay(self, context, runner, sms_provider):
        """Leads still awaiting a reply get a follow-up once due."""
        lead = context.store.create(lead_params())
        await runner.run_once(FIXED_NOW)

        early = await runner.run_once(FIXED_NOW + timedelta(hours=1))
        due = await runner.run_once(FIXED_NOW + timedelta(hours=25))

        assert early.processed == 0
        assert due.sent == 1
        stored = context.store.get_by_id(lead.id)
        assert stored.state == LeadState.AWAITING_RESPONSE
        assert outbound_count(stored) == 2
        assert "following up" in sms_provider.sent_messages[-1]["body"]

    @pytest.mark.asyncio
    async def test_attempt_cap_moves_lead_to_failed(self, context, runner, sms_provider):
        """A lead that used every attempt fails instead of being contacted again."""
        lead = context.store.create(lead_params(max_contact_attempts=2))
        await runner.run_once(FIXED_NOW)
        await runner.run_once(FIXED_NOW + timedelta(hours=25))

        report = await runner.run_once(FIXED_NOW + timedelta(hours=50))

        assert report.exhausted == 1
        assert report.sent == 0
        stored = context.store.get_by_id(lead.id)
        assert stored.state == LeadState.FAILED
        assert stored.next_contact_at is None
        assert stored.state_history[-1].trigger == "max_attempts_reached"
        assert len(sms_provider.sent_messages) == 2

        later = await runner.run_once(FIXED_NOW + timedelta(hours=75))
        assert later.processed == 0

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off(self, context, runner, sms_provider):
        """Rate-limited sends are retried with a growing delay."""
        sms_provider.fail_next("RATE_LIMIT: throttled", times=2)
        lead = context.store.create(lead_params())

        first = await runner.run_once(FIXED_NOW)
        assert first.failed == 1
        assert context.store.get_by_id(lead.id).next_contact_at == FIXED_NOW + timedelta(seconds=60)

        assert (await runner.run_once(FIXED_NOW + timedelta(seconds=30))).processed == 0

        retry_at = FIXED_NOW + timedelta(seconds=61)
        second = await runner.run_once(retry_at)
        assert second.failed == 1
        assert context.store.get_by_id(lead.id).next_contact_at == retry_at + timedelta(seconds=120)

        third = await runner.run_once(retry_at + timedelta(seconds=121))
        assert third.sent == 1
        stored = context.store.get_by_id(lead.id)
        assert stored.state == LeadState.AWAITING_RESPONSE
        assert [a.status for a in stored.contact_attempts] == [
            ContactStatus.FAILED, ContactStatus.FAILED, ContactStatus.SENT
        ]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_tick(self, context, runner, sms_provider):
        """A failing lead is counted and the rest are still contacted."""
        sms_provider.fail_numbers.add("+15557654321")
        context.store.create(lead_params())
        context.store.create(lead_params(phone="+15557654321"))

        report = await runner.run_once(FIXED_NOW)

        assert report.sent == 1
        assert report.failed == 1
        assert len(report.errors) == 1

    @pytest.mark.asyncio
    async def test_stats_accumulate(self, context, runner):
        """Stats sum the reports of every tick."""
        context.store.create(lead_params())
        await runner.run_once(FIXED_NOW)
        await runner.run_once(NIGHT)

        stats = runner.get_stats()

        assert stats["ticks"] == 1
        assert stats["ticks_skipped"] == 1
        assert stats["messages_sent"] == 1
        assert stats["last_report"]["sent"] == 1
        assert stats["running"] is False


class TestRunLoop:
    """Tests for the worker loop."""

    @pytest.mark.asyncio
    async def test_shutdown_stops_loop(self, runner):
        """shutdown() ends the loop without waiting a full interval."""
        runner.POLL_INTERVAL = 30
        task = asyncio.create_task(runner.run())
        await asyncio.sleep(0.05)

        assert runner.running
        runner.shutdown()
        await asyncio.wait_for(task, timeout=1)

        assert not runner.running
        stats = runner.get_stats()
        assert stats["ticks"] + stats["ticks_skipped"] == 1

    @pytest.mark.asyncio
    async def test_errors_reported_and_loop_stops(self, context, orchestrator):
        """Tick errors go to the error callback; too many stop the loop."""
        errors = []
        runner = ScheduledContactRunner(context, orchestrator, on_error=errors.append)
        runner.MAX_CONSECUTIVE_ERRORS = 1
        context.quiet_hours = QuietHours(start="00:00", end="00:00")
        orchestrator.run_scheduled_contacts = AsyncMock(side_effect=RuntimeError("store offline"))

        await asyncio.wait_for(runner.run(), timeout=1)

        assert len(errors) == 1
        assert str(errors[0]) == "store offline"
        assert not runner.running

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, runner):
        """Cancelling the task stops the loop."""
        runner.POLL_INTERVAL = 30
        task = asyncio.create_task(runner.run())
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
