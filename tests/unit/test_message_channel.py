"""
Unit Tests for the Message Channel
"""
from unittest.mock import AsyncMock

import pytest

from agent_runtime.domain.interfaces.sms_provider import SMSResult
from agent_runtime.domain.models.lead import ContactStatus, Lead, LeadState
from agent_runtime.domain.models.messages import MessageStatus
from agent_runtime.infrastructure.sms.mock import MockSMSProvider
from agent_runtime.services.message_channel import TIMEOUT_ERROR, MessageChannel


def make_lead(state: LeadState = LeadState.AWAITING_RESPONSE, consent: bool = True) -> Lead:
    return Lead(
        first_name="Ann",
        last_name="Lee",
        phone="+15557654321",
        state=state,
        consent_verified=consent,
    )


class TestSendMessage:
    """Tests for outbound sends."""

    @pytest.mark.asyncio
    async def test_send_success(self):
        """A successful send returns an attempt and logs the message."""
        provider = MockSMSProvider()
        channel = MessageChannel(provider, from_number="+15550000000")
        lead = make_lead()

        result = await channel.send_message(lead, "Hello Ann")

        assert result.success
        assert result.attempt.status == ContactStatus.SENT
        assert result.attempt.provider_id.startswith("mock-")
        assert result.message.status == MessageStatus.SENT
        assert len(provider.sent_messages) == 1
        assert channel.get_messages_for_lead(lead.id) == [result.message]

    @pytest.mark.asyncio
    async def test_opted_out_lead_refused(self):
        """Opted-out leads never reach the provider."""
        provider = MockSMSProvider()
        channel = MessageChannel(provider, from_number="+15550000000")
        lead = make_lead(LeadState.OPTED_OUT)

        result = await channel.send_message(lead, "Hello again")

        assert not result.success
        assert result.attempt is None
        assert result.message.status == MessageStatus.REFUSED
        assert provider.sent_messages == []

    @pytest.mark.asyncio
    async def test_unverified_consent_refused(self):
        """Sends without verified consent are refused."""
        provider = MockSMSProvider()
        channel = MessageChannel(provider, from_number="+15550000000")

        result = await channel.send_message(make_lead(consent=False), "Hello")

        assert not result.success
        assert "consent" in result.error.lower()
        assert provider.sent_messages == []

    @pytest.mark.asyncio
    async def test_provider_failure_recorded(self):
        """A failed provider send is recorded, not raised."""
        provider = MockSMSProvider()
        provider.fail_next("RATE_LIMIT: throttled")
        channel = MessageChannel(provider, from_number="+15550000000")

        result = await channel.send_message(make_lead(), "Hello")

        assert not result.success
        assert result.attempt.status == ContactStatus.FAILED
        assert result.attempt.failure_reason == "RATE_LIMIT: throttled"
        assert result.message.status == MessageStatus.FAILED

    @pytest.mark.asyncio
    async def test_provider_timeout(self):
        """A slow provider is cut off and tagged TIMEOUT."""
        provider = MockSMSProvider(latency=0.5)
        channel = MessageChannel(provider, from_number="+15550000000", timeout_seconds=0.01)

        result = await channel.send_message(make_lead(), "Hello")

        assert not result.success
        assert result.error.startswith(TIMEOUT_ERROR)

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_failure(self):
        """Exceptions from the provider are converted into failures."""
        provider = MockSMSProvider()
        provider.send_sms = AsyncMock(side_effect=ConnectionError("network down"))
        channel = MessageChannel(provider, from_number="+15550000000")

        result = await channel.send_message(make_lead(), "Hello")

        assert not result.success
        assert "network down" in result.error

    @pytest.mark.asyncio
    async def test_opt_out_confirmation_allowed_after_opt_out(self):
        """The opt-out acknowledgement is the one send allowed after opt-out."""
        provider = MockSMSProvider()
        channel = MessageChannel(provider, from_number="+15550000000")

        result = await channel.send_opt_out_confirmation(make_lead(LeadState.OPTED_OUT), "Unsubscribed")

        assert result.success
        assert result.attempt.metadata["opt_out_confirmation"] is True


class TestIncomingAndStatus:
    """Tests for inbound logging and delivery status."""

    def test_process_incoming_message(self):
        """Inbound messages are logged with a normalized sender."""
        channel = MessageChannel(MockSMSProvider(), from_number="+15550000000")

        message = channel.process_incoming_message("1 555 765 4321", "YES", "in-1", lead_id="lead-1")

        assert message.from_number == "+15557654321"
        assert message.status == MessageStatus.RECEIVED
        assert channel.get_messages_for_lead("lead-1") == [message]
        assert channel.get_all_messages() == [message]

    @pytest.mark.asyncio
    async def test_check_delivery_status(self):
        """Delivery status is refreshed from the provider."""
        provider = MockSMSProvider()
        channel = MessageChannel(provider, from_number="+15550000000")
        result = await channel.send_message(make_lead(), "Hello")

        status = await channel.check_delivery_status(result.message.id)

        assert status == MessageStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_check_delivery_status_unknown(self):
        """Unknown message ids return None."""
        channel = MessageChannel(MockSMSProvider(), from_number="+15550000000")
        assert await channel.check_delivery_status("missing") is None

    @pytest.mark.asyncio
    async def test_provider_receives_sender_number(self):
        """The configured sender number is passed to the provider."""
        provider = MockSMSProvider()
        provider.send_sms = AsyncMock(return_value=SMSResult(
            success=True, provider="mock", message_id="m-1", to_number="+15557654321"
        ))
        channel = MessageChannel(provider, from_number="+15550000000")

        await channel.send_message(make_lead(), "Hello")

        assert provider.send_sms.await_args.kwargs["from_number"] == "+15550000000"
