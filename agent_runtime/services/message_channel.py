"""
Message Channel
Sends and receives text messages for leads and keeps a per-lead log.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from agent_runtime.domain.interfaces.sms_provider import SMSProvider, SMSResult
from agent_runtime.domain.models.lead import (
    ContactAttempt,
    ContactChannel,
    ContactDirection,
    ContactStatus,
    Lead,
    LeadState,
    normalize_phone_number,
    utcnow,
)
from agent_runtime.domain.models.messages import MessageStatus, SendMessageResult, SMSMessage

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "TIMEOUT"


class MessageChannel:
    """
    Adapter over an SMS provider.

    Sends are refused outright for opted-out leads and leads without
    verified consent. Every send and receive, successful or not, lands in
    the message log; failures are returned, never raised.
    """

    def __init__(
        self,
        provider: SMSProvider,
        from_number: str,
        timeout_seconds: Optional[float] = None
    ):
        self._provider = provider
        self.from_number = from_number
        self.timeout_seconds = timeout_seconds
        self._messages: List[SMSMessage] = []
        self._by_lead: Dict[str, List[SMSMessage]] = {}

    @property
    def provider_name(self) -> str:
        return self._provider.provider_name

    def _log(self, message: SMSMessage) -> SMSMessage:
        self._messages.append(message)
        if message.lead_id:
            self._by_lead.setdefault(message.lead_id, []).append(message)
        return message

    def _refusal_reason(self, lead: Lead) -> Optional[str]:
        if lead.state == LeadState.OPTED_OUT:
            return "Lead has opted out"
        if not lead.consent_verified:
            return "Lead consent not verified"
        return None

    async def send_message(
        self,
        lead: Lead,
        body: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SendMessageResult:
        """
        Send a message to a lead.

        Args:
            lead: Recipient
            body: Message text
            metadata: Optional tracking metadata

        Returns:
            SendMessageResult; `attempt` is None when the send was refused
            before reaching the provider
        """
        reason = self._refusal_reason(lead)
        if reason:
            logger.warning(f"Refused SMS to lead {lead.id}: {reason}")
            message = self._log(SMSMessage(
                lead_id=lead.id,
                direction=ContactDirection.OUTBOUND,
                from_number=self.from_number,
                to_number=lead.phone,
                body=body,
                status=MessageStatus.REFUSED,
                error=reason,
                metadata=dict(metadata or {}),
            ))
            return SendMessageResult(success=False, message=message, error=reason)

        return await self._deliver(lead, body, metadata)

    async def send_opt_out_confirmation(self, lead: Lead, body: str) -> SendMessageResult:
        """
        Send the opt-out acknowledgement.

        The one outbound message allowed after a lead opts out.
        """
        return await self._deliver(lead, body, {"opt_out_confirmation": True})

    async def _deliver(
        self,
        lead: Lead,
        body: str,
        metadata: Optional[Dict[str, Any]]
    ) -> SendMessageResult:
        metadata = dict(metadata or {})
        result = await self._call_provider(lead.phone, body, metadata)

        message = self._log(SMSMessage(
            lead_id=lead.id,
            direction=ContactDirection.OUTBOUND,
            from_number=self.from_number,
            to_number=result.to_number or lead.phone,
            body=body,
            status=MessageStatus.SENT if result.success else MessageStatus.FAILED,
            provider_id=result.message_id,
            error=result.error,
            timestamp=result.sent_at or utcnow(),
            metadata=metadata,
        ))

        attempt = ContactAttempt(
            lead_id=lead.id,
            channel=ContactChannel.SMS,
            direction=ContactDirection.OUTBOUND,
            timestamp=message.timestamp,
            message=body,
            status=ContactStatus.SENT if result.success else ContactStatus.FAILED,
            provider_id=result.message_id,
            failure_reason=result.error,
            metadata={"message_id": message.id, **metadata},
        )

        if result.success:
            logger.info(f"SMS sent to lead {lead.id} via {self.provider_name}: {result.message_id}")
        else:
            logger.error(f"SMS to lead {lead.id} failed: {result.error}")

        return SendMessageResult(
            success=result.success,
            message=message,
            attempt=attempt,
            error=result.error,
        )

    async def _call_provider(self, to_number: str, body: str, metadata: Dict[str, Any]) -> SMSResult:
        """Provider call with the configured timeout; exceptions become failures."""
        try:
            call = self._provider.send_sms(
                to_number=to_number,
                message=body,
                from_number=self.from_number,
                metadata=metadata,
            )
            if self.timeout_seconds:
                return await asyncio.wait_for(call, timeout=self.timeout_seconds)
            return await call
        except asyncio.TimeoutError:
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error=f"{TIMEOUT_ERROR}: provider did not respond within {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.error(f"SMS provider raised: {e}", exc_info=True)
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error=str(e),
            )

    def process_incoming_message(
        self,
        from_number: str,
        body: str,
        provider_id: Optional[str] = None,
        lead_id: Optional[str] = None
    ) -> SMSMessage:
        """Log an inbound message and return its record."""
        message = self._log(SMSMessage(
            lead_id=lead_id,
            direction=ContactDirection.INBOUND,
            from_number=normalize_phone_number(from_number),
            to_number=self.from_number,
            body=body,
            status=MessageStatus.RECEIVED,
            provider_id=provider_id,
        ))
        logger.info(f"Inbound SMS from {message.from_number[:6]}... logged as {message.id}")
        return message

    def get_messages_for_lead(self, lead_id: str) -> List[SMSMessage]:
        return list(self._by_lead.get(lead_id, []))

    def get_all_messages(self) -> List[SMSMessage]:
        return list(self._messages)

    async def check_delivery_status(self, message_id: str) -> Optional[MessageStatus]:
        """
        Refresh the delivery status of a logged outbound message.

        Returns:
            The current status, or None for unknown message ids
        """
        message = next((m for m in self._messages if m.id == message_id), None)
        if message is None:
            return None
        if message.provider_id and message.status == MessageStatus.SENT:
            status = await self._provider.get_delivery_status(message.provider_id)
            if status == "delivered":
                message.status = MessageStatus.DELIVERED
            elif status == "failed":
                message.status = MessageStatus.FAILED
        return message.status
