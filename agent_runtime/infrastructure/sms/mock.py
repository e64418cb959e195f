"""
Mock SMS Provider
In-process provider that records sends instead of delivering them.
"""
import asyncio
import logging
import uuid
from typing import Optional, Dict, Any, List

from agent_runtime.domain.interfaces.sms_provider import SMSProvider, SMSResult
from agent_runtime.domain.models.lead import utcnow

logger = logging.getLogger(__name__)


class MockSMSProvider(SMSProvider):
    """
    SMS provider for development and tests.

    Every send is appended to `sent_messages`. Failures can be scripted
    with `fail_next()` or a `fail_numbers` set; `latency` simulates a slow
    network round trip.
    """

    def __init__(
        self,
        from_number: str = "+1234567890",
        latency: float = 0.0,
        fail_numbers: Optional[set] = None
    ):
        self._default_from = from_number
        self.latency = latency
        self.fail_numbers = set(fail_numbers or ())
        self.sent_messages: List[Dict[str, Any]] = []
        self._scripted_failures: List[str] = []
        self._statuses: Dict[str, str] = {}

    @property
    def provider_name(self) -> str:
        return "mock"

    def is_configured(self) -> bool:
        return True

    def fail_next(self, error: str = "Simulated provider failure", times: int = 1) -> None:
        """Make the next `times` sends fail with `error`."""
        self._scripted_failures.extend([error] * times)

    async def send_sms(
        self,
        to_number: str,
        message: str,
        from_number: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SMSResult:
        to_number = self._normalize_number(to_number)
        from_number = from_number or self._default_from

        if self.latency:
            await asyncio.sleep(self.latency)

        error = None
        if self._scripted_failures:
            error = self._scripted_failures.pop(0)
        elif to_number in self.fail_numbers:
            error = "Undeliverable number"

        if error:
            logger.info(f"Mock SMS to {to_number[:6]}... failed: {error}")
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error=error,
                metadata=metadata
            )

        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        sent_at = utcnow()
        self.sent_messages.append({
            "message_id": message_id,
            "to": to_number,
            "from": from_number,
            "body": message,
            "sent_at": sent_at,
        })
        self._statuses[message_id] = "delivered"

        logger.info(f"Mock SMS sent to {to_number[:6]}...: {message_id}")
        return SMSResult(
            success=True,
            message_id=message_id,
            provider=self.provider_name,
            to_number=to_number,
            sent_at=sent_at,
            cost=0.0,
            metadata=metadata
        )

    async def get_delivery_status(self, message_id: str) -> Optional[str]:
        return self._statuses.get(message_id)
