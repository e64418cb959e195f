"""
Vonage SMS Provider
SMS implementation using the Vonage SMS API (SDK v4.x).
"""
import asyncio
import logging
from typing import Optional, Dict, Any

from vonage import Vonage, Auth
from vonage_sms import SmsMessage

from agent_runtime.domain.interfaces.sms_provider import SMSProvider, SMSResult
from agent_runtime.domain.models.lead import utcnow

logger = logging.getLogger(__name__)


class VonageSMSProvider(SMSProvider):
    """
    Vonage SMS provider.

    The SDK client is synchronous, so sends run in a worker thread to keep
    the event loop free.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        from_number: Optional[str] = None
    ):
        self._api_key = api_key
        self._api_secret = api_secret
        self._default_from = from_number
        self._sms = None

    @property
    def provider_name(self) -> str:
        return "vonage"

    def is_configured(self) -> bool:
        """Check if Vonage SMS credentials are configured."""
        return bool(self._api_key and self._api_secret)

    def _ensure_initialized(self) -> None:
        if self._sms is not None:
            return

        auth = Auth(api_key=self._api_key, api_secret=self._api_secret)
        self._sms = Vonage(auth=auth).sms
        logger.info("VonageSMSProvider initialized (SDK v4.x)")

    async def send_sms(
        self,
        to_number: str,
        message: str,
        from_number: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SMSResult:
        """
        Send an SMS via Vonage SMS API.

        Args:
            to_number: Destination phone number
            message: SMS content
            from_number: Sender ID (optional, uses default)
            metadata: Optional tracking metadata

        Returns:
            SMSResult with send status
        """
        to_number = self._normalize_number(to_number)
        from_number = from_number or self._default_from

        if not self.is_configured():
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error="Vonage SMS not configured - missing API key or secret"
            )

        if not from_number:
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error="No from_number configured"
            )

        logger.info(f"Sending SMS via Vonage: {from_number} -> {to_number[:6]}...")

        try:
            self._ensure_initialized()
            sms_message = SmsMessage(
                to=to_number.lstrip("+"),
                from_=from_number,
                text=message
            )
            response = await asyncio.to_thread(self._sms.send, sms_message)
        except Exception as e:
            logger.error(f"Exception sending SMS via Vonage: {e}", exc_info=True)
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error=str(e),
                metadata=metadata
            )

        if not getattr(response, "messages", None):
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error="Unexpected response format from Vonage",
                metadata=metadata
            )

        msg = response.messages[0]
        if str(getattr(msg, "status", "")) != "0":
            error_text = getattr(msg, "error_text", None) or "Unknown error"
            logger.error(f"Vonage SMS failed: {error_text}")
            # Vonage status 1 is throttling
            if str(getattr(msg, "status", "")) == "1":
                error_text = f"RATE_LIMIT: {error_text}"
            return SMSResult(
                success=False,
                provider=self.provider_name,
                to_number=to_number,
                error=error_text,
                metadata=metadata
            )

        message_id = getattr(msg, "message_id", None) or "unknown"
        cost = float(getattr(msg, "message_price", 0) or 0)
        logger.info(f"SMS sent successfully: {message_id}")

        return SMSResult(
            success=True,
            message_id=message_id,
            provider=self.provider_name,
            to_number=to_number,
            sent_at=utcnow(),
            cost=cost,
            metadata=metadata
        )
