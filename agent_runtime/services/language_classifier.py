"""
Language Classifier
The only consumer of a language model. Returns information, never
touches lead state.
"""
import asyncio
import logging
from typing import Optional

from agent_runtime.domain.interfaces.language_provider import LanguageProvider
from agent_runtime.domain.models.classification import (
    DraftContext,
    MessageClassification,
    MessageIntent,
)
from agent_runtime.infrastructure.llm.rule_based import RuleBasedLanguageProvider, is_opt_out_message

logger = logging.getLogger(__name__)


class LanguageClassifier:
    """
    Adapter over a language provider.

    - Keyword opt-out detection runs before any model call, so a "STOP"
      is never lost to a slow or wrong model.
    - Model errors and timeouts fall back to the rule-based provider.
    """

    def __init__(
        self,
        provider: LanguageProvider,
        fallback: Optional[RuleBasedLanguageProvider] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._provider = provider
        self._fallback = fallback or RuleBasedLanguageProvider()
        self.timeout_seconds = timeout_seconds

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def _call(self, coro):
        if self.timeout_seconds:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        return await coro

    async def classify(self, text: str) -> MessageClassification:
        """
        Classify an inbound message.

        Args:
            text: Raw message body

        Returns:
            MessageClassification (never raises)
        """
        if is_opt_out_message(text):
            return MessageClassification(intent=MessageIntent.STOP, confidence=0.99, provider="keyword")

        if self._provider is self._fallback:
            return await self._fallback.classify(text)

        try:
            return await self._call(self._provider.classify(text))
        except asyncio.TimeoutError:
            logger.warning(f"{self.provider_name} classification timed out, using rule-based fallback")
        except Exception as e:
            logger.error(f"{self.provider_name} classification failed: {e}, using rule-based fallback")

        return await self._fallback.classify(text)

    async def draft(self, context: DraftContext) -> str:
        """Draft outbound text; falls back to a template reply on error."""
        if self._provider is not self._fallback:
            try:
                return await self._call(self._provider.draft(context))
            except asyncio.TimeoutError:
                logger.warning(f"{self.provider_name} draft timed out, using template reply")
            except Exception as e:
                logger.error(f"{self.provider_name} draft failed: {e}, using template reply")

        return await self._fallback.draft(context)

    async def cleanup(self) -> None:
        await self._provider.cleanup()
