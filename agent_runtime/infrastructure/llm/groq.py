"""
Groq Language Provider
Intent classification and SMS drafting on Groq chat completions.
"""
import json
import logging
from typing import Optional

from groq import AsyncGroq

from agent_runtime.domain.interfaces.language_provider import LanguageProvider
from agent_runtime.domain.models.classification import (
    DraftContext,
    DraftPurpose,
    ExtractedInfo,
    MessageClassification,
    MessageIntent,
)

logger = logging.getLogger(__name__)

CLASSIFICATION_PROMPT = """You are a message classifier for a solar appointment scheduling system.
Classify the customer's SMS response into one of these categories:
- interested: Customer wants to learn more or schedule an appointment
- not_now: Customer is not interested at this time but not opting out
- stop: Customer wants to opt out of all messages (STOP, unsubscribe, etc.)
- question: Customer has a question that needs answering
- confirm: Customer is confirming an appointment or picking a proposed time (e.g. "2")
- reschedule: Customer wants to change an existing appointment
- unknown: Cannot determine intent

Also extract preferred day/time, the chosen option number if any, and a short reason.

Respond with JSON only:
{"intent": "...", "confidence": 0.0-1.0,
 "extracted_info": {"preferred_day": null, "preferred_time": null, "preferred_slot": null, "reason": null}}"""

DRAFT_PROMPT = """You draft SMS replies for {company_name}, a solar installation company.
- Keep messages under 160 characters when possible
- Be friendly and professional, use the customer's first name
- Never make promises about pricing
- Encourage scheduling a free consultation
- End with "Reply STOP to opt out." """


class GroqLanguageProvider(LanguageProvider):
    """
    Groq-backed classifier and drafter.

    Recommended models:
    - llama-3.1-8b-instant: fastest, good enough for intent tagging
    - llama-3.3-70b-versatile: better drafts at higher latency
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "llama-3.1-8b-instant",
        max_tokens: int = 150,
        temperature: float = 0.2,
        company_name: str = "Solar Solutions"
    ):
        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self.company_name = company_name
        self._client: Optional[AsyncGroq] = None

    @property
    def name(self) -> str:
        return "groq"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncGroq:
        if self._client is None:
            if not self._api_key:
                raise ValueError("Groq API key not configured")
            self._client = AsyncGroq(api_key=self._api_key)
        return self._client

    async def classify(self, text: str) -> MessageClassification:
        """
        Classify an inbound message with a JSON-mode completion.

        Raises:
            RuntimeError: If the request fails or the reply is not valid JSON
        """
        try:
            completion = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": CLASSIFICATION_PROMPT},
                    {"role": "user", "content": f'Classify this SMS response: "{text}"'},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise RuntimeError(f"Groq classification failed: {str(e)}")

        content = completion.choices[0].message.content or ""
        return self.parse_classification(content)

    def parse_classification(self, content: str) -> MessageClassification:
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Groq returned invalid JSON: {e}")

        try:
            intent = MessageIntent(str(parsed.get("intent", "unknown")).lower())
        except ValueError:
            intent = MessageIntent.UNKNOWN

        confidence = parsed.get("confidence", 0.5)
        try:
            confidence = min(max(float(confidence), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.5

        extracted = None
        raw_info = parsed.get("extracted_info") or parsed.get("extractedInfo")
        if isinstance(raw_info, dict):
            slot = raw_info.get("preferred_slot")
            extracted = ExtractedInfo(
                preferred_day=raw_info.get("preferred_day"),
                preferred_time=raw_info.get("preferred_time"),
                preferred_slot=int(slot) if isinstance(slot, (int, str)) and str(slot).isdigit() and int(slot) > 0 else None,
                reason=raw_info.get("reason"),
            )

        return MessageClassification(
            intent=intent,
            confidence=confidence,
            extracted_info=extracted,
            provider=self.name,
        )

    async def draft(self, context: DraftContext) -> str:
        if context.purpose == DraftPurpose.QUESTION_ANSWER:
            task = f'Customer "{context.first_name}" asks: "{context.inbound_message}". Answer briefly.'
        elif context.purpose == DraftPurpose.FOLLOW_UP:
            task = f'Draft a short follow-up to {context.first_name} offering a free consultation.'
        else:
            task = (
                f'Customer "{context.first_name}" wrote: "{context.inbound_message}". '
                "Draft a short helpful reply inviting them to reply YES to schedule."
            )

        try:
            completion = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": DRAFT_PROMPT.format(company_name=context.company_name)},
                    {"role": "user", "content": task},
                ],
                temperature=0.7,
                max_tokens=self._max_tokens,
            )
        except Exception as e:
            raise RuntimeError(f"Groq draft failed: {str(e)}")

        text = (completion.choices[0].message.content or "").strip()
        if not text:
            raise RuntimeError("Groq returned an empty draft")
        return text

    async def cleanup(self) -> None:
        """Release resources"""
        if self._client:
            await self._client.close()
            self._client = None

    def __repr__(self) -> str:
        return f"GroqLanguageProvider(model={self._model}, temp={self._temperature})"
