"""
Rule-Based Language Provider
Keyword classifier and template drafts, used when no model is configured
and as the fallback when a model call fails.
"""
import logging
import re
from typing import Optional

from agent_runtime.domain.interfaces.language_provider import LanguageProvider
from agent_runtime.domain.models.classification import (
    DraftContext,
    DraftPurpose,
    ExtractedInfo,
    MessageClassification,
    MessageIntent,
)

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({"stop", "stopall", "unsubscribe", "cancel", "end", "quit", "optout"})
# Words that opt out wherever they appear in a message
STOP_ANYWHERE = frozenset({"stop", "stopall", "unsubscribe", "optout"})
STOP_PHRASES = ("stop texting", "stop messaging", "remove me", "opt out", "opt-out", "do not contact", "don't contact")

AFFIRMATIVE_WORDS = frozenset({"yes", "y", "yeah", "yep", "yup", "sure", "interested", "absolutely", "definitely"})
AFFIRMATIVE_PHRASES = ("tell me more", "sounds good", "i'm interested", "im interested", "i am interested", "schedule", "sign me up")

NEGATIVE_WORDS = frozenset({"no", "n", "nope", "nah"})
NEGATIVE_PHRASES = ("not interested", "not now", "not right now", "maybe later", "not a good time", "no thanks", "no thank you")

CONFIRM_WORDS = frozenset({"confirm", "confirmed", "ok", "okay", "k", "booked"})
CONFIRM_PHRASES = ("see you then", "that works", "works for me", "perfect")

RESCHEDULE_PHRASES = ("reschedule", "different time", "another time", "change", "can't make it", "cant make it", "move my appointment")

QUESTION_STARTERS = ("what", "how", "when", "where", "why", "who", "is ", "are ", "do ", "does ", "can ", "will ")

_SLOT_SELECTION = re.compile(r"^(?:option\s*|#\s*)?([1-5])[.)!]?$")
_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday", "tomorrow", "today")
_TIME_OF_DAY = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b|\b(morning|afternoon|evening)\b")


def _normalize(text: str) -> str:
    return " ".join((text or "").lower().split())


def _bare(text: str) -> str:
    """Lower-cased text without surrounding punctuation."""
    return _normalize(text).strip(" .!?,")


def _words(text: str) -> set:
    return set(re.findall(r"[a-z']+", _normalize(text)))


def is_opt_out_message(text: str) -> bool:
    """
    Keyword opt-out detector.

    Case-insensitive; matches an exact stop word, a stop phrase anywhere,
    or a strong stop word ("stop", "unsubscribe") anywhere in the message.
    """
    bare = _bare(text)
    if not bare:
        return False
    if bare.replace(" ", "") in STOP_WORDS:
        return True
    if any(phrase in bare for phrase in STOP_PHRASES):
        return True
    return bool(_words(bare) & STOP_ANYWHERE)


def extract_info(text: str) -> Optional[ExtractedInfo]:
    """Pull a preferred day and time of day out of free text."""
    normalized = _normalize(text)
    day = next((d for d in _DAYS if re.search(rf"\b{d}\b", normalized)), None)

    time_hint = None
    match = _TIME_OF_DAY.search(normalized)
    if match:
        if match.group(4):
            time_hint = match.group(4)
        else:
            minutes = match.group(2) or "00"
            time_hint = f"{match.group(1)}:{minutes} {match.group(3)}"

    if day is None and time_hint is None:
        return None
    return ExtractedInfo(preferred_day=day, preferred_time=time_hint)


class RuleBasedLanguageProvider(LanguageProvider):
    """
    Deterministic keyword classifier.

    Rule order matters: opt-out first, then bare slot numbers, then
    reschedule before affirmatives so "reschedule" never reads as
    "schedule".
    """

    def __init__(self, company_name: str = "Solar Solutions"):
        self.company_name = company_name

    @property
    def name(self) -> str:
        return "rule_based"

    async def classify(self, text: str) -> MessageClassification:
        return self.classify_sync(text)

    def classify_sync(self, text: str) -> MessageClassification:
        normalized = _normalize(text)
        bare = _bare(text)
        words = _words(text)
        extracted = extract_info(text)

        if is_opt_out_message(text):
            return self._result(MessageIntent.STOP, 0.99)

        slot = _SLOT_SELECTION.match(bare)
        if slot:
            return self._result(
                MessageIntent.CONFIRM,
                0.9,
                ExtractedInfo(preferred_slot=int(slot.group(1)))
            )

        if any(phrase in normalized for phrase in RESCHEDULE_PHRASES):
            return self._result(MessageIntent.RESCHEDULE, 0.85, extracted)

        if bare in NEGATIVE_WORDS or any(phrase in normalized for phrase in NEGATIVE_PHRASES):
            return self._result(MessageIntent.NOT_NOW, 0.85, ExtractedInfo(reason=text.strip()))

        if bare in AFFIRMATIVE_WORDS or any(phrase in normalized for phrase in AFFIRMATIVE_PHRASES):
            return self._result(MessageIntent.INTERESTED, 0.9, extracted)

        if bare in CONFIRM_WORDS or any(phrase in normalized for phrase in CONFIRM_PHRASES):
            return self._result(MessageIntent.CONFIRM, 0.85, extracted)

        if "?" in normalized or normalized.startswith(QUESTION_STARTERS):
            return self._result(MessageIntent.QUESTION, 0.8, extracted)

        # Short affirmatives embedded in a longer sentence ("yes please")
        if words & AFFIRMATIVE_WORDS and not words & NEGATIVE_WORDS:
            return self._result(MessageIntent.INTERESTED, 0.7, extracted)

        return self._result(MessageIntent.UNKNOWN, 0.5, extracted)

    def _result(
        self,
        intent: MessageIntent,
        confidence: float,
        extracted: Optional[ExtractedInfo] = None
    ) -> MessageClassification:
        return MessageClassification(
            intent=intent,
            confidence=confidence,
            extracted_info=extracted,
            provider=self.name
        )

    async def draft(self, context: DraftContext) -> str:
        name = context.first_name or "there"
        if context.purpose == DraftPurpose.QUESTION_ANSWER:
            return (
                f"Thank you for your question, {name}! A solar consultant will get back to you shortly. "
                "Reply STOP to opt out."
            )
        if context.purpose == DraftPurpose.FOLLOW_UP:
            return (
                f"Hi {name}, just checking in from {context.company_name}. "
                "Would you like to schedule a free solar consultation? Reply YES or STOP to opt out."
            )
        return (
            f"Thanks for your message, {name}! Reply YES to schedule a free solar consultation, "
            "or STOP to opt out."
        )
