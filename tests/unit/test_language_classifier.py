"""
Unit Tests for the Language Classifier and its providers
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_runtime.domain.models.classification import DraftContext, DraftPurpose, MessageIntent
from agent_runtime.infrastructure.llm.groq import GroqLanguageProvider
from agent_runtime.infrastructure.llm.rule_based import (
    RuleBasedLanguageProvider,
    extract_info,
    is_opt_out_message,
)
from agent_runtime.services.language_classifier import LanguageClassifier


class TestRuleBasedClassification:
    """Keyword rules of the rule-based provider."""

    @pytest.mark.parametrize("text", ["STOP", "stop", "Unsubscribe me", "please stop texting", "Cancel", "opt out"])
    def test_stop_phrases(self, text):
        """Opt-out phrases are detected case-insensitively."""
        result = RuleBasedLanguageProvider().classify_sync(text)

        assert result.intent == MessageIntent.STOP
        assert result.confidence >= 0.95
        assert is_opt_out_message(text)

    @pytest.mark.parametrize("text", ["Yes", "yes!", "Sure", "YEAH"])
    def test_short_affirmatives(self, text):
        """Short affirmatives read as interest."""
        assert RuleBasedLanguageProvider().classify_sync(text).intent == MessageIntent.INTERESTED

    @pytest.mark.parametrize("text", ["No", "not interested", "Not now"])
    def test_short_negatives(self, text):
        """Negatives without opt-out wording read as not now."""
        result = RuleBasedLanguageProvider().classify_sync(text)

        assert result.intent == MessageIntent.NOT_NOW
        assert result.extracted_info.reason == text

    @pytest.mark.parametrize("text,slot", [("1", 1), ("2", 2), ("#3", 3), ("option 5", 5)])
    def test_bare_slot_numbers(self, text, slot):
        """Bare numbers select a proposed slot."""
        result = RuleBasedLanguageProvider().classify_sync(text)

        assert result.intent == MessageIntent.CONFIRM
        assert result.preferred_slot == slot

    def test_reschedule_before_affirmative(self):
        """'reschedule' is not read as 'schedule'."""
        result = RuleBasedLanguageProvider().classify_sync("Can we reschedule?")
        assert result.intent == MessageIntent.RESCHEDULE

    def test_question(self):
        """Question marks read as questions."""
        result = RuleBasedLanguageProvider().classify_sync("How much does it cost?")
        assert result.intent == MessageIntent.QUESTION

    def test_unknown(self):
        """Unrecognized text is unknown."""
        result = RuleBasedLanguageProvider().classify_sync("the weather is lovely")
        assert result.intent == MessageIntent.UNKNOWN

    def test_stop_wins_over_other_words(self):
        """A stop phrase beats everything else in the same message."""
        result = RuleBasedLanguageProvider().classify_sync("yes but actually STOP")
        assert result.intent == MessageIntent.STOP

    def test_extract_info_day(self):
        """Days of the week are extracted."""
        info = extract_info("Tuesday afternoon works")

        assert info.preferred_day == "tuesday"
        assert info.preferred_time == "afternoon"


class TestLanguageClassifier:
    """Tests for the adapter's fallbacks."""

    @pytest.mark.asyncio
    async def test_stop_never_reaches_model(self):
        """Keyword opt-out detection runs before the model."""
        provider = MagicMock()
        provider.name = "groq"
        provider.classify = AsyncMock()
        classifier = LanguageClassifier(provider)

        result = await classifier.classify("STOP")

        assert result.intent == MessageIntent.STOP
        assert result.provider == "keyword"
        provider.classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_model_error_falls_back(self):
        """A failing model falls back to rules."""
        provider = MagicMock()
        provider.name = "groq"
        provider.classify = AsyncMock(side_effect=RuntimeError("boom"))
        classifier = LanguageClassifier(provider)

        result = await classifier.classify("Yes")

        assert result.intent == MessageIntent.INTERESTED
        assert result.provider == "rule_based"

    @pytest.mark.asyncio
    async def test_model_timeout_falls_back(self):
        """A slow model is cut off and rules answer instead."""
        async def slow(text):
            await asyncio.sleep(1)

        provider = MagicMock()
        provider.name = "groq"
        provider.classify = slow
        classifier = LanguageClassifier(provider, timeout_seconds=0.01)

        result = await classifier.classify("Yes")

        assert result.provider == "rule_based"

    @pytest.mark.asyncio
    async def test_draft_falls_back_to_template(self):
        """Draft errors fall back to the template reply."""
        provider = MagicMock()
        provider.name = "groq"
        provider.draft = AsyncMock(side_effect=RuntimeError("boom"))
        classifier = LanguageClassifier(provider)

        text = await classifier.draft(DraftContext(
            purpose=DraftPurpose.QUESTION_ANSWER,
            first_name="Ann",
            company_name="Solar Solutions",
            inbound_message="How much?",
        ))

        assert "Ann" in text
        assert "STOP" in text

    @pytest.mark.asyncio
    async def test_rule_based_provider_used_directly(self):
        """The rule-based provider needs no fallback hop."""
        classifier = LanguageClassifier(RuleBasedLanguageProvider())

        result = await classifier.classify("Sure")

        assert result.intent == MessageIntent.INTERESTED
        assert classifier.provider_name == "rule_based"


class TestGroqLanguageProvider:
    """Tests for the Groq provider without network access."""

    def test_parse_classification(self):
        """JSON replies are mapped onto MessageClassification."""
        provider = GroqLanguageProvider(api_key="test-key")
        content = json.dumps({
            "intent": "confirm",
            "confidence": 0.92,
            "extracted_info": {"preferred_slot": 2, "preferred_day": "monday"},
        })

        result = provider.parse_classification(content)

        assert result.intent == MessageIntent.CONFIRM
        assert result.confidence == 0.92
        assert result.preferred_slot == 2
        assert result.provider == "groq"

    def test_parse_unknown_intent_and_bad_confidence(self):
        """Unknown intents and bad confidences are clamped to safe values."""
        provider = GroqLanguageProvider(api_key="test-key")

        result = provider.parse_classification('{"intent": "maybe", "confidence": "high"}')

        assert result.intent == MessageIntent.UNKNOWN
        assert result.confidence == 0.5

    def test_parse_invalid_json_raises(self):
        """Non-JSON replies raise so the adapter can fall back."""
        provider = GroqLanguageProvider(api_key="test-key")

        with pytest.raises(RuntimeError, match="invalid JSON"):
            provider.parse_classification("not json")

    @pytest.mark.asyncio
    async def test_classify_uses_json_mode(self):
        """Classification requests JSON output from the model."""
        provider = GroqLanguageProvider(api_key="test-key")
        completion = MagicMock()
        completion.choices = [MagicMock()]
        completion.choices[0].message.content = '{"intent": "interested", "confidence": 0.8}'
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=completion)
        provider._client = client

        result = await provider.classify("sounds good")

        assert result.intent == MessageIntent.INTERESTED
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
