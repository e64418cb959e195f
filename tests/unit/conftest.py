"""
Shared fixtures for runtime unit tests
"""
from datetime import datetime, timezone

import pytest

from agent_runtime.core.config import Settings
from agent_runtime.core.context import build_context
from agent_runtime.infrastructure.calendar.in_memory import InMemoryCalendarProvider
from agent_runtime.infrastructure.llm.rule_based import RuleBasedLanguageProvider
from agent_runtime.infrastructure.sms.mock import MockSMSProvider
from agent_runtime.infrastructure.storage.memory import InMemoryLeadRepository
from agent_runtime.services.workflow_orchestrator import WorkflowOrchestrator

# Wednesday, outside the default 21:00-09:00 New York quiet hours
FIXED_NOW = datetime(2026, 3, 4, 17, 0, tzinfo=timezone.utc)


def lead_params(**overrides):
    params = {
        "first_name": "Maria",
        "last_name": "Lopez",
        "phone": "+15551234567",
        "source": "web_form",
        "consent_verified": True,
        "consent_method": "form",
    }
    params.update(overrides)
    return params


@pytest.fixture
def settings():
    return Settings(environment="test")


@pytest.fixture
def sms_provider():
    return MockSMSProvider()


@pytest.fixture
def calendar_provider():
    return InMemoryCalendarProvider(prebooked_ratio=0.0)


@pytest.fixture
def context(settings, sms_provider, calendar_provider):
    return build_context(
        settings,
        sms_provider=sms_provider,
        calendar_provider=calendar_provider,
        language_provider=RuleBasedLanguageProvider(),
        repository=InMemoryLeadRepository(),
    )


@pytest.fixture
def orchestrator(context):
    return WorkflowOrchestrator(context)
