"""
Runtime Context
Composition root: every collaborator is built once here and handed to the
orchestrator, runner and runtime explicitly.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from agent_runtime.core.config import Settings
from agent_runtime.domain.interfaces.calendar_provider import CalendarProvider
from agent_runtime.domain.interfaces.language_provider import LanguageProvider
from agent_runtime.domain.interfaces.lead_repository import LeadRepository
from agent_runtime.domain.interfaces.sms_provider import SMSProvider
from agent_runtime.domain.services.lead_state_machine import LeadStateMachine
from agent_runtime.domain.services.quiet_hours import QuietHours
from agent_runtime.domain.services.sms_template_manager import SMSTemplateManager
from agent_runtime.infrastructure.calendar.factory import select_calendar_provider
from agent_runtime.infrastructure.llm.factory import select_language_provider
from agent_runtime.infrastructure.llm.rule_based import RuleBasedLanguageProvider
from agent_runtime.infrastructure.sms.factory import select_sms_provider
from agent_runtime.infrastructure.storage import create_lead_repository
from agent_runtime.services.appointment_scheduler import AppointmentScheduler
from agent_runtime.services.event_bus import EventBus
from agent_runtime.services.language_classifier import LanguageClassifier
from agent_runtime.services.lead_store import LeadStore
from agent_runtime.services.message_channel import MessageChannel

logger = logging.getLogger(__name__)


@dataclass
class RuntimeContext:
    """Collaborators shared by one runtime instance."""
    settings: Settings
    store: LeadStore
    state_machine: LeadStateMachine
    scheduler: AppointmentScheduler
    channel: MessageChannel
    classifier: LanguageClassifier
    templates: SMSTemplateManager
    events: EventBus
    quiet_hours: QuietHours
    sms_provider: Optional[SMSProvider] = field(default=None, repr=False)
    calendar_provider: Optional[CalendarProvider] = field(default=None, repr=False)
    language_provider: Optional[LanguageProvider] = field(default=None, repr=False)


def build_context(
    settings: Optional[Settings] = None,
    sms_provider: Optional[SMSProvider] = None,
    calendar_provider: Optional[CalendarProvider] = None,
    language_provider: Optional[LanguageProvider] = None,
    repository: Optional[LeadRepository] = None
) -> RuntimeContext:
    """
    Build every collaborator for a runtime.

    Providers not passed in are chosen from settings by the factories;
    explicit ones (tests, embedding applications) win.

    Raises:
        ProviderNotConfiguredError: In production, when a configured real
            provider lacks credentials
    """
    settings = settings or Settings()
    timeout = settings.workflow.collaborator_timeout_seconds

    sms_provider = sms_provider or select_sms_provider(settings)
    calendar_provider = calendar_provider or select_calendar_provider(settings)
    language_provider = language_provider or select_language_provider(settings)
    repository = repository or create_lead_repository(settings.database_url)

    fallback = (
        language_provider
        if isinstance(language_provider, RuleBasedLanguageProvider)
        else RuleBasedLanguageProvider(company_name=settings.sms.company_name)
    )

    context = RuntimeContext(
        settings=settings,
        store=LeadStore(repository, default_max_contact_attempts=settings.contact.max_attempts_per_lead),
        state_machine=LeadStateMachine(),
        scheduler=AppointmentScheduler(
            calendar_provider,
            timezone=settings.calendar.timezone,
            horizon_days=settings.calendar.horizon_days,
        ),
        channel=MessageChannel(sms_provider, from_number=settings.sms.from_number, timeout_seconds=timeout),
        classifier=LanguageClassifier(language_provider, fallback=fallback, timeout_seconds=timeout),
        templates=SMSTemplateManager(company_name=settings.sms.company_name),
        events=EventBus(),
        quiet_hours=QuietHours(
            start=settings.contact.quiet_hours_start,
            end=settings.contact.quiet_hours_end,
            timezone=settings.contact.timezone,
        ),
        sms_provider=sms_provider,
        calendar_provider=calendar_provider,
        language_provider=language_provider,
    )

    logger.info(
        f"Runtime context built (env={settings.environment}, sms={sms_provider.provider_name}, "
        f"language={language_provider.name}, calendar={calendar_provider.provider_name})"
    )
    return context
