"""
SMS Provider Factory
"""
import logging
from typing import Dict, Type, Callable

from agent_runtime.core.config import Settings
from agent_runtime.domain.interfaces.sms_provider import SMSProvider
from agent_runtime.infrastructure.base import fallback_or_raise
from agent_runtime.infrastructure.sms.mock import MockSMSProvider
from agent_runtime.infrastructure.sms.vonage import VonageSMSProvider

logger = logging.getLogger(__name__)


def _build_mock(settings: Settings) -> SMSProvider:
    return MockSMSProvider(from_number=settings.sms.from_number)


def _build_vonage(settings: Settings) -> SMSProvider:
    return VonageSMSProvider(
        api_key=settings.sms.vonage_api_key,
        api_secret=settings.sms.vonage_api_secret,
        from_number=settings.sms.from_number,
    )


class SMSProviderFactory:
    """Factory for creating SMS provider instances"""

    _providers: Dict[str, Callable[[Settings], SMSProvider]] = {}

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> SMSProvider:
        """Create SMS provider instance"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown SMS provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], SMSProvider]) -> None:
        """Register a provider builder"""
        cls._providers[name] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())


SMSProviderFactory.register("mock", _build_mock)
SMSProviderFactory.register("vonage", _build_vonage)


def select_sms_provider(settings: Settings) -> SMSProvider:
    """
    Pick the SMS provider for this process.

    An unconfigured real provider falls back to the mock outside
    production and raises ProviderNotConfiguredError in production.
    """
    name = settings.sms.provider
    provider = SMSProviderFactory.create(name, settings)

    if not provider.is_configured():
        name = fallback_or_raise("SMS", name, "mock", settings.is_production)
        provider = SMSProviderFactory.create(name, settings)

    logger.info(f"Using SMS provider: {provider.provider_name}")
    return provider
