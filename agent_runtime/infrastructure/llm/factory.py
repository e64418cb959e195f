"""
Language Provider Factory
"""
import logging
from typing import Callable, Dict

from agent_runtime.core.config import Settings
from agent_runtime.domain.interfaces.language_provider import LanguageProvider
from agent_runtime.infrastructure.base import fallback_or_raise
from agent_runtime.infrastructure.llm.groq import GroqLanguageProvider
from agent_runtime.infrastructure.llm.rule_based import RuleBasedLanguageProvider

logger = logging.getLogger(__name__)


class LanguageProviderFactory:
    """Factory for creating language provider instances"""

    _providers: Dict[str, Callable[[Settings], LanguageProvider]] = {}

    @classmethod
    def create(cls, provider_name: str, settings: Settings) -> LanguageProvider:
        """Create language provider instance"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown language provider: {provider_name}. Available: {available}")

        return cls._providers[provider_name](settings)

    @classmethod
    def register(cls, name: str, builder: Callable[[Settings], LanguageProvider]) -> None:
        """Register a provider builder"""
        cls._providers[name] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())


LanguageProviderFactory.register(
    "rule_based",
    lambda settings: RuleBasedLanguageProvider(company_name=settings.sms.company_name)
)
LanguageProviderFactory.register(
    "groq",
    lambda settings: GroqLanguageProvider(
        api_key=settings.language.api_key,
        model=settings.language.model,
        max_tokens=settings.language.max_tokens,
        temperature=settings.language.temperature,
        company_name=settings.sms.company_name,
    )
)


def select_language_provider(settings: Settings) -> LanguageProvider:
    """
    Pick the language provider for this process.

    A model provider without an API key falls back to the rule-based
    classifier outside production and raises in production.
    """
    name = settings.language.provider
    provider = LanguageProviderFactory.create(name, settings)

    if name != "rule_based" and not settings.language.api_key:
        name = fallback_or_raise("Language", name, "rule_based", settings.is_production)
        provider = LanguageProviderFactory.create(name, settings)

    logger.info(f"Using language provider: {provider.name}")
    return provider
