"""
Provider Selection Helpers
Shared by the SMS, calendar and language factories.
"""
import logging

logger = logging.getLogger(__name__)


class ProviderNotConfiguredError(Exception):
    """Raised when a configured provider lacks credentials in production."""

    def __init__(self, kind: str, provider: str, message: str = None):
        self.kind = kind
        self.provider = provider
        self.message = message or f"{kind} provider '{provider}' is not configured"
        super().__init__(self.message)


def fallback_or_raise(kind: str, provider: str, fallback: str, production: bool) -> str:
    """
    Decide what to do when `provider` is selected but unusable.

    Returns the fallback provider name outside production and raises
    ProviderNotConfiguredError in production.
    """
    if production:
        raise ProviderNotConfiguredError(kind, provider)

    logger.warning(
        f"{kind} provider '{provider}' is not configured, falling back to '{fallback}'"
    )
    return fallback
