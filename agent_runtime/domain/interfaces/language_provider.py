"""
Language Provider Interface
Abstract base class for natural-language collaborators.
"""
from abc import ABC, abstractmethod

from agent_runtime.domain.models.classification import DraftContext, MessageClassification


class LanguageProvider(ABC):
    """
    Maps free text to an intent and drafts outbound text.

    Implementations return information only and must not touch lead state.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass

    @abstractmethod
    async def classify(self, text: str) -> MessageClassification:
        """
        Classify an inbound message.

        Args:
            text: Raw message body

        Returns:
            MessageClassification with intent, confidence and extracted fields
        """
        pass

    @abstractmethod
    async def draft(self, context: DraftContext) -> str:
        """Draft an outbound message for the given context."""
        pass

    async def cleanup(self) -> None:
        """Release resources"""
        pass
