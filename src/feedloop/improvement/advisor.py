"""Context-aware support prompts informed by past failures."""

from __future__ import annotations

from ..errors import ProviderUnavailable, StorageUnavailable
from ..logging_config import get_logger
from ..providers.client import CompletionClient
from .ledger import ImprovementLedger
from .prompts import (
    CATEGORIZE_SYSTEM_PROMPT,
    CAUTION_LINE,
    PREDICT_CATEGORY_PROMPT,
    SUPPORT_PROMPT,
)

logger = get_logger(__name__)


def build_support_prompt(message: str, context: str | None = None, category: str | None = None) -> str:
    caution = CAUTION_LINE.format(category=category) if category else ""
    context_line = f"Context: {context}\n" if context else ""
    return SUPPORT_PROMPT.format(caution=caution, message=message, context=context_line)


class PromptAdvisor:
    """Adds a caution line for the failure category a message is most prone to."""

    def __init__(
        self,
        ledger: ImprovementLedger,
        client: CompletionClient | None = None,
        top_n: int = 5,
    ):
        self.ledger = ledger
        self.client = client
        self.top_n = top_n

    def predict_failure_category(self, message: str) -> str | None:
        """Most likely past failure category for this message, or None."""
        if self.client is None:
            return None
        try:
            categories = [name for name, _ in self.ledger.top_categories(self.top_n)]
        except StorageUnavailable as e:
            logger.warning(f"Cannot read failure categories: {e}")
            return None
        if not categories:
            return None

        try:
            answer = self.client.complete(
                CATEGORIZE_SYSTEM_PROMPT,
                PREDICT_CATEGORY_PROMPT.format(message=message, categories=", ".join(categories)),
                temperature=0.2,
                max_output_tokens=20,
            )
        except ProviderUnavailable as e:
            logger.warning(f"Failure category prediction failed: {e}")
            return None

        answer = answer.strip().strip("\"'.").lower()
        if answer == "none" or answer not in categories:
            return None
        return answer

    def build_prompt(self, message: str, context: str | None = None) -> str:
        return build_support_prompt(message, context, self.predict_failure_category(message))
