"""Single-shot rewrite of a failing reply."""

from __future__ import annotations

from ..errors import ProviderUnavailable
from ..logging_config import get_logger
from ..providers.client import CompletionClient
from ..providers.throttle import Throttle
from .prompts import (
    CORRECTION_PROMPT,
    CORRECTION_SYSTEM_PROMPT,
    NO_REFERENCE_BLOCK,
    REFERENCE_BLOCK,
)

logger = get_logger(__name__)

UNABLE_TO_GENERATE = "Unable to generate improved reply"


def is_unable_to_generate(text: str) -> bool:
    return text.strip() == UNABLE_TO_GENERATE


class CorrectionGenerator:
    """Asks the completion capability for a paraphrased, fixed reply."""

    def __init__(
        self,
        client: CompletionClient,
        throttle: Throttle | None = None,
        temperature: float = 0.3,
        max_output_tokens: int = 1024,
    ):
        self.client = client
        self.throttle = throttle
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def build_prompt(
        self,
        prompt: str,
        bad_reply: str,
        good_reply: str | None,
        explanation: str,
    ) -> str:
        if good_reply and good_reply.strip():
            reference_block = REFERENCE_BLOCK.format(good_reply=good_reply)
        else:
            reference_block = NO_REFERENCE_BLOCK
        return CORRECTION_PROMPT.format(
            prompt=prompt,
            bad_reply=bad_reply,
            reference_block=reference_block,
            explanation=explanation,
        )

    def generate_correction(
        self,
        prompt: str,
        bad_reply: str,
        good_reply: str | None,
        explanation: str,
    ) -> str:
        """Rewrite bad_reply toward good_reply's quality without copying it.

        Returns:
            The corrected reply, or UNABLE_TO_GENERATE when the provider fails
        """
        if self.throttle:
            self.throttle.wait()

        try:
            corrected = self.client.complete(
                CORRECTION_SYSTEM_PROMPT,
                self.build_prompt(prompt, bad_reply, good_reply, explanation),
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        except ProviderUnavailable as e:
            logger.warning(f"Correction generation failed: {e}")
            return UNABLE_TO_GENERATE

        corrected = _strip_quotes(corrected)
        if good_reply and _normalize(corrected) == _normalize(good_reply):
            logger.info("Correction copied the agent reply verbatim, asking for a paraphrase")
            corrected = self._retry_paraphrase(prompt, bad_reply, good_reply, explanation, corrected)
        return corrected

    def _retry_paraphrase(self, prompt, bad_reply, good_reply, explanation, copied):
        if self.throttle:
            self.throttle.wait()
        user_prompt = (
            self.build_prompt(prompt, bad_reply, good_reply, explanation)
            + "\n\nYour previous answer repeated the agent reply word for word. "
            "Write it in your own words."
        )
        try:
            retried = _strip_quotes(
                self.client.complete(
                    CORRECTION_SYSTEM_PROMPT,
                    user_prompt,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                )
            )
        except ProviderUnavailable as e:
            logger.warning(f"Paraphrase retry failed: {e}")
            return copied
        if _normalize(retried) == _normalize(good_reply):
            logger.warning("Correction still matches the agent reply after retry")
        return retried


def _strip_quotes(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        return text[1:-1].strip()
    return text


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())
