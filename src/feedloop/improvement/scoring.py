"""Score-gain estimation and failure categorization.

Both judgments go through a pluggable ReplyJudge strategy:

- LLMJudge asks the completion capability (non-reproducible across
  provider versions).
- HeuristicJudge is deterministic and offline, for tests and dry runs.

ImprovementScorer applies the deterministic clamping and defaults on top of
whichever judge is plugged in.
"""

from __future__ import annotations

import json
import math
import re
from abc import ABC, abstractmethod
from enum import Enum

from ..errors import MalformedJudgeOutput, ProviderUnavailable
from ..logging_config import get_logger
from ..providers.client import CompletionClient
from ..providers.throttle import Throttle
from .prompts import (
    CATEGORIZE_PROMPT,
    CATEGORIZE_SYSTEM_PROMPT,
    JUDGE_PROMPT,
    JUDGE_SYSTEM_PROMPT,
)

logger = get_logger(__name__)

MIN_RATING = 1.0
MAX_RATING = 10.0
DEFAULT_SCORE_GAIN = 1.0


class FailureCategory(str, Enum):
    """Closed failure taxonomy."""

    EMPATHY = "empathy"
    SPECIFICITY = "specificity"
    ACCURACY = "accuracy"
    TONE = "tone"
    COMPLETENESS = "completeness"
    CONTEXT = "context"
    GENERAL = "general"


JUDGED_CATEGORIES = [c.value for c in FailureCategory if c is not FailureCategory.GENERAL]

CATEGORY_KEYWORDS: dict[FailureCategory, tuple[str, ...]] = {
    FailureCategory.EMPATHY: (
        "empathy", "empathetic", "sympathy", "compassion", "uncaring", "cold",
        "dismissive", "apolog", "frustrat", "feelings",
    ),
    FailureCategory.SPECIFICITY: (
        "generic", "vague", "specific", "boilerplate", "template", "canned", "detail",
    ),
    FailureCategory.ACCURACY: (
        "wrong", "incorrect", "inaccurate", "false", "mistake", "error", "accuracy",
        "outdated", "misinform",
    ),
    FailureCategory.TONE: (
        "tone", "rude", "robotic", "condescending", "harsh", "too formal",
        "too casual", "sarcastic", "unprofessional",
    ),
    FailureCategory.COMPLETENESS: (
        "incomplete", "missing", "partial", "left out", "did not answer",
        "didn't answer", "only answered", "complete",
    ),
    FailureCategory.CONTEXT: (
        "context", "previous", "history", "earlier", "ignored", "misunderstood",
        "already told", "order number",
    ),
}

_EMPATHY_RE = re.compile(r"\b(sorry|understand|apologi[sz]e|appreciate|frustrat)", re.I)
_ACTION_RE = re.compile(r"\b(will|can|let me|i'll|we'll|here's how|follow these)\b", re.I)
_SHOUTING_RE = re.compile(r"\?{2,}|!{2,}")


def normalize_category(raw: str | None) -> str:
    """Map free judge output onto the taxonomy; unknown output becomes "general"."""
    if not raw:
        return FailureCategory.GENERAL.value
    cleaned = raw.strip().strip("\"'`.").lower()
    try:
        return FailureCategory(cleaned).value
    except ValueError:
        pass
    for word in re.findall(r"[a-z]+", cleaned):
        if word in JUDGED_CATEGORIES:
            return word
    return FailureCategory.GENERAL.value


def parse_judge_scores(text: str) -> tuple[float, float]:
    """Extract (original_score, improved_score) from a judge response.

    Raises:
        MalformedJudgeOutput: if no JSON object with two numeric scores is found
    """
    match = re.search(r"\{.*\}", text or "", re.S)
    if not match:
        raise MalformedJudgeOutput(f"No JSON object in judge output: {text!r}")
    try:
        data = json.loads(match.group(0))
        original = float(data["original_score"])
        improved = float(data["improved_score"])
    except (ValueError, TypeError, KeyError) as e:
        raise MalformedJudgeOutput(f"Unparseable judge output: {text!r}") from e
    if math.isnan(original) or math.isnan(improved):
        raise MalformedJudgeOutput(f"Judge returned NaN scores: {text!r}")
    return original, improved


def _clamp_rating(value: float) -> float:
    return max(MIN_RATING, min(MAX_RATING, value))


class ReplyJudge(ABC):
    """Strategy that rates replies and labels failure explanations."""

    @abstractmethod
    def rate(self, original: str, corrected: str) -> tuple[float, float]:
        """Rate both replies on the 1-10 scale.

        May raise MalformedJudgeOutput or ProviderUnavailable.
        """

    @abstractmethod
    def label(self, explanation: str) -> str:
        """Return a raw category label for a failure explanation."""


class LLMJudge(ReplyJudge):
    """Judge backed by the completion capability."""

    def __init__(
        self,
        client: CompletionClient,
        throttle: Throttle | None = None,
        temperature: float = 0.1,
        max_output_tokens: int = 200,
    ):
        self.client = client
        self.throttle = throttle
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def _complete(self, system: str, prompt: str) -> str:
        if self.throttle:
            self.throttle.wait()
        return self.client.complete(
            system,
            prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    def rate(self, original: str, corrected: str) -> tuple[float, float]:
        text = self._complete(
            JUDGE_SYSTEM_PROMPT,
            JUDGE_PROMPT.format(original=original, corrected=corrected),
        )
        return parse_judge_scores(text)

    def label(self, explanation: str) -> str:
        return self._complete(
            CATEGORIZE_SYSTEM_PROMPT,
            CATEGORIZE_PROMPT.format(
                explanation=explanation,
                categories=", ".join(JUDGED_CATEGORIES),
            ),
        )


class HeuristicJudge(ReplyJudge):
    """Deterministic offline judge."""

    def rate(self, original: str, corrected: str) -> tuple[float, float]:
        return self._rate_one(original), self._rate_one(corrected)

    @staticmethod
    def _rate_one(reply: str) -> float:
        text = reply.strip()
        score = 3.0
        if 40 <= len(text) <= 600:
            score += 2
        if _EMPATHY_RE.search(text):
            score += 2
        if _ACTION_RE.search(text):
            score += 2
        if len([s for s in re.split(r"[.!?]+", text) if s.strip()]) > 1:
            score += 1
        if _SHOUTING_RE.search(text):
            score -= 2
        return _clamp_rating(score)

    def label(self, explanation: str) -> str:
        text = explanation.lower()
        best = FailureCategory.GENERAL
        best_hits = 0
        # Dict order is the tie-break
        for category, keywords in CATEGORY_KEYWORDS.items():
            hits = sum(1 for keyword in keywords if keyword in text)
            if hits > best_hits:
                best, best_hits = category, hits
        return best.value


class ImprovementScorer:
    """Estimates score gain and assigns a failure category."""

    def __init__(self, judge: ReplyJudge):
        self.judge = judge

    def estimate_score_gain(self, original: str, corrected: str) -> float:
        """Return max(0, corrected rating - original rating).

        Malformed or missing judge output yields DEFAULT_SCORE_GAIN.
        """
        try:
            original_score, corrected_score = self.judge.rate(original, corrected)
        except MalformedJudgeOutput as e:
            logger.warning(f"Malformed judge output, using default gain: {e}")
            return DEFAULT_SCORE_GAIN
        except ProviderUnavailable as e:
            logger.warning(f"Judge unavailable, using default gain: {e}")
            return DEFAULT_SCORE_GAIN

        gain = _clamp_rating(corrected_score) - _clamp_rating(original_score)
        return max(0.0, gain)

    def categorize_failure(self, explanation: str) -> str:
        """Map a failure explanation onto the taxonomy."""
        try:
            raw = self.judge.label(explanation)
        except (MalformedJudgeOutput, ProviderUnavailable) as e:
            logger.warning(f"Categorization failed, using general: {e}")
            return FailureCategory.GENERAL.value
        category = normalize_category(raw)
        if category == FailureCategory.GENERAL.value and raw and raw.strip().lower() != "general":
            logger.debug(f"Unrecognized category {raw!r}, falling back to general")
        return category
