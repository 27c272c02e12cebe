"""Reply confidence estimation."""

from __future__ import annotations

import re
from typing import Protocol

EMPATHY_WORDS = ("sorry", "understand", "apologize", "help")
ACTION_WORDS = ("will", "can", "let me", "i'll", "shall")


class ConfidenceScorer(Protocol):
    def score(self, message: str, reply: str) -> float:
        ...


class HeuristicConfidenceScorer:
    """Cheap surface-level confidence in [0, 1].

    Starts at 0.5 and adds 0.1 for each of: a length strictly between
    ``min_length`` and ``max_length``, empathetic wording, an actionable next
    step, no doubled punctuation, and more than one sentence.
    """

    min_length: int = 50
    max_length: int = 300

    def score(self, message: str, reply: str) -> float:
        confidence = 0.5
        lowered = reply.lower()

        if self.min_length < len(reply) < self.max_length:
            confidence += 0.1
        if any(word in lowered for word in EMPATHY_WORDS):
            confidence += 0.1
        if any(word in lowered for word in ACTION_WORDS):
            confidence += 0.1
        if "??" not in reply and "!!" not in reply:
            confidence += 0.1
        if len([s for s in re.split(r"[.!?]+", reply) if s.strip()]) > 1:
            confidence += 0.1

        return round(max(0.0, min(1.0, confidence)), 2)
