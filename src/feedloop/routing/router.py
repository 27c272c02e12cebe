"""Deterministic experiment assignment and reply generation.

Users are bucketed by a versioned string hash so that a given user keeps the
same variant for the lifetime of an experiment. Changing ``bucket_for_user``
reshuffles every live assignment; bump ``HASH_VERSION`` if it ever changes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..errors import ProviderUnavailable
from ..logging_config import get_logger
from ..providers.client import CompletionClient
from ..schema import DEFAULT_PERSONA, ExperimentConfig
from ..store.replies import ReplyLog
from .confidence import ConfidenceScorer, HeuristicConfidenceScorer

logger = get_logger(__name__)

HASH_VERSION = 1
BUCKETS = 100


class VariantRole(str, Enum):
    BASE = "base"
    CANDIDATE = "candidate"


@dataclass(frozen=True)
class ModelVariant:
    key: str
    traffic_weight_percent: int
    role: VariantRole


@dataclass(frozen=True)
class AssignmentDecision:
    bucket: int
    variant_key: str
    is_candidate: bool


@dataclass
class GeneratedReply:
    reply_id: Optional[str]
    reply: str
    variant_key: str
    is_candidate: bool
    confidence: float
    latency_ms: float
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "reply_id": self.reply_id,
            "reply": self.reply,
            "variant_key": self.variant_key,
            "is_candidate": self.is_candidate,
            "confidence": self.confidence,
            "latency_ms": self.latency_ms,
            "fallback": self.fallback,
        }


def string_hash(value: str) -> int:
    """32-bit signed polynomial hash over UTF-16 code units (h = 31*h + c)."""
    h = 0
    encoded = value.encode("utf-16-be")
    for i in range(0, len(encoded), 2):
        code_unit = (encoded[i] << 8) | encoded[i + 1]
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def bucket_for_user(user_id: str, hash_version: int = HASH_VERSION) -> int:
    """Bucket in [0, 100) for a user id."""
    if hash_version != HASH_VERSION:
        raise ValueError(f"Unsupported hash version: {hash_version}")
    return abs(string_hash(user_id)) % BUCKETS


def variants_from_config(config: ExperimentConfig) -> tuple[ModelVariant, ModelVariant]:
    """(base, candidate) variants for an experiment config."""
    split = config.traffic_split_percent if config.enabled else 0
    base = ModelVariant(config.base_model, BUCKETS - split, VariantRole.BASE)
    candidate = ModelVariant(config.candidate_model, split, VariantRole.CANDIDATE)
    return base, candidate


def assign_variant(user_id: str, config: ExperimentConfig) -> AssignmentDecision:
    """Pure assignment: same user id and config always give the same decision."""
    bucket = bucket_for_user(user_id, config.hash_version)
    base, candidate = variants_from_config(config)
    if bucket < candidate.traffic_weight_percent:
        return AssignmentDecision(bucket=bucket, variant_key=candidate.key, is_candidate=True)
    return AssignmentDecision(bucket=bucket, variant_key=base.key, is_candidate=False)


class ModelRouter:
    """Routes live replies between the base model and a candidate model."""

    def __init__(
        self,
        config: ExperimentConfig,
        base_client: CompletionClient,
        candidate_client: CompletionClient | None = None,
        reply_log: ReplyLog | None = None,
        confidence_scorer: ConfidenceScorer | None = None,
        prompt_builder: Callable[[str, Optional[str]], str] | None = None,
        persona: str = DEFAULT_PERSONA,
    ):
        self._lock = threading.Lock()
        self._config = config
        self.base_client = base_client
        self._candidate_client = candidate_client
        self.reply_log = reply_log
        self.confidence_scorer = confidence_scorer or HeuristicConfidenceScorer()
        self.prompt_builder = prompt_builder
        self.persona = persona

    @property
    def config(self) -> ExperimentConfig:
        return self._config

    def reload(self, config: ExperimentConfig, candidate_client: CompletionClient | None = None) -> None:
        """Swap in a new experiment config without restarting."""
        with self._lock:
            old = self._config
            self._config = config
            self._candidate_client = candidate_client
        logger.info(
            f"Experiment config reloaded: enabled={config.enabled} "
            f"split={config.traffic_split_percent}% candidate={config.candidate_model} "
            f"(was enabled={old.enabled} split={old.traffic_split_percent}%)"
        )

    def assign(self, user_id: str) -> AssignmentDecision:
        return assign_variant(user_id, self._config)

    def _client_for(self, decision: AssignmentDecision) -> CompletionClient:
        if not decision.is_candidate:
            return self.base_client
        with self._lock:
            if self._candidate_client is None:
                self._candidate_client = self.base_client.with_model(decision.variant_key)
            return self._candidate_client

    def generate_reply(self, user_id: str, message: str, context: str | None = None) -> GeneratedReply:
        """Generate a reply from the assigned variant.

        A failing candidate is retried once against the base model.

        Raises:
            ProviderUnavailable: if the base model fails
        """
        config = self._config
        decision = assign_variant(user_id, config)
        prompt = self.prompt_builder(message, context) if self.prompt_builder else message

        start = time.perf_counter()
        variant_key = decision.variant_key
        is_candidate = decision.is_candidate
        fallback = False
        try:
            text = self._client_for(decision).complete(
                self.persona,
                prompt,
                temperature=config.reply_temperature,
                max_output_tokens=config.reply_max_tokens,
            )
        except ProviderUnavailable as e:
            if not decision.is_candidate:
                raise
            logger.warning(f"Candidate {decision.variant_key} failed for user {user_id}, falling back to base: {e}")
            variant_key = config.base_model
            is_candidate = False
            fallback = True
            text = self.base_client.complete(
                self.persona,
                prompt,
                temperature=config.reply_temperature,
                max_output_tokens=config.reply_max_tokens,
            )
        latency_ms = round((time.perf_counter() - start) * 1000, 2)

        confidence = self.confidence_scorer.score(message, text)
        reply_id = None
        if self.reply_log is not None:
            reply_id = self.reply_log.log_reply(
                user_id=user_id,
                variant_key=variant_key,
                is_candidate=is_candidate,
                message=message,
                reply=text,
                confidence=confidence,
                latency_ms=latency_ms,
                fallback=fallback,
            )

        return GeneratedReply(
            reply_id=reply_id,
            reply=text,
            variant_key=variant_key,
            is_candidate=is_candidate,
            confidence=confidence,
            latency_ms=latency_ms,
            fallback=fallback,
        )
