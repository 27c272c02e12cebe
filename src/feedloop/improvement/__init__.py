"""Correction generation, scoring, and the improvement ledger."""

from .advisor import PromptAdvisor, build_support_prompt
from .generator import UNABLE_TO_GENERATE, CorrectionGenerator, is_unable_to_generate
from .ledger import ImprovementLedger, ImprovementRecord, LedgerStatistics
from .processor import BatchGuard, BatchResult, FailureProcessor
from .scoring import (
    DEFAULT_SCORE_GAIN,
    FailureCategory,
    HeuristicJudge,
    ImprovementScorer,
    LLMJudge,
    ReplyJudge,
    normalize_category,
)

__all__ = [
    # Correction
    "CorrectionGenerator",
    "UNABLE_TO_GENERATE",
    "is_unable_to_generate",
    # Scoring
    "ImprovementScorer",
    "ReplyJudge",
    "LLMJudge",
    "HeuristicJudge",
    "FailureCategory",
    "DEFAULT_SCORE_GAIN",
    "normalize_category",
    # Ledger
    "ImprovementLedger",
    "ImprovementRecord",
    "LedgerStatistics",
    # Batch
    "FailureProcessor",
    "BatchGuard",
    "BatchResult",
    # Prompts
    "PromptAdvisor",
    "build_support_prompt",
]
