"""Experiment routing between the base and candidate models."""

from .confidence import ConfidenceScorer, HeuristicConfidenceScorer
from .router import (
    HASH_VERSION,
    AssignmentDecision,
    GeneratedReply,
    ModelRouter,
    ModelVariant,
    VariantRole,
    assign_variant,
    bucket_for_user,
    string_hash,
    variants_from_config,
)

__all__ = [
    "AssignmentDecision",
    "ConfidenceScorer",
    "GeneratedReply",
    "HASH_VERSION",
    "HeuristicConfidenceScorer",
    "ModelRouter",
    "ModelVariant",
    "VariantRole",
    "assign_variant",
    "bucket_for_user",
    "string_hash",
    "variants_from_config",
]
