"""Training corpus export."""

from .corpus import CorpusExporter, ExportResult, ExportSelector, TrainingExample

__all__ = [
    "CorpusExporter",
    "ExportResult",
    "ExportSelector",
    "TrainingExample",
]
