"""Completion capability adapters."""

from .client import (
    ClaudeClient,
    CompletionClient,
    GeminiClient,
    OpenAIClient,
    get_client,
)
from .throttle import Throttle

__all__ = [
    "CompletionClient",
    "OpenAIClient",
    "ClaudeClient",
    "GeminiClient",
    "get_client",
    "Throttle",
]
