"""LLM API clients for the completion capability.

Every adapter exposes the same blocking call,
``complete(system_instruction, user_prompt, temperature, max_output_tokens)``,
and reports any SDK error, timeout, or empty body as ProviderUnavailable.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any

from ..errors import ProviderUnavailable
from ..logging_config import get_logger

logger = get_logger(__name__)


class CompletionClient(ABC):
    """Abstract base class for completion providers."""

    model: str = ""

    @abstractmethod
    def _complete(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float,
        max_output_tokens: int,
    ) -> str | None:
        """Provider-specific call. May raise any SDK exception."""

    def complete(
        self,
        system_instruction: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_output_tokens: int = 1024,
    ) -> str:
        """Generate text from the provider.

        Args:
            system_instruction: System prompt
            user_prompt: User prompt
            temperature: Sampling temperature
            max_output_tokens: Maximum tokens in the response

        Returns:
            Stripped response text

        Raises:
            ProviderUnavailable: on any provider error or an empty response
        """
        try:
            text = self._complete(system_instruction, user_prompt, temperature, max_output_tokens)
        except ProviderUnavailable:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"{type(self).__name__} ({self.model}) failed: {e}") from e

        if not text or not text.strip():
            raise ProviderUnavailable(f"{type(self).__name__} ({self.model}) returned an empty response")
        return text.strip()

    def with_model(self, model: str) -> "CompletionClient":
        """Return a client of the same provider bound to another model."""
        return type(self)(model=model)


class OpenAIClient(CompletionClient):
    """OpenAI chat completions client."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.model = model
        self.timeout = timeout
        self._client = None

    def with_model(self, model: str) -> "OpenAIClient":
        return OpenAIClient(api_key=self.api_key, model=model, timeout=self.timeout)

    def _get_client(self) -> Any:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self.api_key:
                raise ProviderUnavailable(
                    "OPENAI_API_KEY not set. Set environment variable or pass api_key."
                )
            try:
                from openai import OpenAI
            except ImportError:
                raise ImportError(
                    "openai not installed. Install with: pip install 'feedloop[openai]'"
                )
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _complete(self, system_instruction, user_prompt, temperature, max_output_tokens):
        client = self._get_client()
        response = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
        )
        return response.choices[0].message.content


class ClaudeClient(CompletionClient):
    """Anthropic messages API client."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.model = model
        self.timeout = timeout
        self._client = None

    def with_model(self, model: str) -> "ClaudeClient":
        return ClaudeClient(api_key=self.api_key, model=model, timeout=self.timeout)

    def _get_client(self) -> Any:
        """Lazy initialization of the Anthropic client."""
        if self._client is None:
            if not self.api_key:
                raise ProviderUnavailable(
                    "ANTHROPIC_API_KEY not set. Set environment variable or pass api_key."
                )
            try:
                import anthropic
            except ImportError:
                raise ImportError(
                    "anthropic not installed. Install with: pip install 'feedloop[anthropic]'"
                )
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _complete(self, system_instruction, user_prompt, temperature, max_output_tokens):
        client = self._get_client()
        message = client.messages.create(
            model=self.model,
            max_tokens=max_output_tokens,
            temperature=temperature,
            system=system_instruction,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return message.content[0].text if message.content else None


class GeminiClient(CompletionClient):
    """Google Gemini client using the google.genai SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gemini-2.0-flash",
    ):
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        self.model = model
        self._client = None

    def with_model(self, model: str) -> "GeminiClient":
        return GeminiClient(api_key=self.api_key, model=model)

    def _get_client(self) -> Any:
        """Lazy initialization of the Gemini client."""
        if self._client is None:
            if not self.api_key:
                raise ProviderUnavailable(
                    "GEMINI_API_KEY not set. Set environment variable or pass api_key."
                )
            try:
                from google import genai
            except ImportError:
                raise ImportError(
                    "google-genai not installed. Install with: pip install 'feedloop[gemini]'"
                )
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _complete(self, system_instruction, user_prompt, temperature, max_output_tokens):
        client = self._get_client()
        response = client.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config={
                "system_instruction": system_instruction,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            },
        )
        return response.text


def get_client(provider: str, **kwargs) -> CompletionClient:
    """Factory function to get a completion client by provider name.

    Args:
        provider: Provider name (openai, claude, gemini)
        **kwargs: Additional arguments for the client constructor

    Returns:
        CompletionClient instance
    """
    clients = {
        "openai": OpenAIClient,
        "claude": ClaudeClient,
        "anthropic": ClaudeClient,
        "gemini": GeminiClient,
    }

    if provider not in clients:
        raise ValueError(
            f"Unknown provider: {provider}. "
            f"Supported: {', '.join(clients.keys())}"
        )

    return clients[provider](**kwargs)
