from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from feedloop.errors import ProviderUnavailable  # noqa: E402
from feedloop.providers.client import CompletionClient  # noqa: E402
from feedloop.store.database import Database  # noqa: E402


class ScriptedClient(CompletionClient):
    """Completion client that replays canned responses.

    Each response is a string, an exception instance to raise, or a callable
    taking (system_instruction, user_prompt). The last response repeats once
    the script runs out.
    """

    def __init__(self, *responses, model: str = "scripted"):
        self.responses = list(responses) or [""]
        self.model = model
        self.calls: list[tuple[str, str]] = []

    def with_model(self, model: str) -> "ScriptedClient":
        return self

    def _complete(self, system_instruction, user_prompt, temperature, max_output_tokens):
        self.calls.append((system_instruction, user_prompt))
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(system_instruction, user_prompt)
        return response


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "feedloop.db")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def unavailable() -> ProviderUnavailable:
    return ProviderUnavailable("upstream timed out")
