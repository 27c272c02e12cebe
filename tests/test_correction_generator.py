"""Tests for correction generation."""

import pytest

from feedloop.improvement import UNABLE_TO_GENERATE, CorrectionGenerator, is_unable_to_generate
from feedloop.providers import Throttle


class TestCorrectionGenerator:
    def test_returns_stripped_correction(self, scripted_client):
        client = scripted_client('"I\'m sorry for the delay. Your order ships tomorrow."')
        generator = CorrectionGenerator(client)

        corrected = generator.generate_correction(
            prompt="Where is my order?",
            bad_reply="Wait.",
            good_reply="Apologies! It ships tomorrow.",
            explanation="too curt",
        )

        assert corrected == "I'm sorry for the delay. Your order ships tomorrow."

    def test_prompt_carries_every_input(self, scripted_client):
        client = scripted_client("fixed")
        generator = CorrectionGenerator(client)
        generator.generate_correction("PROMPT-X", "BAD-Y", "GOOD-Z", "EXPLAIN-W")

        _, user_prompt = client.calls[0]
        for token in ("PROMPT-X", "BAD-Y", "GOOD-Z", "EXPLAIN-W", "without copying"):
            assert token in user_prompt

    def test_missing_reference_uses_explanation_only(self, scripted_client):
        client = scripted_client("fixed")
        CorrectionGenerator(client).generate_correction("p", "bad", None, "lacked detail")
        assert "No agent correction was supplied" in client.calls[0][1]

    def test_provider_failure_returns_sentinel(self, scripted_client, unavailable):
        generator = CorrectionGenerator(scripted_client(unavailable))
        corrected = generator.generate_correction("p", "bad", "good", "why")
        assert corrected == UNABLE_TO_GENERATE
        assert is_unable_to_generate(corrected)

    def test_verbatim_copy_is_retried_once(self, scripted_client):
        client = scripted_client("Your refund is on its way.", "We've sent your refund; expect it in 3 days.")
        generator = CorrectionGenerator(client)

        corrected = generator.generate_correction("p", "bad", "your refund is on its way.", "vague")

        assert corrected == "We've sent your refund; expect it in 3 days."
        assert len(client.calls) == 2
        assert "own words" in client.calls[1][1]

    def test_verbatim_copy_accepted_after_failed_retry(self, scripted_client):
        client = scripted_client("Same text.")
        corrected = CorrectionGenerator(client).generate_correction("p", "bad", "Same text.", "why")
        assert corrected == "Same text."
        assert len(client.calls) == 2

    def test_throttle_between_calls(self, scripted_client):
        slept = []
        ticks = iter([0.0, 0.2, 0.2])
        throttle = Throttle(1.0, clock=lambda: next(ticks), sleep=slept.append)
        generator = CorrectionGenerator(scripted_client("a", "b"), throttle=throttle)

        generator.generate_correction("p", "bad", None, "why")
        generator.generate_correction("p", "bad2", None, "why")

        assert slept == [pytest.approx(0.8)]


class TestThrottle:
    def test_first_call_never_waits(self):
        slept = []
        throttle = Throttle(5.0, clock=lambda: 100.0, sleep=slept.append)
        assert throttle.wait() == 0.0
        assert slept == []

    def test_no_wait_after_delay_elapsed(self):
        slept = []
        ticks = iter([0.0, 10.0, 10.0])
        throttle = Throttle(1.0, clock=lambda: next(ticks), sleep=slept.append)
        throttle.wait()
        assert throttle.wait() == 0.0
        assert slept == []
