"""Tests for failure-aware support prompts."""

import pytest

from feedloop.improvement import ImprovementLedger, PromptAdvisor, build_support_prompt


@pytest.fixture
def ledger(db, clock):
    ledger = ImprovementLedger(db, clock=clock)
    for i, category in enumerate(["empathy", "empathy", "accuracy"]):
        ledger.append(
            source_failure_id=f"f{i}",
            original_prompt="prompt",
            original_reply=f"reply {i}",
            corrected_reply=f"better reply {i}",
            score_gain_estimate=2.0,
            failure_category=category,
        )
    return ledger


class TestPromptAdvisor:
    def test_adds_caution_for_predicted_category(self, ledger, scripted_client):
        client = scripted_client('"Empathy".')
        advisor = PromptAdvisor(ledger, client)

        prompt = advisor.build_prompt("My package never arrived and I'm upset")

        assert 'often fails due to: "empathy"' in prompt
        assert "My package never arrived" in prompt
        system, user = client.calls[0]
        assert "empathy, accuracy" in user

    def test_none_answer_gives_plain_prompt(self, ledger, scripted_client):
        advisor = PromptAdvisor(ledger, scripted_client("none"))
        prompt = advisor.build_prompt("What are your hours?")
        assert prompt == build_support_prompt("What are your hours?")

    def test_unknown_category_is_ignored(self, ledger, scripted_client):
        advisor = PromptAdvisor(ledger, scripted_client("billing"))
        assert advisor.predict_failure_category("m") is None

    def test_provider_failure_degrades(self, ledger, scripted_client, unavailable):
        advisor = PromptAdvisor(ledger, scripted_client(unavailable))
        assert advisor.build_prompt("m", context="order 42") == build_support_prompt("m", "order 42")

    def test_empty_ledger_skips_provider(self, db, scripted_client):
        client = scripted_client("empathy")
        advisor = PromptAdvisor(ImprovementLedger(db), client)

        assert advisor.predict_failure_category("m") is None
        assert client.calls == []
