"""Tests for score-gain estimation and categorization."""

import pytest

from feedloop.errors import MalformedJudgeOutput
from feedloop.improvement import (
    DEFAULT_SCORE_GAIN,
    FailureCategory,
    HeuristicJudge,
    ImprovementScorer,
    LLMJudge,
    normalize_category,
)
from feedloop.improvement.scoring import parse_judge_scores


class TestParseJudgeScores:
    def test_json_inside_prose(self):
        text = 'Sure! {"original_score": 3, "improved_score": 8.5} Hope that helps.'
        assert parse_judge_scores(text) == (3.0, 8.5)

    @pytest.mark.parametrize(
        "text",
        ["no json here", '{"original_score": 3}', '{"original_score": "x", "improved_score": 2}', ""],
    )
    def test_malformed(self, text):
        with pytest.raises(MalformedJudgeOutput):
            parse_judge_scores(text)


class TestImprovementScorer:
    def _scorer(self, scripted_client, *responses):
        return ImprovementScorer(LLMJudge(scripted_client(*responses)))

    def test_gain_is_difference(self, scripted_client):
        scorer = self._scorer(scripted_client, '{"original_score": 4, "improved_score": 8}')
        assert scorer.estimate_score_gain("bad", "good") == 4.0

    def test_gain_never_negative(self, scripted_client):
        scorer = self._scorer(scripted_client, '{"original_score": 8, "improved_score": 3}')
        assert scorer.estimate_score_gain("bad", "worse") == 0.0

    def test_ratings_clamped_to_scale(self, scripted_client):
        scorer = self._scorer(scripted_client, '{"original_score": -4, "improved_score": 15}')
        assert scorer.estimate_score_gain("bad", "good") == 9.0

    def test_malformed_output_uses_default(self, scripted_client):
        scorer = self._scorer(scripted_client, "The improved reply is much better.")
        assert scorer.estimate_score_gain("bad", "good") == DEFAULT_SCORE_GAIN

    def test_provider_failure_uses_default(self, scripted_client, unavailable):
        scorer = self._scorer(scripted_client, unavailable)
        assert scorer.estimate_score_gain("bad", "good") == DEFAULT_SCORE_GAIN

    def test_categorize_normalizes_label(self, scripted_client):
        scorer = self._scorer(scripted_client, " Empathy.")
        assert scorer.categorize_failure("cold reply") == "empathy"

    def test_unknown_label_is_general(self, scripted_client):
        scorer = self._scorer(scripted_client, "banana")
        assert scorer.categorize_failure("something odd") == "general"

    def test_categorize_provider_failure_is_general(self, scripted_client, unavailable):
        scorer = self._scorer(scripted_client, unavailable)
        assert scorer.categorize_failure("anything") == "general"


class TestNormalizeCategory:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("tone", "tone"),
            ("'Accuracy'", "accuracy"),
            ("Category: completeness", "completeness"),
            (None, "general"),
            ("", "general"),
            ("pricing", "general"),
        ],
    )
    def test_mapping(self, raw, expected):
        assert normalize_category(raw) == expected


class TestHeuristicJudge:
    def test_generic_and_unempathetic_is_empathy(self):
        label = HeuristicJudge().label("reply was too generic and lacked empathy")
        assert label in (FailureCategory.EMPATHY.value, FailureCategory.GENERAL.value)
        assert label != FailureCategory.ACCURACY.value

    def test_accuracy_keywords(self):
        assert HeuristicJudge().label("the quoted price was wrong") == "accuracy"

    def test_no_keywords_is_general(self):
        assert HeuristicJudge().label("meh") == "general"

    def test_rating_is_deterministic(self):
        judge = HeuristicJudge()
        corrected = "I'm sorry about the delay. I will refund you today."
        assert judge.rate("No.", corrected) == judge.rate("No.", corrected)
        original_score, corrected_score = judge.rate("No.", corrected)
        assert original_score == 3.0
        assert corrected_score == 10.0

    def test_shouting_penalized(self):
        judge = HeuristicJudge()
        calm, _ = judge.rate("We can help with that.", "x")
        loud, _ = judge.rate("We can help with that!!", "x")
        assert loud < calm
