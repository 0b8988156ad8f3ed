import pytest

from classifier import TrackClassifier, classify
from models import Track


@pytest.mark.parametrize(
    "title,summary,expected",
    [
        ("Deploying vector search in production", "", Track.AIOPS),
        ("RLHF without tears", "", Track.SFT_RL),
        ("A new benchmark for long context", "", Track.EVALS),
        ("Bandit algorithms for ranking", "", Track.EXPERIMENTS),
        ("A quiet week", "Nothing technical here", Track.AIOPS),
        ("", "", Track.AIOPS),
        (None, None, Track.AIOPS),
    ],
)
def test_classify_by_keyword(title, summary, expected):
    assert classify(title, summary) is expected


def test_first_matching_rule_wins():
    # Both SFT/RL and Evals keywords present: SFT/RL has priority
    assert classify("Reward models and benchmark contamination") is Track.SFT_RL
    # Ops beats everything else
    assert classify("Monitoring RLHF experiments with benchmark metrics") is Track.AIOPS


def test_secondary_text_participates():
    assert classify("Weekly notes", "We ran an A/B test on prompts") is Track.EXPERIMENTS


def test_matching_is_case_insensitive():
    assert classify("MMLU SCORES REVISITED") is Track.EVALS


def test_classification_is_deterministic():
    text = ("Fine-tuning with DPO", "policy optimisation")
    assert {classify(*text) for _ in range(5)} == {Track.SFT_RL}


def test_keyword_configuration_overrides_rules():
    classifier = TrackClassifier.from_keywords(
        {"Evals": ["leaderboard"], "Experiments": ["ablation"], "Bogus": ["anything"]}
    )
    assert classifier.classify("New leaderboard results") is Track.EVALS
    assert classifier.classify("An ablation study") is Track.EXPERIMENTS
    # Built-in keywords no longer apply
    assert classifier.classify("RLHF deep dive") is Track.AIOPS


def test_empty_keyword_configuration_keeps_builtin_rules():
    classifier = TrackClassifier.from_keywords({"Bogus": ["anything"]})
    assert classifier.classify("RLHF deep dive") is Track.SFT_RL
