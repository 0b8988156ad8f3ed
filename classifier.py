#!/usr/bin/env python3
"""Keyword router mapping article text to a topical track.

Rules are evaluated in a fixed priority order and the first match wins; text that
matches nothing lands in the default track. Classification is pure.
"""

from typing import Dict, List, Optional, Sequence, Tuple
import re

from config import config, get_logger
from models import Track

logger = get_logger("classifier")

# Priority order matters: ops terms win over fine-tuning, evals and experiments
DEFAULT_RULES: List[Tuple[Track, str]] = [
    (Track.AIOPS, r"mlops|ai ops|observability|monitoring|deployment|retrieval|vector"),
    (Track.SFT_RL, r"fine[- ]?tuning|\bsft\b|rlhf|rlaif|reward|policy|\bppo\b|\bdpo\b"),
    (Track.EVALS, r"\beval|benchmark|truthfulqa|mmlu|\bhelm\b|metrics"),
    (Track.EXPERIMENTS, r"experiment|a/b|bandit|bayesian|hypothesis"),
]


class TrackClassifier:
    def __init__(self, rules: Optional[Sequence[Tuple[Track, str]]] = None, default: Track = Track.default()) -> None:
        self.default = default
        self.rules = [(track, re.compile(pattern, re.IGNORECASE)) for track, pattern in (rules or DEFAULT_RULES)]

    @classmethod
    def from_keywords(cls, keywords: Dict[str, List[str]]) -> "TrackClassifier":
        """Build rules from an ordered mapping of track label -> literal keywords."""
        rules: List[Tuple[Track, str]] = []
        for label, words in keywords.items():
            track = Track.from_label(label)
            if track is None:
                logger.warning(f"Unknown track '{label}' in keyword configuration; ignoring")
                continue
            rules.append((track, "|".join(re.escape(w) for w in words)))
        if not rules:
            logger.warning("No usable track keywords configured; using built-in rules")
        return cls(rules or None)

    def classify(self, primary_text: Optional[str], secondary_text: Optional[str] = None) -> Track:
        text = f"{primary_text or ''} {secondary_text or ''}"
        for track, pattern in self.rules:
            if pattern.search(text):
                return track
        return self.default


def build_classifier() -> TrackClassifier:
    if config.TRACK_KEYWORDS:
        return TrackClassifier.from_keywords(config.TRACK_KEYWORDS)
    return TrackClassifier()


_default_classifier = TrackClassifier()


def classify(primary_text: Optional[str], secondary_text: Optional[str] = None) -> Track:
    """Classify with the built-in rules."""
    return _default_classifier.classify(primary_text, secondary_text)
