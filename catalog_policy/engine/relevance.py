"""
RelevanceScorer: folds the quality/popularity/freshness triple into 0..100.

Pure, same contract as the eligibility evaluator. Items without stats score 0.
"""
import math
from typing import Optional

from catalog_policy.engine.signals import MediaSignals, is_present
from catalog_policy.engine.types import PolicyConfig

QUALITY_WEIGHT = 0.4
POPULARITY_WEIGHT = 0.4
FRESHNESS_WEIGHT = 0.2

MIN_SCORE = 0
MAX_SCORE = 100


def _component(value) -> float:
    return float(value) if is_present(value) else 0.0


def compute_relevance(signals: MediaSignals, policy: Optional[PolicyConfig] = None) -> int:
    stats = signals.stats
    if stats is None:
        return MIN_SCORE

    normalized = (
        QUALITY_WEIGHT * _component(stats.quality)
        + POPULARITY_WEIGHT * _component(stats.popularity)
        + FRESHNESS_WEIGHT * _component(stats.freshness)
    )
    # half-up, Python's round() would go to even
    score = int(math.floor(normalized * 100 + 0.5))
    return max(MIN_SCORE, min(MAX_SCORE, score))


def meets_homepage_threshold(score: int, policy: PolicyConfig) -> bool:
    return score >= policy.homepage_min_relevance_score
