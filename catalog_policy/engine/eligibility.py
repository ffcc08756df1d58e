"""
EligibilityEvaluator: decides pending/eligible/ineligible/review for one item.

Pure and deterministic. No I/O, no shared state, so any number of workers
may call evaluate_eligibility() concurrently.

Order of checks:
  1. Missing origin country / original language  → pending (short-circuit)
  2. Country classification (ANY or MAJORITY blocking)
  3. Language classification
  4. Hard block → ineligible unless a breakout rule matches
  5. Global provider/rating signals (blocking only under STRICT)
  6. Breakout rules, highest priority first, first match wins
  7. eligible, or review for fully neutral items under RELAXED
"""
import math
from typing import List, Optional

from catalog_policy.engine.signals import MediaSignals
from catalog_policy.engine.types import (
    PENDING, ELIGIBLE, INELIGIBLE, REVIEW,
    MISSING_ORIGIN_COUNTRY, MISSING_ORIGINAL_LANGUAGE,
    BLOCKED_COUNTRY, ALLOWED_COUNTRY, NEUTRAL_COUNTRY,
    BLOCKED_LANGUAGE, ALLOWED_LANGUAGE, NEUTRAL_LANGUAGE,
    MISSING_GLOBAL_SIGNALS, BREAKOUT_ALLOWED,
    BLOCKED_COUNTRY_MODE_ANY, ELIGIBILITY_MODE_STRICT,
    BreakoutRule, EvaluationResult, PolicyConfig,
)

BLOCKED = 'blocked'
ALLOWED = 'allowed'
NEUTRAL = 'neutral'

_COUNTRY_CODES = {BLOCKED: BLOCKED_COUNTRY, ALLOWED: ALLOWED_COUNTRY, NEUTRAL: NEUTRAL_COUNTRY}
_LANGUAGE_CODES = {BLOCKED: BLOCKED_LANGUAGE, ALLOWED: ALLOWED_LANGUAGE, NEUTRAL: NEUTRAL_LANGUAGE}


def classify_countries(countries, policy: PolicyConfig) -> str:
    """
    Classify an item's origin countries as blocked, allowed or neutral.

    ANY: a single blocked country blocks.
    MAJORITY: items with one or two countries behave as ANY. From three
    countries on, blocks when at least half (rounded up) are blocked, so
    2 of 3 and 2 of 4 block, 2 of 5 does not.
    A tolerated minority of blocked countries does not make the item neutral.
    """
    blocked_set = set(policy.blocked_countries)
    allowed_set = set(policy.allowed_countries)

    blocked = [c for c in countries if c in blocked_set]
    if blocked:
        if policy.blocked_country_mode == BLOCKED_COUNTRY_MODE_ANY:
            return BLOCKED
        if len(countries) <= 2 or len(blocked) >= math.ceil(len(countries) / 2):
            return BLOCKED

    if any(c not in allowed_set and c not in blocked_set for c in countries):
        return NEUTRAL
    return ALLOWED


def classify_language(language: str, policy: PolicyConfig) -> str:
    if language in policy.blocked_languages:
        return BLOCKED
    if language in policy.allowed_languages:
        return ALLOWED
    return NEUTRAL


def has_global_signals(signals: MediaSignals, policy: PolicyConfig) -> bool:
    """True when the item carries the provider/rating signals the policy recognizes."""
    if policy.global_providers and not signals.has_any_provider(policy.global_providers):
        return False

    req = policy.global_requirements
    if req is None:
        return True

    if req.min_quality_score_normalized is not None:
        quality = signals.quality_score()
        if quality is None or quality < req.min_quality_score_normalized:
            return False

    if req.require_any_of_ratings_present and not signals.has_any_rating(req.require_any_of_ratings_present):
        return False

    if req.min_votes_any_of is not None:
        votes = (signals.vote_count(source) for source in req.min_votes_any_of.sources)
        if not any(v is not None and v >= req.min_votes_any_of.min for v in votes):
            return False

    return True


def rule_matches(rule: BreakoutRule, signals: MediaSignals) -> bool:
    """Every populated requirement of the rule must hold. Empty rules never match."""
    req = rule.requirements
    if req.is_empty():
        return False

    if req.min_imdb_votes is not None:
        votes = signals.vote_count('imdb')
        if votes is None or votes < req.min_imdb_votes:
            return False

    if req.min_trakt_votes is not None:
        votes = signals.vote_count('trakt')
        if votes is None or votes < req.min_trakt_votes:
            return False

    if req.min_quality_score_normalized is not None:
        quality = signals.quality_score()
        if quality is None or quality < req.min_quality_score_normalized:
            return False

    if req.require_any_of_providers and not signals.has_any_provider(req.require_any_of_providers):
        return False

    if req.require_any_of_ratings_present and not signals.has_any_rating(req.require_any_of_ratings_present):
        return False

    return True


def find_breakout_rule(signals: MediaSignals, policy: PolicyConfig) -> Optional[BreakoutRule]:
    """First matching rule scanning from the highest priority down."""
    for rule in policy.rules_by_priority():
        if rule_matches(rule, signals):
            return rule
    return None


def _overridden(blocking: List[str], rule: BreakoutRule) -> EvaluationResult:
    return EvaluationResult(
        status=ELIGIBLE,
        reasons=tuple(blocking) + (BREAKOUT_ALLOWED,),
        breakout_rule_id=rule.id,
    )


def evaluate_eligibility(signals: MediaSignals, policy: PolicyConfig) -> EvaluationResult:
    """
    Evaluate one item against a policy.

    Ineligible results list the codes that blocked the item. Eligible and
    review results list every code encountered. A breakout rule rescues an
    otherwise ineligible or review item and is never consulted for pending.
    """
    if not signals.origin_countries:
        return EvaluationResult(status=PENDING, reasons=(MISSING_ORIGIN_COUNTRY,))
    if not signals.original_language:
        return EvaluationResult(status=PENDING, reasons=(MISSING_ORIGINAL_LANGUAGE,))

    country = classify_countries(signals.origin_countries, policy)
    language = classify_language(signals.original_language, policy)

    hard_blocks = []
    if country == BLOCKED:
        hard_blocks.append(BLOCKED_COUNTRY)
    if language == BLOCKED:
        hard_blocks.append(BLOCKED_LANGUAGE)

    if hard_blocks:
        rule = find_breakout_rule(signals, policy)
        if rule is not None:
            return _overridden(hard_blocks, rule)
        return EvaluationResult(status=INELIGIBLE, reasons=tuple(hard_blocks))

    reasons = [_COUNTRY_CODES[country], _LANGUAGE_CODES[language]]
    signals_ok = has_global_signals(signals, policy)
    if not signals_ok:
        reasons.append(MISSING_GLOBAL_SIGNALS)

    neutral = [code for code in reasons if code in (NEUTRAL_COUNTRY, NEUTRAL_LANGUAGE)]

    if policy.eligibility_mode == ELIGIBILITY_MODE_STRICT:
        blocking = neutral + ([] if signals_ok else [MISSING_GLOBAL_SIGNALS])
        if not blocking:
            return EvaluationResult(status=ELIGIBLE, reasons=tuple(reasons))
        rule = find_breakout_rule(signals, policy)
        if rule is not None:
            return _overridden(blocking, rule)
        return EvaluationResult(status=INELIGIBLE, reasons=tuple(blocking))

    # RELAXED: one allowed dimension is enough; nothing allowed at all is ambiguous
    if len(neutral) == 2:
        rule = find_breakout_rule(signals, policy)
        if rule is not None:
            return _overridden(neutral, rule)
        return EvaluationResult(status=REVIEW, reasons=tuple(reasons))
    return EvaluationResult(status=ELIGIBLE, reasons=tuple(reasons))
