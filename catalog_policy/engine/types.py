"""
Value types shared by the evaluator, the scorer and the stores.

PolicyConfig is immutable once built; parse and validate raw dicts with
engine.policy_config.parse_policy_config().
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple


# ── Eligibility statuses ──────────────────────────────────────────────────────
PENDING = 'pending'
ELIGIBLE = 'eligible'
INELIGIBLE = 'ineligible'
REVIEW = 'review'

ELIGIBILITY_STATUSES = [PENDING, ELIGIBLE, INELIGIBLE, REVIEW]

# ── Reason codes ──────────────────────────────────────────────────────────────
MISSING_ORIGIN_COUNTRY = 'MISSING_ORIGIN_COUNTRY'
MISSING_ORIGINAL_LANGUAGE = 'MISSING_ORIGINAL_LANGUAGE'
BLOCKED_COUNTRY = 'BLOCKED_COUNTRY'
ALLOWED_COUNTRY = 'ALLOWED_COUNTRY'
NEUTRAL_COUNTRY = 'NEUTRAL_COUNTRY'
BLOCKED_LANGUAGE = 'BLOCKED_LANGUAGE'
ALLOWED_LANGUAGE = 'ALLOWED_LANGUAGE'
NEUTRAL_LANGUAGE = 'NEUTRAL_LANGUAGE'
MISSING_GLOBAL_SIGNALS = 'MISSING_GLOBAL_SIGNALS'
BREAKOUT_ALLOWED = 'BREAKOUT_ALLOWED'

REASON_DESCRIPTIONS = {
    MISSING_ORIGIN_COUNTRY: 'Origin country is missing or unknown',
    MISSING_ORIGINAL_LANGUAGE: 'Original language is missing or unknown',
    BLOCKED_COUNTRY: 'Origin country is blocked by policy',
    ALLOWED_COUNTRY: 'Origin country is allowed by policy',
    NEUTRAL_COUNTRY: 'Origin country is neither allowed nor blocked',
    BLOCKED_LANGUAGE: 'Original language is blocked by policy',
    ALLOWED_LANGUAGE: 'Original language is allowed by policy',
    NEUTRAL_LANGUAGE: 'Original language is neither allowed nor blocked',
    MISSING_GLOBAL_SIGNALS: 'No provider or rating signal recognized by the policy',
    BREAKOUT_ALLOWED: 'Allowed by a breakout rule',
}

# ── Policy modes ──────────────────────────────────────────────────────────────
BLOCKED_COUNTRY_MODE_ANY = 'ANY'
BLOCKED_COUNTRY_MODE_MAJORITY = 'MAJORITY'
BLOCKED_COUNTRY_MODES = [BLOCKED_COUNTRY_MODE_ANY, BLOCKED_COUNTRY_MODE_MAJORITY]

ELIGIBILITY_MODE_STRICT = 'STRICT'
ELIGIBILITY_MODE_RELAXED = 'RELAXED'
ELIGIBILITY_MODES = [ELIGIBILITY_MODE_STRICT, ELIGIBILITY_MODE_RELAXED]

# ── External signal sources ───────────────────────────────────────────────────
RATING_SOURCES = ['imdb', 'trakt', 'metacritic', 'rotten_tomatoes']
VOTE_SOURCES = ['imdb', 'trakt']
PROVIDER_OFFER_TYPES = ['flatrate', 'rent', 'buy', 'ads', 'free']


@dataclass(frozen=True)
class BreakoutRequirements:
    """Every populated field must hold for the rule to match."""
    min_imdb_votes: Optional[int] = None
    min_trakt_votes: Optional[int] = None
    min_quality_score_normalized: Optional[float] = None
    require_any_of_providers: Tuple[str, ...] = ()
    require_any_of_ratings_present: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return (
            self.min_imdb_votes is None
            and self.min_trakt_votes is None
            and self.min_quality_score_normalized is None
            and not self.require_any_of_providers
            and not self.require_any_of_ratings_present
        )

    def to_dict(self) -> Dict:
        out = {}
        if self.min_imdb_votes is not None:
            out['min_imdb_votes'] = self.min_imdb_votes
        if self.min_trakt_votes is not None:
            out['min_trakt_votes'] = self.min_trakt_votes
        if self.min_quality_score_normalized is not None:
            out['min_quality_score_normalized'] = self.min_quality_score_normalized
        if self.require_any_of_providers:
            out['require_any_of_providers'] = list(self.require_any_of_providers)
        if self.require_any_of_ratings_present:
            out['require_any_of_ratings_present'] = list(self.require_any_of_ratings_present)
        return out


@dataclass(frozen=True)
class BreakoutRule:
    id: str
    name: str
    priority: int
    requirements: BreakoutRequirements

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'priority': self.priority,
            'requirements': self.requirements.to_dict(),
        }


@dataclass(frozen=True)
class MinVotesAnyOf:
    sources: Tuple[str, ...]
    min: int


@dataclass(frozen=True)
class GlobalRequirements:
    """Optional quality gate applied alongside the global provider list."""
    min_quality_score_normalized: Optional[float] = None
    require_any_of_ratings_present: Tuple[str, ...] = ()
    min_votes_any_of: Optional[MinVotesAnyOf] = None

    def to_dict(self) -> Dict:
        out = {}
        if self.min_quality_score_normalized is not None:
            out['min_quality_score_normalized'] = self.min_quality_score_normalized
        if self.require_any_of_ratings_present:
            out['require_any_of_ratings_present'] = list(self.require_any_of_ratings_present)
        if self.min_votes_any_of is not None:
            out['min_votes_any_of'] = {
                'sources': list(self.min_votes_any_of.sources),
                'min': self.min_votes_any_of.min,
            }
        return out


@dataclass(frozen=True)
class PolicyConfig:
    allowed_countries: Tuple[str, ...] = ()
    blocked_countries: Tuple[str, ...] = ()
    blocked_country_mode: str = BLOCKED_COUNTRY_MODE_ANY
    allowed_languages: Tuple[str, ...] = ()
    blocked_languages: Tuple[str, ...] = ()
    global_providers: Tuple[str, ...] = ()
    breakout_rules: Tuple[BreakoutRule, ...] = ()
    eligibility_mode: str = ELIGIBILITY_MODE_STRICT
    homepage_min_relevance_score: int = 0
    global_requirements: Optional[GlobalRequirements] = None

    def rules_by_priority(self) -> List[BreakoutRule]:
        """Breakout rules, highest priority first. Ties keep config order."""
        return sorted(self.breakout_rules, key=lambda rule: -rule.priority)

    def to_dict(self) -> Dict:
        out = {
            'allowed_countries': list(self.allowed_countries),
            'blocked_countries': list(self.blocked_countries),
            'blocked_country_mode': self.blocked_country_mode,
            'allowed_languages': list(self.allowed_languages),
            'blocked_languages': list(self.blocked_languages),
            'global_providers': list(self.global_providers),
            'breakout_rules': [rule.to_dict() for rule in self.breakout_rules],
            'eligibility_mode': self.eligibility_mode,
            'homepage': {'min_relevance_score': self.homepage_min_relevance_score},
        }
        if self.global_requirements is not None:
            out['global_requirements'] = self.global_requirements.to_dict()
        return out


@dataclass(frozen=True)
class EvaluationResult:
    status: str
    reasons: Tuple[str, ...] = ()
    breakout_rule_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'status': self.status,
            'reasons': list(self.reasons),
            'breakout_rule_id': self.breakout_rule_id,
        }


@dataclass
class EvaluationRecord:
    """One row destined for EvaluationStore."""
    media_item_id: str
    policy_version: int
    status: str
    reasons: List[str] = field(default_factory=list)
    relevance_score: int = 0
    breakout_rule_id: Optional[str] = None
    evaluated_at: Optional[datetime] = None
    run_id: Optional[str] = None
