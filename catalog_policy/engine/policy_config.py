"""
Parse and validate raw policy config dicts into PolicyConfig.

Used when a policy is created and on every dry-run candidate. All problems
are collected and raised together in a single ValidationError.
"""
import logging
import math
import os
from typing import Dict, List

import yaml

from catalog_policy.errors import ValidationError
from catalog_policy.engine.types import (
    BLOCKED_COUNTRY_MODE_ANY, BLOCKED_COUNTRY_MODES,
    ELIGIBILITY_MODE_STRICT, ELIGIBILITY_MODES,
    RATING_SOURCES, VOTE_SOURCES,
    BreakoutRequirements, BreakoutRule, GlobalRequirements, MinVotesAnyOf,
    PolicyConfig,
)

logger = logging.getLogger('engine.policy_config')


def _codes(data: Dict, key: str, errors: List[str], upper: bool) -> tuple:
    raw = data.get(key) or []
    if not isinstance(raw, (list, tuple)):
        errors.append(f'{key} must be a list of two-letter codes')
        return ()
    out = []
    for value in raw:
        stripped = value.strip() if isinstance(value, str) else None
        if not stripped or len(stripped) != 2 or not stripped.isascii() or not stripped.isalpha():
            errors.append(f'{key}: invalid code {value!r}')
            continue
        code = stripped.upper() if upper else stripped.lower()
        if code not in out:
            out.append(code)
    return tuple(out)


def _names(raw, key: str, errors: List[str]) -> tuple:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)) or not all(isinstance(v, str) and v for v in raw):
        errors.append(f'{key} must be a list of non-empty strings')
        return ()
    return tuple(dict.fromkeys(raw))


def _non_negative(raw, key: str, errors: List[str], integer: bool = True):
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        errors.append(f'{key} must be a number')
        return None
    if not math.isfinite(raw):
        errors.append(f'{key} must be finite')
        return None
    if integer and raw != int(raw):
        errors.append(f'{key} must be an integer')
        return None
    if raw < 0:
        errors.append(f'{key} must be >= 0')
        return None
    return int(raw) if integer else float(raw)


def _rating_sources(raw, key: str, errors: List[str], allowed=RATING_SOURCES) -> tuple:
    sources = _names(raw, key, errors)
    unknown = [s for s in sources if s not in allowed]
    if unknown:
        errors.append(f'{key}: unknown sources {unknown} (expected {allowed})')
        return ()
    return sources


def _parse_requirements(raw, prefix: str, errors: List[str]) -> BreakoutRequirements:
    if not isinstance(raw, dict):
        errors.append(f'{prefix}.requirements must be an object')
        return BreakoutRequirements()
    quality = _non_negative(raw.get('min_quality_score_normalized'),
                            f'{prefix}.min_quality_score_normalized', errors, integer=False)
    if quality is not None and quality > 1:
        errors.append(f'{prefix}.min_quality_score_normalized must be within 0..1')
    return BreakoutRequirements(
        min_imdb_votes=_non_negative(raw.get('min_imdb_votes'), f'{prefix}.min_imdb_votes', errors),
        min_trakt_votes=_non_negative(raw.get('min_trakt_votes'), f'{prefix}.min_trakt_votes', errors),
        min_quality_score_normalized=quality,
        require_any_of_providers=_names(
            raw.get('require_any_of_providers'), f'{prefix}.require_any_of_providers', errors),
        require_any_of_ratings_present=_rating_sources(
            raw.get('require_any_of_ratings_present'),
            f'{prefix}.require_any_of_ratings_present', errors),
    )


def _parse_rules(raw, errors: List[str]) -> tuple:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        errors.append('breakout_rules must be a list')
        return ()
    rules = []
    seen_ids, seen_priorities = set(), set()
    for i, entry in enumerate(raw):
        prefix = f'breakout_rules[{i}]'
        if not isinstance(entry, dict):
            errors.append(f'{prefix} must be an object')
            continue
        rule_id = entry.get('id')
        if not isinstance(rule_id, str) or not rule_id:
            errors.append(f'{prefix}.id is required')
            continue
        priority = entry.get('priority')
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
            errors.append(f'{prefix}.priority must be an integer >= 0')
            continue
        if rule_id in seen_ids:
            errors.append(f'Duplicate breakout rule id: {rule_id}')
        if priority in seen_priorities:
            errors.append(f'Duplicate breakout rule priority: {priority}')
        seen_ids.add(rule_id)
        seen_priorities.add(priority)

        requirements = _parse_requirements(entry.get('requirements') or {}, prefix, errors)
        if requirements.is_empty():
            errors.append(f'Breakout rule {rule_id} must have at least one requirement')
        rules.append(BreakoutRule(
            id=rule_id,
            name=entry.get('name') or rule_id,
            priority=priority,
            requirements=requirements,
        ))
    return tuple(rules)


def _parse_global_requirements(raw, errors: List[str]):
    if raw is None:
        return None
    if not isinstance(raw, dict):
        errors.append('global_requirements must be an object')
        return None
    min_votes = None
    votes_raw = raw.get('min_votes_any_of')
    if votes_raw is not None:
        if not isinstance(votes_raw, dict):
            errors.append('global_requirements.min_votes_any_of must be an object')
        else:
            sources = _rating_sources(votes_raw.get('sources'),
                                      'global_requirements.min_votes_any_of.sources',
                                      errors, allowed=VOTE_SOURCES)
            minimum = _non_negative(votes_raw.get('min'),
                                    'global_requirements.min_votes_any_of.min', errors)
            if sources and minimum is not None:
                min_votes = MinVotesAnyOf(sources=sources, min=minimum)
            elif not sources:
                errors.append('global_requirements.min_votes_any_of.sources must not be empty')
    return GlobalRequirements(
        min_quality_score_normalized=_non_negative(
            raw.get('min_quality_score_normalized'),
            'global_requirements.min_quality_score_normalized', errors, integer=False),
        require_any_of_ratings_present=_rating_sources(
            raw.get('require_any_of_ratings_present'),
            'global_requirements.require_any_of_ratings_present', errors),
        min_votes_any_of=min_votes,
    )


def parse_policy_config(data) -> PolicyConfig:
    """
    Validate and normalize a raw config dict.

    Raises ValidationError listing every problem found.
    """
    if isinstance(data, PolicyConfig):
        return data
    if not isinstance(data, dict):
        raise ValidationError('Policy config must be an object')

    errors: List[str] = []

    allowed_countries = _codes(data, 'allowed_countries', errors, upper=True)
    blocked_countries = _codes(data, 'blocked_countries', errors, upper=True)
    allowed_languages = _codes(data, 'allowed_languages', errors, upper=False)
    blocked_languages = _codes(data, 'blocked_languages', errors, upper=False)

    overlap = sorted(set(allowed_countries) & set(blocked_countries))
    if overlap:
        errors.append(f'Countries cannot be both allowed and blocked: {", ".join(overlap)}')
    overlap = sorted(set(allowed_languages) & set(blocked_languages))
    if overlap:
        errors.append(f'Languages cannot be both allowed and blocked: {", ".join(overlap)}')

    country_mode = data.get('blocked_country_mode', BLOCKED_COUNTRY_MODE_ANY)
    if country_mode not in BLOCKED_COUNTRY_MODES:
        errors.append(f'blocked_country_mode must be one of {BLOCKED_COUNTRY_MODES}')

    eligibility_mode = data.get('eligibility_mode', ELIGIBILITY_MODE_STRICT)
    if eligibility_mode not in ELIGIBILITY_MODES:
        errors.append(f'eligibility_mode must be one of {ELIGIBILITY_MODES}')

    homepage = data.get('homepage') or {}
    min_relevance = homepage.get('min_relevance_score', 0) if isinstance(homepage, dict) else None
    if isinstance(min_relevance, bool) or not isinstance(min_relevance, (int, float)) \
            or not 0 <= min_relevance <= 100:
        errors.append('homepage.min_relevance_score must be a number within 0..100')
        min_relevance = 0

    config = PolicyConfig(
        allowed_countries=allowed_countries,
        blocked_countries=blocked_countries,
        blocked_country_mode=country_mode,
        allowed_languages=allowed_languages,
        blocked_languages=blocked_languages,
        global_providers=_names(data.get('global_providers'), 'global_providers', errors),
        breakout_rules=_parse_rules(data.get('breakout_rules'), errors),
        eligibility_mode=eligibility_mode,
        homepage_min_relevance_score=int(min_relevance),
        global_requirements=_parse_global_requirements(data.get('global_requirements'), errors),
    )

    if errors:
        raise ValidationError(f'Invalid policy config: {"; ".join(errors)}', errors)
    return config


# ── Default seed policy (YAML with hardcoded fallback) ───────────────────────

def _default_policy():
    """Hardcoded fallback if YAML is missing."""
    return {
        'allowed_countries': ['US', 'GB', 'CA', 'AU', 'IE', 'NZ'],
        'blocked_countries': [],
        'blocked_country_mode': BLOCKED_COUNTRY_MODE_ANY,
        'allowed_languages': ['en'],
        'blocked_languages': [],
        'global_providers': [],
        'breakout_rules': [],
        'eligibility_mode': ELIGIBILITY_MODE_STRICT,
        'homepage': {'min_relevance_score': 0},
    }


def load_default_policy() -> Dict:
    """Seed policy config from default_policy.yaml, falling back to hardcoded values."""
    config_path = os.path.join(os.path.dirname(__file__), 'default_policy.yaml')
    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
        logger.info("Default policy loaded from YAML")
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Default policy YAML unavailable (%s), using built-in defaults", e)
        data = _default_policy()
    return data
