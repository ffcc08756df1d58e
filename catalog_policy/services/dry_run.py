"""
DryRunPreview: evaluate a candidate policy over a slice of the catalog.

Nothing is written. Options are validated before any database access, then
up to `limit` ready items are evaluated against the candidate and compared
with their status under the active policy. The preview stops taking new items
when the wall-clock budget runs out and returns what it has.

Modes:
    sample     random percentage of the catalog, in id order
    top        most popular first
    byType     most popular first, one media type
    byCountry  most popular first, one origin country
"""
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.config import (
    DRY_RUN_MAX_LIMIT, DRY_RUN_DEFAULT_LIMIT, DRY_RUN_TIMEOUT_SECONDS, MEDIA_TYPES,
)
from catalog_policy.database import get_session
from catalog_policy.errors import PersistenceError, ValidationError
from catalog_policy.engine.eligibility import evaluate_eligibility
from catalog_policy.engine.policy_config import parse_policy_config
from catalog_policy.engine.relevance import compute_relevance
from catalog_policy.engine.signals import MediaSignals, normalize_origin_countries
from catalog_policy.engine.types import ELIGIBLE, INELIGIBLE, PENDING, REVIEW
from catalog_policy.models.policy import CatalogPolicy
from catalog_policy.services.catalog_source import iter_candidates
from catalog_policy.services.evaluation_store import current_statuses

logger = logging.getLogger('services.dry_run')

MODE_SAMPLE = 'sample'
MODE_TOP = 'top'
MODE_BY_TYPE = 'byType'
MODE_BY_COUNTRY = 'byCountry'
DRY_RUN_MODES = [MODE_SAMPLE, MODE_TOP, MODE_BY_TYPE, MODE_BY_COUNTRY]


@dataclass(frozen=True)
class DryRunOptions:
    mode: str
    limit: int = DRY_RUN_DEFAULT_LIMIT
    sample_percent: Optional[int] = None
    media_type: Optional[str] = None
    country: Optional[str] = None
    seed: Optional[int] = None


@dataclass
class DryRunItem:
    media_item_id: str
    title: str
    current_status: Optional[str]
    proposed_status: str
    reasons: List[str]
    relevance_score: int
    breakout_rule_id: Optional[str]
    status_changed: bool


@dataclass
class DryRunSummary:
    mode: str
    limit: int
    total_evaluated: int = 0
    eligible: int = 0
    ineligible: int = 0
    pending: int = 0
    review: int = 0
    newly_eligible: int = 0
    newly_ineligible: int = 0
    unchanged: int = 0
    not_previously_evaluated: int = 0
    # changed into pending or review
    other_changes: int = 0
    reason_breakdown: List[Dict] = field(default_factory=list)
    execution_time_ms: int = 0
    timed_out: bool = False
    current_policy_version: Optional[int] = None


@dataclass
class DryRunResult:
    summary: DryRunSummary
    items: List[DryRunItem]

    def to_dict(self) -> Dict:
        return {
            'summary': asdict(self.summary),
            'items': [asdict(item) for item in self.items],
        }


def _int_option(raw, name: str, default, low: int, high: int, errors: List[str]):
    if raw is None:
        return default
    if isinstance(raw, bool):
        errors.append(f'{name} must be an integer')
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors.append(f'{name} must be an integer')
        return default
    if value != raw and not isinstance(raw, str):
        errors.append(f'{name} must be an integer')
        return default
    if not low <= value <= high:
        errors.append(f'{name} must be between {low} and {high}')
        return default
    return value


def parse_dry_run_options(raw: Optional[Dict]) -> DryRunOptions:
    """Validate preview options. Raises ValidationError; touches nothing else."""
    raw = raw or {}
    errors: List[str] = []

    mode = raw.get('mode')
    if mode not in DRY_RUN_MODES:
        errors.append(f'mode must be one of {DRY_RUN_MODES}')

    limit = _int_option(raw.get('limit'), 'limit', DRY_RUN_DEFAULT_LIMIT, 1, DRY_RUN_MAX_LIMIT, errors)
    sample_percent = _int_option(raw.get('sample_percent'), 'sample_percent',
                                 min(10, max(1, limit // 100)), 1, 100, errors)

    media_type = raw.get('media_type')
    if mode == MODE_BY_TYPE:
        if not media_type:
            errors.append('media_type is required for byType mode')
        elif media_type not in MEDIA_TYPES:
            errors.append(f'media_type must be one of {MEDIA_TYPES}')

    country = raw.get('country')
    if mode == MODE_BY_COUNTRY:
        if not country:
            errors.append('country is required for byCountry mode')
        elif not normalize_origin_countries([country]):
            errors.append('country must be a two-letter country code')
        else:
            country = normalize_origin_countries([country])[0]

    seed = raw.get('seed')
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        errors.append('seed must be an integer')

    if errors:
        raise ValidationError(f'Invalid dry-run options: {"; ".join(errors)}', errors)

    return DryRunOptions(
        mode=mode,
        limit=limit,
        sample_percent=sample_percent if mode == MODE_SAMPLE else None,
        media_type=media_type if mode == MODE_BY_TYPE else None,
        country=country if mode == MODE_BY_COUNTRY else None,
        seed=seed,
    )


def _select_candidates(session, options: DryRunOptions, deadline: float):
    """Signals for up to options.limit items picked by the mode. Stops at the deadline."""
    if options.mode == MODE_SAMPLE:
        rows = iter_candidates(session)
        rng = random.Random(options.seed)
        keep = lambda item: rng.random() * 100 < options.sample_percent
    elif options.mode == MODE_BY_TYPE:
        rows = iter_candidates(session, by_popularity=True, media_type=options.media_type)
        keep = lambda item: True
    elif options.mode == MODE_BY_COUNTRY:
        rows = iter_candidates(session, by_popularity=True)
        keep = lambda item: options.country in normalize_origin_countries(item.origin_countries)
    else:
        rows = iter_candidates(session, by_popularity=True)
        keep = lambda item: True

    selected = []
    timed_out = False
    for item, stats in rows:
        if time.monotonic() >= deadline:
            timed_out = True
            break
        if keep(item):
            selected.append(MediaSignals.from_row(item, stats))
            if len(selected) >= options.limit:
                break
    rows.close()
    return selected, timed_out


def execute_dry_run(candidate_config, options, timeout_seconds: float = DRY_RUN_TIMEOUT_SECONDS) -> DryRunResult:
    """
    Preview a candidate policy without persisting anything.

    `candidate_config` is a raw config dict (or PolicyConfig); `options` a raw
    dict or DryRunOptions. Both are validated before the database is touched.
    """
    if not isinstance(options, DryRunOptions):
        options = parse_dry_run_options(options)
    policy = parse_policy_config(candidate_config)

    started = time.monotonic()
    deadline = started + timeout_seconds

    session = get_session()
    try:
        active_version = session.scalar(
            select(CatalogPolicy.version).where(CatalogPolicy.is_active.is_(True)).limit(1)
        )
        candidates, timed_out = _select_candidates(session, options, deadline)
        current = current_statuses(session, [s.media_item_id for s in candidates], active_version)
    except SQLAlchemyError as e:
        logger.error("Dry run query failed", exc_info=True)
        raise PersistenceError('dry_run', None, e) from e
    finally:
        session.close()

    summary = DryRunSummary(mode=options.mode, limit=options.limit,
                            current_policy_version=active_version)
    status_counts = {ELIGIBLE: 0, INELIGIBLE: 0, PENDING: 0, REVIEW: 0}
    reason_counts = Counter()
    items = []

    for signals in candidates:
        if time.monotonic() >= deadline:
            timed_out = True
            break
        result = evaluate_eligibility(signals, policy)
        score = compute_relevance(signals, policy)
        current_status = current.get(signals.media_item_id)

        status_counts[result.status] += 1
        reason_counts.update(result.reasons)

        changed = current_status is not None and current_status != result.status
        if current_status is None:
            summary.not_previously_evaluated += 1
        elif not changed:
            summary.unchanged += 1
        elif result.status == ELIGIBLE:
            summary.newly_eligible += 1
        elif result.status == INELIGIBLE:
            summary.newly_ineligible += 1
        else:
            summary.other_changes += 1

        items.append(DryRunItem(
            media_item_id=signals.media_item_id,
            title=signals.title,
            current_status=current_status,
            proposed_status=result.status,
            reasons=list(result.reasons),
            relevance_score=score,
            breakout_rule_id=result.breakout_rule_id,
            status_changed=changed,
        ))

    summary.total_evaluated = len(items)
    summary.eligible = status_counts[ELIGIBLE]
    summary.ineligible = status_counts[INELIGIBLE]
    summary.pending = status_counts[PENDING]
    summary.review = status_counts[REVIEW]
    summary.reason_breakdown = [
        {'reason': reason, 'count': count}
        for reason, count in sorted(reason_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    summary.execution_time_ms = int((time.monotonic() - started) * 1000)
    summary.timed_out = timed_out

    logger.info("Dry run (%s, limit %d) evaluated %d items in %dms%s",
                options.mode, options.limit, summary.total_evaluated,
                summary.execution_time_ms, ' (timed out)' if timed_out else '')
    return DryRunResult(summary=summary, items=items)
