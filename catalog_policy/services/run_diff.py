"""
Run diff: what promoting a run would change for the public catalog.

Compares the evaluations written for a run's policy version with those of the
active version. An item missing from one side counts as status 'none'.
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.database import get_session
from catalog_policy.errors import InvalidRunStateTransitionError, NotFoundError, PersistenceError
from catalog_policy.engine.run_status import DIFFABLE_RUN_STATUSES, normalize_run_status
from catalog_policy.engine.types import ELIGIBLE
from catalog_policy.models.evaluation import MediaCatalogEvaluation
from catalog_policy.models.evaluation_run import CatalogEvaluationRun
from catalog_policy.models.policy import CatalogPolicy
from catalog_policy.services.catalog_source import load_titles

logger = logging.getLogger('services.run_diff')

STATUS_NONE = 'none'


def is_regression(old_status: str, new_status: str) -> bool:
    """Item leaves the catalog."""
    return old_status == ELIGIBLE and new_status != ELIGIBLE


def is_improvement(old_status: str, new_status: str) -> bool:
    """Item enters the catalog."""
    return old_status != ELIGIBLE and new_status == ELIGIBLE


@dataclass
class DiffCounts:
    regressions: int = 0
    improvements: int = 0
    unchanged: int = 0
    still_ineligible: int = 0


@dataclass
class DiffSample:
    media_item_id: str
    title: str
    old_status: str
    new_status: str
    popularity_score: Optional[float] = None


@dataclass
class DiffReport:
    run_id: str
    target_policy_version: int
    current_policy_version: Optional[int]
    counts: DiffCounts
    top_regressions: List[DiffSample] = field(default_factory=list)
    top_improvements: List[DiffSample] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


def _statuses(session, version: Optional[int]) -> Dict[str, str]:
    if version is None:
        return {}
    rows = session.execute(
        select(MediaCatalogEvaluation.media_item_id, MediaCatalogEvaluation.status)
        .where(MediaCatalogEvaluation.policy_version == version)
    ).all()
    return dict(rows)


def _top_samples(session, changes, sample_size: int) -> List[DiffSample]:
    titles = load_titles(session, [media_id for media_id, _, _ in changes])
    samples = []
    for media_id, old, new in changes:
        title, popularity = titles.get(media_id, ('', None))
        samples.append(DiffSample(media_item_id=media_id, title=title or '',
                                  old_status=old, new_status=new,
                                  popularity_score=popularity))
    samples.sort(key=lambda s: (s.popularity_score is None, -(s.popularity_score or 0), s.media_item_id))
    return samples[:sample_size]


def compute_run_diff(run_id: str, sample_size: int = 20) -> DiffReport:
    """Diff a prepared or promoted run against the active policy version."""
    session = get_session()
    try:
        run = session.get(CatalogEvaluationRun, run_id)
        if run is None:
            raise NotFoundError('Run', run_id)
        status = normalize_run_status(run.status)
        if status not in DIFFABLE_RUN_STATUSES:
            raise InvalidRunStateTransitionError(run_id, 'diff', status)

        current_version = session.scalar(
            select(CatalogPolicy.version).where(CatalogPolicy.is_active.is_(True)).limit(1)
        )
        old = _statuses(session, current_version)
        new = _statuses(session, run.target_policy_version)

        counts = DiffCounts()
        regressions, improvements = [], []
        for media_id in sorted(set(old) | set(new)):
            old_status = old.get(media_id, STATUS_NONE)
            new_status = new.get(media_id, STATUS_NONE)
            if is_regression(old_status, new_status):
                counts.regressions += 1
                regressions.append((media_id, old_status, new_status))
            elif is_improvement(old_status, new_status):
                counts.improvements += 1
                improvements.append((media_id, old_status, new_status))
            elif new_status == ELIGIBLE:
                counts.unchanged += 1
            else:
                counts.still_ineligible += 1

        report = DiffReport(
            run_id=run_id,
            target_policy_version=run.target_policy_version,
            current_policy_version=current_version,
            counts=counts,
            top_regressions=_top_samples(session, regressions, sample_size),
            top_improvements=_top_samples(session, improvements, sample_size),
        )
    except SQLAlchemyError as e:
        logger.error("Failed to diff run %s", run_id, exc_info=True)
        raise PersistenceError('compute_run_diff', run_id, e) from e
    finally:
        session.close()

    logger.info("Diff for run %s: %s", run_id, report.counts, extra={'run_id': run_id})
    return report
