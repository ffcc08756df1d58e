"""
RunAggregator: run counters derived from EvaluationStore, never incremented.

aggregate_counters() is a read-side GROUP BY over the evaluations a run wrote
plus the length of the run's error sample. sync_run_counters() is the only
writer of the counter columns on the run row; they are a display cache.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Dict

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.database import get_session
from catalog_policy.errors import NotFoundError, PersistenceError
from catalog_policy.engine.types import ELIGIBLE, INELIGIBLE, PENDING, REVIEW
from catalog_policy.models.evaluation import MediaCatalogEvaluation
from catalog_policy.models.evaluation_run import CatalogEvaluationRun

logger = logging.getLogger('services.run_aggregator')


@dataclass
class RunCounters:
    processed: int = 0
    eligible: int = 0
    ineligible: int = 0
    pending: int = 0
    review: int = 0
    errors: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


def aggregate_for_run(session, run: CatalogEvaluationRun) -> RunCounters:
    """Counters for a run row already loaded in the caller's session."""
    rows = session.execute(
        select(MediaCatalogEvaluation.status, func.count())
        .where(MediaCatalogEvaluation.run_id == run.id)
        .group_by(MediaCatalogEvaluation.status)
    ).all()
    by_status = dict(rows)
    return RunCounters(
        processed=sum(by_status.values()),
        eligible=by_status.get(ELIGIBLE, 0),
        ineligible=by_status.get(INELIGIBLE, 0),
        pending=by_status.get(PENDING, 0),
        review=by_status.get(REVIEW, 0),
        errors=len(run.error_sample or []),
    )


def apply_counters(run: CatalogEvaluationRun, counters: RunCounters):
    run.processed = counters.processed
    run.eligible = counters.eligible
    run.ineligible = counters.ineligible
    run.pending = counters.pending
    run.review = counters.review
    run.errors = counters.errors


def aggregate_counters(run_id: str) -> RunCounters:
    session = get_session()
    try:
        run = session.get(CatalogEvaluationRun, run_id)
        if run is None:
            raise NotFoundError('Run', run_id)
        return aggregate_for_run(session, run)
    except SQLAlchemyError as e:
        logger.error("Failed to aggregate counters for run %s", run_id, exc_info=True)
        raise PersistenceError('aggregate_counters', run_id, e) from e
    finally:
        session.close()


def sync_run_counters(run_id: str) -> RunCounters:
    """Recompute counters and write them onto the run row."""
    session = get_session()
    try:
        run = session.get(CatalogEvaluationRun, run_id)
        if run is None:
            raise NotFoundError('Run', run_id)
        counters = aggregate_for_run(session, run)
        apply_counters(run, counters)
        session.commit()
        logger.debug("Synced counters for run %s: %s", run_id, counters, extra={'run_id': run_id})
        return counters
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to sync counters for run %s", run_id, exc_info=True)
        raise PersistenceError('sync_run_counters', run_id, e) from e
    finally:
        session.close()
