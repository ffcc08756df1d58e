"""
RunOrchestrator: lifecycle of a batch re-evaluation run.

  running ──finalize──▶ prepared ──promote──▶ promoted
     │                     │
     ├──fail──▶ failed     └──cancel──▶ cancelled
     └──cancel──▶ cancelled

A run snapshots the count of ready catalog items when it starts. Batches walk
the catalog by media id from the run's cursor, evaluate each item and upsert
the result. finalize() moves running → prepared only when the aggregated
processed count reaches the snapshot, through a guarded UPDATE so concurrent
finalizers cannot both win.

The batch loop is driven externally (see catalog_policy.jobs).
"""
import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError

from catalog_policy.config import (
    RUN_BATCH_SIZE, STALE_RUN_MAX_AGE_MINUTES, ERROR_SAMPLE_LIMIT,
    PROMOTION_COVERAGE_THRESHOLD, PROMOTION_MAX_ERRORS,
)
from catalog_policy.database import get_session, utcnow
from catalog_policy.errors import (
    AnomalyError, InvalidRunStateTransitionError, NotFoundError,
    PersistenceError, ValidationError,
)
from catalog_policy.engine.eligibility import evaluate_eligibility
from catalog_policy.engine.policy_config import parse_policy_config
from catalog_policy.engine.relevance import compute_relevance
from catalog_policy.engine.run_status import (
    RUNNING, PREPARED, FAILED, CANCELLED, PROMOTED,
    CANCELLABLE_RUN_STATUSES, PROMOTABLE_RUN_STATUSES,
    normalize_run_status, stored_labels,
)
from catalog_policy.engine.signals import MediaSignals
from catalog_policy.engine.types import EvaluationRecord
from catalog_policy.models.evaluation import MediaCatalogEvaluation
from catalog_policy.models.evaluation_run import CatalogEvaluationRun
from catalog_policy.models.policy import CatalogPolicy
from catalog_policy.services.catalog_source import count_ready_items, fetch_page
from catalog_policy.services.evaluation_store import upsert_in_session
from catalog_policy.services.policy_store import activate_in_session
from catalog_policy.services.run_aggregator import (
    RunCounters, aggregate_for_run, apply_counters, sync_run_counters,
)

logger = logging.getLogger('services.run_orchestrator')

# ── Promotion blocking reasons ────────────────────────────────────────────────
RUN_NOT_SUCCESS = 'RUN_NOT_SUCCESS'
COVERAGE_NOT_MET = 'COVERAGE_NOT_MET'
ERRORS_EXCEEDED = 'ERRORS_EXCEEDED'
ALREADY_PROMOTED = 'ALREADY_PROMOTED'

_STACK_LIMIT = 500


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class RunSnapshot:
    """Detached view of a run row with its status already normalized."""
    id: str
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    cursor: Optional[str]
    target_policy_id: int
    target_policy_version: int
    total_ready_snapshot: int
    snapshot_cutoff: Optional[datetime]
    counters: RunCounters
    error_sample: List[Dict] = field(default_factory=list)
    promoted_at: Optional[datetime] = None
    promoted_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: CatalogEvaluationRun) -> 'RunSnapshot':
        return cls(
            id=row.id,
            status=normalize_run_status(row.status),
            started_at=row.started_at,
            finished_at=row.finished_at,
            cursor=row.cursor,
            target_policy_id=row.target_policy_id,
            target_policy_version=row.target_policy_version,
            total_ready_snapshot=row.total_ready_snapshot or 0,
            snapshot_cutoff=row.snapshot_cutoff,
            counters=RunCounters(
                processed=row.processed or 0,
                eligible=row.eligible or 0,
                ineligible=row.ineligible or 0,
                pending=row.pending or 0,
                review=row.review or 0,
                errors=row.errors or 0,
            ),
            error_sample=list(row.error_sample or []),
            promoted_at=row.promoted_at,
            promoted_by=row.promoted_by,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'status': self.status,
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'cursor': self.cursor,
            'target_policy_id': self.target_policy_id,
            'target_policy_version': self.target_policy_version,
            'total_ready_snapshot': self.total_ready_snapshot,
            'snapshot_cutoff': _iso(self.snapshot_cutoff),
            **self.counters.to_dict(),
            'error_sample': self.error_sample,
            'promoted_at': _iso(self.promoted_at),
            'promoted_by': self.promoted_by,
        }


@dataclass
class BatchResult:
    run_id: str
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    cursor: Optional[str] = None
    exhausted: bool = False
    stopped: bool = False           # run left `running` before or during the batch


@dataclass
class FinalizeResult:
    run_id: str
    finalized: bool
    reason: str
    counters: Optional[RunCounters] = None
    total: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            'run_id': self.run_id,
            'finalized': self.finalized,
            'reason': self.reason,
            'counters': self.counters.to_dict() if self.counters else None,
            'total': self.total,
        }


def _error_entry(media_item_id: str, exc: BaseException) -> Dict:
    stack = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {
        'media_item_id': media_item_id,
        'error': str(exc) or type(exc).__name__,
        'stack': stack[:_STACK_LIMIT],
        'timestamp': utcnow().isoformat(),
    }


def _with_errors(sample, entries: List[Dict]) -> List[Dict]:
    """Newest first, bounded to ERROR_SAMPLE_LIMIT."""
    return (list(reversed(entries)) + list(sample or []))[:ERROR_SAMPLE_LIMIT]


def _load_run(session, run_id: str, for_update: bool = False) -> CatalogEvaluationRun:
    run = session.get(CatalogEvaluationRun, run_id, with_for_update=for_update or None)
    if run is None:
        raise NotFoundError('Run', run_id)
    return run


# ── Start ─────────────────────────────────────────────────────────────────────

def start_run(policy_id: int) -> RunSnapshot:
    """
    Create a running run for a stored, inactive policy.

    Snapshots the number of ready catalog items as the completion target.
    Raises ValidationError when the policy is already active or already has a
    running run.
    """
    session = get_session()
    try:
        policy = session.get(CatalogPolicy, policy_id)
        if policy is None:
            raise NotFoundError('Policy', policy_id)
        if policy.is_active:
            raise ValidationError(f'Policy {policy_id} (version {policy.version}) is already active')

        in_progress = session.scalar(
            select(CatalogEvaluationRun.id).where(
                CatalogEvaluationRun.target_policy_id == policy_id,
                CatalogEvaluationRun.status.in_(stored_labels(RUNNING)),
            ).limit(1)
        )
        if in_progress:
            raise ValidationError(f'Run {in_progress} is already in progress for policy {policy_id}')

        cutoff = utcnow()
        total = count_ready_items(session, cutoff)
        run = CatalogEvaluationRun(
            id=str(uuid.uuid4()),
            status=RUNNING,
            started_at=cutoff,
            target_policy_id=policy.id,
            target_policy_version=policy.version,
            total_ready_snapshot=total,
            snapshot_cutoff=cutoff,
            error_sample=[],
        )
        session.add(run)
        session.commit()
        snapshot = RunSnapshot.from_row(run)
        logger.info("Started run %s for policy version %s (%d items)",
                    snapshot.id, snapshot.target_policy_version, total,
                    extra={'run_id': snapshot.id, 'policy_id': policy_id})
        return snapshot
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to start run for policy %s", policy_id, exc_info=True)
        raise PersistenceError('start_run', policy_id, e) from e
    finally:
        session.close()


# ── Batch loop ────────────────────────────────────────────────────────────────

def process_batch(run_id: str, batch_size: int = RUN_BATCH_SIZE,
                  cursor: Optional[str] = None) -> BatchResult:
    """
    Evaluate the next page of catalog items for a run.

    Starts after `cursor`, or after the run's stored cursor when omitted, so
    several workers can take disjoint ranges. Items this run already wrote
    are skipped. A failing item goes into the error sample and the batch
    carries on; a failing store write aborts the batch with PersistenceError.
    """
    session = get_session()
    try:
        run = _load_run(session, run_id)
        status = normalize_run_status(run.status)
        if status != RUNNING:
            logger.info("Run %s is %s, not processing", run_id, status, extra={'run_id': run_id})
            return BatchResult(run_id=run_id, cursor=run.cursor, exhausted=True, stopped=True)

        policy_row = session.get(CatalogPolicy, run.target_policy_id)
        if policy_row is None:
            raise NotFoundError('Policy', run.target_policy_id)
        policy = parse_policy_config(policy_row.policy_config)
        version = run.target_policy_version

        start_after = cursor if cursor is not None else run.cursor
        page = fetch_page(session, run.snapshot_cutoff, start_after, batch_size)
        if not page:
            return BatchResult(run_id=run_id, cursor=start_after, exhausted=True)

        page_ids = [item.id for item, _ in page]
        already_written = set(session.scalars(
            select(MediaCatalogEvaluation.media_item_id).where(
                MediaCatalogEvaluation.policy_version == version,
                MediaCatalogEvaluation.run_id == run_id,
                MediaCatalogEvaluation.media_item_id.in_(page_ids),
            )
        ).all())

        evaluated_at = utcnow()
        records, failures = [], []
        for item, stats in page:
            if item.id in already_written:
                continue
            try:
                signals = MediaSignals.from_row(item, stats)
                result = evaluate_eligibility(signals, policy)
                score = compute_relevance(signals, policy)
            except Exception as e:
                logger.warning("Evaluation failed for item %s in run %s: %s", item.id, run_id, e,
                               extra={'run_id': run_id, 'media_item_id': item.id})
                failures.append(_error_entry(item.id, e))
                continue
            records.append(EvaluationRecord(
                media_item_id=item.id,
                policy_version=version,
                status=result.status,
                reasons=list(result.reasons),
                relevance_score=score,
                breakout_rule_id=result.breakout_rule_id,
                evaluated_at=evaluated_at,
                run_id=run_id,
            ))

        upsert_in_session(session, records)

        if failures:
            run.error_sample = _with_errors(run.error_sample, failures)

        last_id = page_ids[-1]
        session.execute(
            update(CatalogEvaluationRun)
            .where(
                CatalogEvaluationRun.id == run_id,
                or_(CatalogEvaluationRun.cursor.is_(None), CatalogEvaluationRun.cursor < last_id),
            )
            .values(cursor=last_id)
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Batch failed for run %s", run_id, exc_info=True)
        raise PersistenceError('process_batch', run_id, e) from e
    finally:
        session.close()

    sync_run_counters(run_id)
    return BatchResult(
        run_id=run_id,
        processed=len(records),
        skipped=len(already_written),
        errors=len(failures),
        cursor=last_id,
        exhausted=len(page) < batch_size,
    )


def record_error(run_id: str, message: str, **details) -> None:
    """Append a run-level entry to the bounded error sample."""
    session = get_session()
    try:
        run = _load_run(session, run_id, for_update=True)
        entry = {'message': message, 'timestamp': utcnow().isoformat(), **details}
        run.error_sample = _with_errors(run.error_sample, [entry])
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to record error for run %s", run_id, exc_info=True)
        raise PersistenceError('record_run_error', run_id, e) from e
    finally:
        session.close()


# ── Finalization ──────────────────────────────────────────────────────────────

def finalize_run(run_id: str) -> FinalizeResult:
    """
    Move a run to prepared once every snapshotted item has an evaluation.

    Never raises for lifecycle outcomes: a missing run, a run that is no
    longer running, unfinished work and a lost race all come back as a
    FinalizeResult with finalized=False.
    """
    session = get_session()
    try:
        run = session.get(CatalogEvaluationRun, run_id)
        if run is None:
            return FinalizeResult(run_id=run_id, finalized=False, reason='Run not found')

        status = normalize_run_status(run.status)
        if status != RUNNING:
            return FinalizeResult(run_id=run_id, finalized=False,
                                  reason=f'Run already transitioned: {status}')

        counters = aggregate_for_run(session, run)
        total = run.total_ready_snapshot or 0

        if counters.processed < total:
            apply_counters(run, counters)
            session.commit()
            return FinalizeResult(
                run_id=run_id, finalized=False,
                reason=f'Still processing: {counters.processed}/{total}',
                counters=counters, total=total,
            )

        error_sample = list(run.error_sample or [])
        if counters.processed > total:
            anomaly = AnomalyError(run_id, counters.processed, total)
            logger.warning("%s", anomaly, extra={'run_id': run_id})
            error_sample = _with_errors(error_sample, [anomaly.to_sample(utcnow().isoformat())])
            counters.errors = len(error_sample)

        result = session.execute(
            update(CatalogEvaluationRun)
            .where(
                CatalogEvaluationRun.id == run_id,
                CatalogEvaluationRun.status.in_(stored_labels(RUNNING)),
            )
            .values(
                status=PREPARED,
                finished_at=utcnow(),
                processed=counters.processed,
                eligible=counters.eligible,
                ineligible=counters.ineligible,
                pending=counters.pending,
                review=counters.review,
                errors=counters.errors,
                error_sample=error_sample,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            logger.info("Run %s was finalized by another process", run_id, extra={'run_id': run_id})
            return FinalizeResult(
                run_id=run_id, finalized=False,
                reason='Run was already transitioned by another process',
                counters=counters, total=total,
            )

        session.commit()
        logger.info("Finalized run %s: %d/%d processed", run_id, counters.processed, total,
                    extra={'run_id': run_id})
        return FinalizeResult(run_id=run_id, finalized=True, reason='Successfully finalized',
                              counters=counters, total=total)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to finalize run %s", run_id, exc_info=True)
        raise PersistenceError('finalize_run', run_id, e) from e
    finally:
        session.close()


def _stuck_on_item_errors(run_id: str, counters: RunCounters, total: int) -> bool:
    """
    True when the run has walked past its last catalog item but failed items
    keep processed below the snapshot. Failed items are never retried, so such
    a run cannot reach prepared.
    """
    if counters.errors == 0 or counters.processed + counters.errors < total:
        return False
    session = get_session()
    try:
        run = session.get(CatalogEvaluationRun, run_id)
        if run is None:
            return False
        return not fetch_page(session, run.snapshot_cutoff, run.cursor, 1)
    except SQLAlchemyError as e:
        logger.error("Failed to check remaining items for run %s", run_id, exc_info=True)
        raise PersistenceError('finalize_stale_runs', run_id, e) from e
    finally:
        session.close()


def finalize_stale_runs(max_age_minutes: int = STALE_RUN_MAX_AGE_MINUTES) -> List[FinalizeResult]:
    """
    Finalize every run still running after max_age_minutes.

    A stale run whose cursor is exhausted and whose processed plus errors
    covers the snapshot is marked failed instead of left running.
    """
    cutoff = utcnow() - timedelta(minutes=max_age_minutes)
    session = get_session()
    try:
        run_ids = session.scalars(
            select(CatalogEvaluationRun.id).where(
                CatalogEvaluationRun.status.in_(stored_labels(RUNNING)),
                CatalogEvaluationRun.started_at < cutoff,
            ).order_by(CatalogEvaluationRun.started_at)
        ).all()
    except SQLAlchemyError as e:
        logger.error("Failed to list stale runs", exc_info=True)
        raise PersistenceError('finalize_stale_runs', None, e) from e
    finally:
        session.close()

    if run_ids:
        logger.info("Found %d stale running runs", len(run_ids))
    results = []
    for run_id in run_ids:
        result = finalize_run(run_id)
        if (result.reason.startswith('Still processing')
                and _stuck_on_item_errors(run_id, result.counters, result.total)):
            result = _fail_stuck_run(result)
        results.append(result)
    return results


def _fail_stuck_run(result: FinalizeResult) -> FinalizeResult:
    counters = result.counters
    reason = (f'Evaluation failed for {counters.errors} items: '
              f'{counters.processed}/{result.total} processed')
    try:
        fail_run(result.run_id, reason)
    except InvalidRunStateTransitionError:
        logger.info("Run %s left running before it could be failed", result.run_id,
                    extra={'run_id': result.run_id})
        return result
    logger.warning("Marked stale run %s failed: %s", result.run_id, reason,
                   extra={'run_id': result.run_id})
    return FinalizeResult(run_id=result.run_id, finalized=False, reason=f'Run failed: {reason}',
                          counters=counters, total=result.total)


# ── Reads ─────────────────────────────────────────────────────────────────────

def get_run(run_id: str) -> RunSnapshot:
    session = get_session()
    try:
        return RunSnapshot.from_row(_load_run(session, run_id))
    except SQLAlchemyError as e:
        logger.error("Failed to load run %s", run_id, exc_info=True)
        raise PersistenceError('get_run', run_id, e) from e
    finally:
        session.close()


def list_runs(status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[RunSnapshot]:
    """Runs newest first, optionally filtered by (current) status."""
    session = get_session()
    try:
        stmt = select(CatalogEvaluationRun)
        if status:
            stmt = stmt.where(CatalogEvaluationRun.status.in_(stored_labels(normalize_run_status(status))))
        stmt = stmt.order_by(CatalogEvaluationRun.started_at.desc()).limit(limit).offset(offset)
        return [RunSnapshot.from_row(row) for row in session.scalars(stmt).all()]
    except SQLAlchemyError as e:
        logger.error("Failed to list runs", exc_info=True)
        raise PersistenceError('list_runs', None, e) from e
    finally:
        session.close()


def _coverage(processed: int, total: int) -> float:
    return processed / total if total else 1.0


def _blocking_reasons(status: str, coverage: float, errors: int,
                      coverage_threshold: float, max_errors: int) -> List[str]:
    reasons = []
    if status == PROMOTED:
        reasons.append(ALREADY_PROMOTED)
    elif status != PREPARED:
        reasons.append(RUN_NOT_SUCCESS)
    if coverage < coverage_threshold:
        reasons.append(COVERAGE_NOT_MET)
    if errors > max_errors:
        reasons.append(ERRORS_EXCEEDED)
    return reasons


def get_run_status(run_id: str, coverage_threshold: float = PROMOTION_COVERAGE_THRESHOLD,
                   max_errors: int = PROMOTION_MAX_ERRORS) -> Dict:
    """Run details with freshly aggregated counters and promotion readiness."""
    session = get_session()
    try:
        run = _load_run(session, run_id)
        snapshot = RunSnapshot.from_row(run)
        counters = aggregate_for_run(session, run)
    except SQLAlchemyError as e:
        logger.error("Failed to load status for run %s", run_id, exc_info=True)
        raise PersistenceError('get_run_status', run_id, e) from e
    finally:
        session.close()

    coverage = _coverage(counters.processed, snapshot.total_ready_snapshot)
    blocking = _blocking_reasons(snapshot.status, coverage, counters.errors,
                                 coverage_threshold, max_errors)
    out = snapshot.to_dict()
    out.update(counters.to_dict())
    out['coverage'] = coverage
    out['ready_to_promote'] = not blocking
    out['blocking_reasons'] = blocking
    return out


# ── Transitions ───────────────────────────────────────────────────────────────

def promote_run(run_id: str, promoted_by: Optional[str] = None,
                coverage_threshold: float = PROMOTION_COVERAGE_THRESHOLD,
                max_errors: int = PROMOTION_MAX_ERRORS) -> RunSnapshot:
    """
    Make a prepared run's policy version the active one.

    The policy activation and the run's move to promoted commit together.
    """
    session = get_session()
    try:
        run = _load_run(session, run_id, for_update=True)
        status = normalize_run_status(run.status)
        if status not in PROMOTABLE_RUN_STATUSES:
            raise InvalidRunStateTransitionError(run_id, 'promote', status)

        counters = aggregate_for_run(session, run)
        coverage = _coverage(counters.processed, run.total_ready_snapshot or 0)
        if coverage < coverage_threshold:
            raise ValidationError(
                f'Coverage {coverage:.2%} is below the promotion threshold {coverage_threshold:.2%}'
            )
        if counters.errors > max_errors:
            raise ValidationError(f'Run has {counters.errors} errors (max {max_errors})')

        activate_in_session(session, run.target_policy_id)
        run.status = PROMOTED
        run.promoted_at = utcnow()
        run.promoted_by = promoted_by
        session.commit()
        snapshot = RunSnapshot.from_row(run)
        logger.info("Promoted run %s: policy version %s is now active",
                    run_id, snapshot.target_policy_version,
                    extra={'run_id': run_id, 'policy_id': snapshot.target_policy_id})
        return snapshot
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to promote run %s", run_id, exc_info=True)
        raise PersistenceError('promote_run', run_id, e) from e
    finally:
        session.close()


def _transition(run_id: str, action: str, allowed, target: str,
                error: Optional[Dict] = None) -> RunSnapshot:
    session = get_session()
    try:
        run = _load_run(session, run_id, for_update=True)
        status = normalize_run_status(run.status)
        if status not in allowed:
            raise InvalidRunStateTransitionError(run_id, action, status)
        run.status = target
        if run.finished_at is None:
            run.finished_at = utcnow()
        if error is not None:
            run.error_sample = _with_errors(run.error_sample, [error])
        session.commit()
        logger.info("Run %s %s -> %s", run_id, status, target, extra={'run_id': run_id})
        return RunSnapshot.from_row(run)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to %s run %s", action, run_id, exc_info=True)
        raise PersistenceError(f'{action}_run', run_id, e) from e
    finally:
        session.close()


def cancel_run(run_id: str) -> RunSnapshot:
    return _transition(run_id, 'cancel', CANCELLABLE_RUN_STATUSES, CANCELLED)


def fail_run(run_id: str, reason: str = '') -> RunSnapshot:
    error = None
    if reason:
        error = {'type': 'RUN_FAILED', 'message': reason, 'timestamp': utcnow().isoformat()}
    return _transition(run_id, 'fail', {RUNNING}, FAILED, error)
