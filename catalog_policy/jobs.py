"""
Background jobs: the external scheduler that drives evaluation runs.

launch_run() creates the run and enqueues run_evaluation_job on RQ. The job
walks the catalog batch by batch, then asks the orchestrator to finalize.
sweep_stale_runs_job() is meant for a periodic schedule (rq-scheduler, cron)
and finalizes runs whose workers stalled.

Run a worker with:  rq worker catalog-policy
"""
import logging

from catalog_policy.config import (
    RQ_QUEUE_NAME, RUN_BATCH_SIZE, RUN_JOB_TIMEOUT, STALE_RUN_MAX_AGE_MINUTES,
)
from catalog_policy.errors import CatalogPolicyError, InvalidRunStateTransitionError
from catalog_policy.logging_config import configure_logging
from catalog_policy.services.run_orchestrator import (
    RunSnapshot, fail_run, finalize_run, finalize_stale_runs, process_batch, start_run,
)

logger = logging.getLogger('catalog_policy.jobs')


# ── Lazy RQ queue (avoids import-time Redis connection) ──────────────────────

_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from catalog_policy.extensions import redis_client
        from rq import Queue
        _queue = Queue(RQ_QUEUE_NAME, connection=redis_client)
    return _queue


# ── Public API ────────────────────────────────────────────────────────────────

def launch_run(policy_id: int, batch_size: int = RUN_BATCH_SIZE) -> RunSnapshot:
    """Create a run for policy_id and hand it to a background worker."""
    run = start_run(policy_id)
    job = _get_queue().enqueue(
        run_evaluation_job, run.id, batch_size,
        job_timeout=RUN_JOB_TIMEOUT,
        job_id=f'catalog-run-{run.id}',
    )
    logger.info("Enqueued run %s as job %s", run.id, job.id, extra={'run_id': run.id})
    return run


def enqueue_stale_sweep(max_age_minutes: int = STALE_RUN_MAX_AGE_MINUTES):
    return _get_queue().enqueue(sweep_stale_runs_job, max_age_minutes)


# ── Jobs (executed by RQ workers) ─────────────────────────────────────────────

def run_evaluation_job(run_id: str, batch_size: int = RUN_BATCH_SIZE) -> dict:
    """
    Process every batch of a run, then finalize it.

    A store failure marks the run failed and re-raises so RQ records the job
    as failed too.
    """
    configure_logging()
    batches = 0
    try:
        while True:
            result = process_batch(run_id, batch_size)
            batches += 1
            if result.stopped:
                logger.info("Run %s stopped after %d batches", run_id, batches,
                            extra={'run_id': run_id})
                return {'run_id': run_id, 'batches': batches, 'finalized': False,
                        'reason': 'Run is no longer running'}
            if result.exhausted:
                break
    except CatalogPolicyError as e:
        logger.error("Run %s aborted: %s", run_id, e, exc_info=True, extra={'run_id': run_id})
        try:
            fail_run(run_id, str(e))
        except InvalidRunStateTransitionError:
            logger.info("Run %s already left running, not marking failed", run_id)
        raise

    outcome = finalize_run(run_id)
    logger.info("Run %s finished %d batches: %s", run_id, batches, outcome.reason,
                extra={'run_id': run_id})
    return {'run_id': run_id, 'batches': batches, **outcome.to_dict()}


def sweep_stale_runs_job(max_age_minutes: int = STALE_RUN_MAX_AGE_MINUTES) -> list:
    configure_logging()
    results = finalize_stale_runs(max_age_minutes)
    finalized = sum(1 for r in results if r.finalized)
    logger.info("Stale sweep: %d checked, %d finalized", len(results), finalized)
    return [r.to_dict() for r in results]
