"""Tests for catalog_policy.jobs -- enqueueing and the worker-side run loop."""
from unittest.mock import patch

import pytest

from catalog_policy import jobs
from catalog_policy.errors import PersistenceError, ValidationError
from catalog_policy.services import run_orchestrator as orchestrator


@pytest.fixture(autouse=True)
def _no_logging_reset():
    """The job entry points reconfigure the root logger; keep pytest's handlers."""
    with patch('catalog_policy.jobs.configure_logging'):
        yield


@pytest.fixture
def candidate(make_policy, make_media_item):
    make_policy(1, active=True)
    for i in range(7):
        make_media_item(f'm-{i}')
    return make_policy(2)


class TestLaunchRun:

    def test_starts_run_and_enqueues_job(self, candidate, mock_queue):
        run = jobs.launch_run(candidate, batch_size=3)
        assert run.status == 'running'
        mock_queue.enqueue.assert_called_once()
        args, kwargs = mock_queue.enqueue.call_args
        assert args == (jobs.run_evaluation_job, run.id, 3)
        assert kwargs['job_id'] == f'catalog-run-{run.id}'
        assert kwargs['job_timeout'] == 3600

    def test_invalid_policy_enqueues_nothing(self, make_policy, mock_queue):
        active = make_policy(1, active=True)
        with pytest.raises(ValidationError):
            jobs.launch_run(active)
        mock_queue.enqueue.assert_not_called()

    def test_enqueue_stale_sweep(self, mock_queue):
        jobs.enqueue_stale_sweep(15)
        mock_queue.enqueue.assert_called_once_with(jobs.sweep_stale_runs_job, 15)


class TestRunEvaluationJob:

    def test_processes_all_batches_and_finalizes(self, candidate):
        run = orchestrator.start_run(candidate)
        result = jobs.run_evaluation_job(run.id, batch_size=3)
        assert result['finalized'] is True
        assert result['batches'] == 3
        assert result['counters']['processed'] == 7
        assert orchestrator.get_run(run.id).status == 'prepared'

    def test_cancelled_run_stops(self, candidate):
        run = orchestrator.start_run(candidate)
        orchestrator.cancel_run(run.id)
        result = jobs.run_evaluation_job(run.id)
        assert result['finalized'] is False
        assert orchestrator.get_run(run.id).status == 'cancelled'

    def test_store_failure_marks_run_failed(self, candidate):
        run = orchestrator.start_run(candidate)
        boom = PersistenceError('process_batch', run.id, RuntimeError('db down'))
        with patch('catalog_policy.jobs.process_batch', side_effect=boom):
            with pytest.raises(PersistenceError):
                jobs.run_evaluation_job(run.id)
        snapshot = orchestrator.get_run(run.id)
        assert snapshot.status == 'failed'
        assert snapshot.error_sample[0]['type'] == 'RUN_FAILED'


def test_sweep_stale_runs_job(make_policy, make_run):
    from datetime import timedelta
    from catalog_policy.database import utcnow
    policy_id = make_policy(2)
    make_run('run-stale', policy_id, 2, started_at=utcnow() - timedelta(hours=2))
    results = jobs.sweep_stale_runs_job(max_age_minutes=5)
    assert results == [{
        'run_id': 'run-stale', 'finalized': True, 'reason': 'Successfully finalized',
        'counters': {'processed': 0, 'eligible': 0, 'ineligible': 0,
                     'pending': 0, 'review': 0, 'errors': 0},
        'total': 0,
    }]
