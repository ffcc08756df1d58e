"""Tests for /api/runs endpoints."""
import pytest


@pytest.fixture
def candidate(make_policy, make_media_item):
    make_policy(1, active=True)
    make_media_item('a')
    return make_policy(2)


class TestCreateRun:

    def test_starts_and_enqueues(self, client, candidate, mock_queue):
        resp = client.post('/api/runs', json={'policy_id': candidate})
        assert resp.status_code == 202
        data = resp.get_json()
        assert data['status'] == 'running'
        assert data['total_ready_snapshot'] == 1
        mock_queue.enqueue.assert_called_once()

    @pytest.mark.parametrize('body', [{}, {'policy_id': 'two'}, {'policy_id': True}])
    def test_policy_id_required(self, client, mock_queue, body):
        assert client.post('/api/runs', json=body).status_code == 400
        mock_queue.enqueue.assert_not_called()

    def test_unknown_policy_404(self, client, mock_queue):
        assert client.post('/api/runs', json={'policy_id': 99}).status_code == 404

    def test_active_policy_400(self, client, make_policy, mock_queue):
        active = make_policy(1, active=True)
        assert client.post('/api/runs', json={'policy_id': active}).status_code == 400


class TestRunReads:

    def test_list_with_status(self, client, candidate, make_run):
        make_run('run-a', candidate, 2, status='pending')
        make_run('run-b', candidate, 2, status='failed')
        resp = client.get('/api/runs?status=running')
        runs = resp.get_json()['runs']
        assert [r['id'] for r in runs] == ['run-a']
        assert runs[0]['status'] == 'running'

    def test_list_unknown_status_400(self, client):
        assert client.get('/api/runs?status=bogus').status_code == 400

    def test_status(self, client, candidate, make_run):
        make_run('run-a', candidate, 2, total_ready_snapshot=1)
        data = client.get('/api/runs/run-a').get_json()
        assert data['coverage'] == 0.0
        assert data['ready_to_promote'] is False

    def test_status_unknown_404(self, client):
        assert client.get('/api/runs/nope').status_code == 404


class TestRunActions:

    def test_finalize_unknown_404(self, client):
        resp = client.post('/api/runs/nope/finalize')
        assert resp.status_code == 404
        assert resp.get_json()['reason'] == 'Run not found'

    def test_finalize_still_processing(self, client, candidate, make_run):
        make_run('run-a', candidate, 2, total_ready_snapshot=1)
        data = client.post('/api/runs/run-a/finalize').get_json()
        assert data['finalized'] is False
        assert data['reason'] == 'Still processing: 0/1'

    def test_promote_running_conflict(self, client, candidate, make_run):
        make_run('run-a', candidate, 2)
        resp = client.post('/api/runs/run-a/promote', json={})
        assert resp.status_code == 409
        assert resp.get_json()['state'] == 'running'

    def test_promote_prepared(self, client, candidate, make_run, make_evaluation):
        make_run('run-p', candidate, 2, status='prepared', total_ready_snapshot=1)
        make_evaluation('a', 2, run_id='run-p')
        resp = client.post('/api/runs/run-p/promote', json={'promoted_by': 'ops'})
        assert resp.status_code == 200
        assert resp.get_json()['status'] == 'promoted'
        assert client.get('/api/policies/active').get_json()['id'] == candidate

    def test_promote_below_threshold_400(self, client, candidate, make_run):
        make_run('run-p', candidate, 2, status='prepared', total_ready_snapshot=1)
        assert client.post('/api/runs/run-p/promote', json={}).status_code == 400

    def test_promote_non_numeric_gate_400(self, client, candidate, make_run):
        make_run('run-p', candidate, 2, status='prepared', total_ready_snapshot=1)
        resp = client.post('/api/runs/run-p/promote', json={'coverage_threshold': 'most'})
        assert resp.status_code == 400

    def test_cancel(self, client, candidate, make_run):
        make_run('run-a', candidate, 2)
        resp = client.post('/api/runs/run-a/cancel')
        assert resp.status_code == 200
        assert resp.get_json()['status'] == 'cancelled'

    def test_diff_running_conflict(self, client, candidate, make_run):
        make_run('run-a', candidate, 2)
        assert client.get('/api/runs/run-a/diff').status_code == 409

    def test_diff_prepared(self, client, candidate, make_run, make_evaluation):
        make_run('run-p', candidate, 2, status='prepared')
        make_evaluation('a', 2, run_id='run-p')
        data = client.get('/api/runs/run-p/diff').get_json()
        assert data['counts']['improvements'] == 1
