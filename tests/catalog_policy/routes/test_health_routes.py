"""Tests for /health and /api/health."""
from unittest.mock import patch


class TestHealth:

    def test_liveness(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'healthy'}

    def test_dependencies_ok(self, client, mock_redis):
        resp = client.get('/api/health')
        assert resp.status_code == 200
        assert resp.get_json()['checks'] == {'database': 'ok', 'redis': 'ok'}

    def test_redis_down_is_degraded(self, client, mock_redis):
        mock_redis.ping.side_effect = ConnectionError('refused')
        resp = client.get('/api/health')
        assert resp.status_code == 503
        data = resp.get_json()
        assert data['status'] == 'degraded'
        assert data['checks']['redis'] == 'unavailable'

    def test_database_down_is_degraded(self, client, mock_redis):
        with patch('catalog_policy.routes.health.get_session') as mock_get:
            mock_get.return_value.execute.side_effect = RuntimeError('no db')
            resp = client.get('/api/health')
        assert resp.status_code == 503
        assert resp.get_json()['checks']['database'] == 'unavailable'
