"""
Health routes: liveness, database and queue checks.
"""
import logging

from flask import Blueprint, jsonify
from sqlalchemy import text

from catalog_policy.database import get_session

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Liveness check."""
    return jsonify({'status': 'healthy'}), 200


@bp.route('/api/health')
def dependencies_health():
    """Database and Redis reachability."""
    checks = {}

    session = get_session()
    try:
        session.execute(text('SELECT 1'))
        checks['database'] = 'ok'
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        checks['database'] = 'unavailable'
    finally:
        session.close()

    try:
        from catalog_policy.extensions import redis_client
        redis_client.ping()
        checks['redis'] = 'ok'
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)
        checks['redis'] = 'unavailable'

    healthy = all(v == 'ok' for v in checks.values())
    return jsonify({'status': 'healthy' if healthy else 'degraded', 'checks': checks}), \
        200 if healthy else 503
