"""
Flask application factory.

Creates and configures the admin API app, registers blueprints and maps the
engine's error taxonomy onto HTTP responses.
"""
import logging

from flask import Flask, jsonify

logger = logging.getLogger('catalog_policy')


def _register_error_handlers(app):
    from catalog_policy.errors import (
        InvalidRunStateTransitionError, InvalidRunStatusError,
        NotFoundError, PersistenceError, ValidationError,
    )

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        return jsonify({'error': str(e), 'details': e.errors}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({'error': str(e)}), 404

    @app.errorhandler(InvalidRunStateTransitionError)
    def handle_transition(e):
        return jsonify({'error': str(e), 'state': e.state}), 409

    @app.errorhandler(InvalidRunStatusError)
    def handle_bad_status(e):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(PersistenceError)
    def handle_persistence(e):
        logger.error("Store failure in request: %s", e)
        return jsonify({'error': 'Storage unavailable', 'operation': e.operation}), 503


def create_app():
    """Create and configure the Flask application."""
    from catalog_policy.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    app.json.sort_keys = False

    _register_error_handlers(app)

    # Register blueprints
    from catalog_policy.routes.health import bp as health_bp
    from catalog_policy.routes.policies import bp as policies_bp
    from catalog_policy.routes.runs import bp as runs_bp
    from catalog_policy.routes.catalog import bp as catalog_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(policies_bp)
    app.register_blueprint(runs_bp)
    app.register_blueprint(catalog_bp)

    # Import models so Base.metadata knows about them.
    # Schema is managed by Alembic, no create_all() here.
    import importlib
    importlib.import_module('catalog_policy.models.policy')
    importlib.import_module('catalog_policy.models.evaluation')
    importlib.import_module('catalog_policy.models.evaluation_run')
    importlib.import_module('catalog_policy.models.media_item')

    return app
