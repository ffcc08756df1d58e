"""
Run routes: start, inspect, finalize, promote, cancel and diff evaluation runs.
"""
from flask import Blueprint, jsonify, request

from catalog_policy.jobs import launch_run
from catalog_policy.services import run_orchestrator
from catalog_policy.services.run_diff import compute_run_diff

bp = Blueprint('runs', __name__, url_prefix='/api/runs')


@bp.route('', methods=['POST'])
def create_run():
    """Start a run for {"policy_id": N} and enqueue it."""
    data = request.get_json(silent=True) or {}
    policy_id = data.get('policy_id')
    if not isinstance(policy_id, int) or isinstance(policy_id, bool):
        return jsonify({'error': 'policy_id (integer) is required'}), 400
    run = launch_run(policy_id)
    return jsonify(run.to_dict()), 202


@bp.route('', methods=['GET'])
def list_runs():
    runs = run_orchestrator.list_runs(
        status=request.args.get('status') or None,
        limit=request.args.get('limit', 50, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify({'runs': [r.to_dict() for r in runs]})


@bp.route('/<run_id>')
def run_status(run_id):
    return jsonify(run_orchestrator.get_run_status(run_id))


@bp.route('/<run_id>/finalize', methods=['POST'])
def finalize(run_id):
    result = run_orchestrator.finalize_run(run_id)
    if result.reason == 'Run not found':
        return jsonify(result.to_dict()), 404
    return jsonify(result.to_dict())


@bp.route('/<run_id>/promote', methods=['POST'])
def promote(run_id):
    data = request.get_json(silent=True) or {}
    kwargs = {}
    try:
        if 'coverage_threshold' in data:
            kwargs['coverage_threshold'] = float(data['coverage_threshold'])
        if 'max_errors' in data:
            kwargs['max_errors'] = int(data['max_errors'])
    except (TypeError, ValueError):
        return jsonify({'error': 'coverage_threshold and max_errors must be numeric'}), 400
    run = run_orchestrator.promote_run(run_id, promoted_by=data.get('promoted_by'), **kwargs)
    return jsonify(run.to_dict())


@bp.route('/<run_id>/cancel', methods=['POST'])
def cancel(run_id):
    return jsonify(run_orchestrator.cancel_run(run_id).to_dict())


@bp.route('/<run_id>/diff')
def diff(run_id):
    sample_size = request.args.get('sample_size', 20, type=int)
    return jsonify(compute_run_diff(run_id, sample_size=sample_size).to_dict())
