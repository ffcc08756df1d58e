"""
Policy routes: create, list, activate and dry-run policy versions.
"""
from flask import Blueprint, jsonify, request

from catalog_policy.services import policy_store
from catalog_policy.services.dry_run import execute_dry_run

bp = Blueprint('policies', __name__, url_prefix='/api/policies')


@bp.route('', methods=['POST'])
def create_policy():
    """Store a new inactive policy version from the JSON body's policy_config."""
    data = request.get_json(silent=True) or {}
    config = data.get('policy_config', data)
    policy = policy_store.create(config)
    return jsonify(policy.to_dict()), 201


@bp.route('', methods=['GET'])
def list_policies():
    return jsonify({'policies': [p.to_dict() for p in policy_store.list_all()]})


@bp.route('/active')
def active_policy():
    policy = policy_store.get_active()
    if policy is None:
        return jsonify({'error': 'No active policy'}), 404
    return jsonify(policy.to_dict())


@bp.route('/<int:policy_id>')
def get_policy(policy_id):
    return jsonify(policy_store.get_policy(policy_id).to_dict())


@bp.route('/<int:policy_id>/activate', methods=['POST'])
def activate_policy(policy_id):
    return jsonify(policy_store.activate(policy_id).to_dict())


@bp.route('/dry-run', methods=['POST'])
def dry_run():
    """
    Preview a candidate policy.

    Body: {"policy_config": {...}, "options": {"mode": "top", "limit": 100}}
    """
    data = request.get_json(silent=True) or {}
    result = execute_dry_run(data.get('policy_config'), data.get('options') or {})
    return jsonify(result.to_dict())
