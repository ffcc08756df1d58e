"""
Catalog routes: public read modes and the operator item listing.
"""
from flask import Blueprint, jsonify, request

from catalog_policy.services.catalog_reads import (
    READ_MODE_CATALOG, homepage_items, list_admin_items, list_visible_items,
)

bp = Blueprint('catalog', __name__)


@bp.route('/api/catalog')
def catalog():
    payload = list_visible_items(
        mode=request.args.get('mode', READ_MODE_CATALOG),
        limit=request.args.get('limit', 50, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify(payload)


@bp.route('/api/catalog/homepage')
def homepage():
    return jsonify(homepage_items(limit=request.args.get('limit', 20, type=int)))


@bp.route('/api/admin/items')
def admin_items():
    """All ready items with their evaluation, whatever their eligibility."""
    items = list_admin_items(
        status=request.args.get('status') or None,
        limit=request.args.get('limit', 50, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return jsonify({'items': items})
