"""
Admin API for the embedded app.

Authenticated with the App Bridge session token; every operation is scoped
to the shop in that token.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.shopify_auth import require_auth, verify_admin_session
from ..services.ledger_service import adjust_points, reconcile_balance
from ..services.redemption_service import RedemptionService
from ..services.settings_service import SettingsProvider
from ..services.shopify_client import normalize_customer_id
from ..utils.errors import bad_request, ErrorCode

admin_bp = Blueprint('admin', __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True) or {}
    return data if isinstance(data, dict) else {}


@admin_bp.route('/settings', methods=['GET'])
@require_auth(verify_admin_session)
def get_settings():
    settings = SettingsProvider().get(g.auth.shop)
    return jsonify({'shop': g.auth.shop, 'settings': settings.to_dict()})


@admin_bp.route('/settings', methods=['PUT'])
@require_auth(verify_admin_session)
def update_settings():
    """
    Update shop settings.

    Values are normalized and clamped the same way they are when read, so an
    out-of-range value is stored at the nearest bound.
    """
    data = _json_body()
    if not data:
        return bad_request('No settings provided')

    try:
        settings = SettingsProvider().upsert(g.auth.shop, **data)
    except ValueError as e:
        return bad_request(str(e))

    return jsonify({'success': True, 'settings': settings.to_dict()})


@admin_bp.route('/customers/<customer_id>/adjust', methods=['POST'])
@require_auth(verify_admin_session)
def adjust_customer_points(customer_id):
    """
    Manual points adjustment.

    Request body:
    {
        "delta": -100,
        "reason": "Goodwill correction",
        "sourceId": "optional idempotency key"
    }
    """
    data = _json_body()
    delta = data.get('delta')
    if isinstance(delta, str) and delta.strip().lstrip('-').isdigit():
        delta = int(delta.strip())
    if delta is None:
        return bad_request('delta is required', ErrorCode.INVALID_AMOUNT)

    reason = data.get('reason') or f'Manual adjustment by {g.auth.staff_id or "staff"}'
    result = adjust_points(
        g.auth.shop,
        normalize_customer_id(customer_id),
        delta,
        reason=reason,
        source_id=data.get('sourceId'),
    )
    return jsonify({'success': True, **result})


@admin_bp.route('/customers/<customer_id>/reconcile', methods=['POST'])
@require_auth(verify_admin_session)
def reconcile_customer(customer_id):
    """Rebuild the cached balance from the ledger."""
    result = reconcile_balance(g.auth.shop, normalize_customer_id(customer_id))
    return jsonify({'success': True, **result})


@admin_bp.route('/redemptions/<int:redemption_id>/void', methods=['POST'])
@require_auth(verify_admin_session)
def void_redemption(redemption_id):
    """Void an unused code and restore its points."""
    data = _json_body()
    reason = data.get('reason') or 'Voided by admin'
    redemption = RedemptionService(g.auth.shop).void_redemption(redemption_id, reason=reason)
    return jsonify({'success': True, 'redemption': redemption.to_dict()})
