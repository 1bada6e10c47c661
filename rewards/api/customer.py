"""
Customer account API.

Called from the customer account UI extension with a Shopify customer session
token in the Authorization header. The shop and customer come from the
token, never from the request body.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.shopify_auth import require_auth, verify_customer_session
from ..services.loyalty_service import get_customer_loyalty_payload
from ..services.redemption_service import RedemptionService
from ..utils.errors import bad_request, ErrorCode

customer_bp = Blueprint('customer', __name__)


def _requested_points(data: dict):
    points = data.get('points')
    if isinstance(points, str) and points.strip().isdigit():
        return int(points.strip())
    return points


@customer_bp.route('/loyalty', methods=['GET'])
@require_auth(verify_customer_session)
def get_loyalty():
    """Balance, public settings, active code and recent activity."""
    return jsonify(get_customer_loyalty_payload(g.auth.shop, g.auth.customer_id))


@customer_bp.route('/redeem', methods=['POST'])
@require_auth(verify_customer_session)
def redeem():
    """
    Exchange points for a single-use discount code.

    Request body:
    {
        "points": 500,
        "idemKey": "optional client key"
    }

    The idempotency key may also arrive as an Idempotency-Key header.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return bad_request('Request body must be a JSON object')

    points = _requested_points(data)
    if points is None:
        return bad_request('points is required', ErrorCode.INVALID_AMOUNT)

    idem_key = data.get('idemKey') or request.headers.get('Idempotency-Key')

    service = RedemptionService(g.auth.shop)
    result = service.issue_redemption_code(g.auth.customer_id, points, idem_key=idem_key)
    return jsonify({'ok': True, 'redemption': result})
