"""
Shopify App Proxy endpoints.

Handles requests from store.myshopify.com/apps/rewards. Shopify signs each
request with the app's API secret and appends logged_in_customer_id for
signed-in customers.

App proxy documentation: https://shopify.dev/docs/apps/build/online-store/display-dynamic-store-data/app-proxies
"""
from flask import Blueprint, jsonify, g

from ..middleware.shopify_auth import require_auth, verify_app_proxy
from ..services.loyalty_service import get_customer_loyalty_payload

proxy_bp = Blueprint('proxy', __name__)


@proxy_bp.route('/loyalty.json', methods=['GET'])
@require_auth(verify_app_proxy)
def loyalty_json():
    response = jsonify(get_customer_loyalty_payload(g.auth.shop, g.auth.customer_id))
    # Per-customer data must not be cached by the storefront CDN
    response.headers['Cache-Control'] = 'no-store'
    return response
