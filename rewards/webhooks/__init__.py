"""
Shopify webhook handling.

Every delivery is verified against the app's API secret before its body is
parsed.
"""
import hmac
import hashlib
import base64
from functools import wraps
from flask import request, jsonify, current_app, g


def verify_shopify_webhook_signature(data: bytes, hmac_header: str, secret: str) -> bool:
    """
    Verify Shopify webhook HMAC-SHA256 signature.

    Shopify signs the raw body with the app's API secret and sends the
    base64 digest in X-Shopify-Hmac-SHA256.

    Args:
        data: Raw request body bytes
        hmac_header: The X-Shopify-Hmac-SHA256 header value
        secret: The app's API secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        current_app.logger.warning('No API secret configured for webhook verification')
        return False

    if not hmac_header:
        current_app.logger.warning('No HMAC header in webhook request')
        return False

    computed_hmac = base64.b64encode(
        hmac.new(secret.encode('utf-8'), data, hashlib.sha256).digest()
    ).decode('utf-8')

    return hmac.compare_digest(computed_hmac, hmac_header.strip())


def require_webhook_verification(f):
    """
    Decorator that verifies the webhook signature and stores the shop in g.

    Usage:
        @webhooks_bp.route('/orders/paid', methods=['POST'])
        @require_webhook_verification
        def handle_order_paid():
            shop = g.webhook_shop
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_app.config.get('WEBHOOK_VERIFY_HMAC', True):
            hmac_header = request.headers.get('X-Shopify-Hmac-SHA256', '')
            secret = current_app.config.get('SHOPIFY_API_SECRET', '')
            if not verify_shopify_webhook_signature(request.get_data(), hmac_header, secret):
                current_app.logger.warning(
                    f"Invalid webhook signature from {request.headers.get('X-Shopify-Shop-Domain', 'unknown')}"
                )
                return jsonify({'error': 'Invalid signature'}), 401
        else:
            current_app.logger.debug('Skipping webhook verification')

        g.webhook_shop = request.headers.get('X-Shopify-Shop-Domain', '').strip().lower()
        return f(*args, **kwargs)

    return decorated_function


from .shopify import webhooks_bp

__all__ = [
    'webhooks_bp',
    'verify_shopify_webhook_signature',
    'require_webhook_verification',
]
