"""
Shopify identity verification.

Three ways a request can prove who it is:
- Customer account session token (JWT from the customer account UI extension)
- App proxy signature (storefront requests forwarded by Shopify)
- Admin session token (JWT from App Bridge in the embedded admin)

Each verifier returns an AuthResult instead of raising; routes inspect it and
build the error response themselves.

Session tokens are HS256 JWTs signed with the app's API secret:
- dest: Shop URL (https://shop.myshopify.com)
- aud: API key
- sub: Customer GID (customer tokens) or staff member GID (admin tokens)
- exp / nbf: validity window
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Optional
from urllib.parse import urlparse

import jwt
from flask import current_app, g, request

from ..services.shopify_client import normalize_customer_id
from ..utils.errors import ErrorCode, error_response

logger = logging.getLogger(__name__)

# Small clock skew between Shopify and this server
LEEWAY_SECONDS = 10


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    shop: Optional[str] = None
    customer_id: Optional[str] = None
    staff_id: Optional[str] = None
    error: Optional[str] = None
    code: str = ErrorCode.AUTH_REQUIRED.value
    status: int = 401

    @classmethod
    def success(cls, shop: str, customer_id: str = None, staff_id: str = None) -> 'AuthResult':
        return cls(ok=True, shop=shop, customer_id=customer_id, staff_id=staff_id, status=200, code='')

    @classmethod
    def failure(cls, error: str, code: ErrorCode = ErrorCode.AUTH_REQUIRED, status: int = 401) -> 'AuthResult':
        return cls(ok=False, error=error, code=code.value, status=status)

    def to_response(self):
        return error_response(self.error or 'Authentication required', self.code, self.status, log_error=False)


def shop_from_dest(dest: str) -> Optional[str]:
    """'https://shop.myshopify.com/admin' -> 'shop.myshopify.com'"""
    if not dest:
        return None
    parsed = urlparse(dest if '://' in dest else f'https://{dest}')
    host = (parsed.hostname or '').lower()
    return host if '.' in host else None


def bearer_token() -> Optional[str]:
    auth_header = request.headers.get('Authorization', '')
    if auth_header.lower().startswith('bearer '):
        return auth_header.split(' ', 1)[1].strip() or None
    return None


def decode_session_token(token: str) -> dict:
    """
    Decode and verify a Shopify session token.

    Raises:
        jwt.InvalidTokenError: on any signature, audience or expiry failure
    """
    api_key = current_app.config.get('SHOPIFY_API_KEY', '')
    return jwt.decode(
        token,
        current_app.config.get('SHOPIFY_API_SECRET', ''),
        algorithms=['HS256'],
        audience=api_key or None,
        leeway=LEEWAY_SECONDS,
        options={
            'verify_aud': bool(api_key),
            'verify_exp': True,
        }
    )


def _verify_token(token: Optional[str]):
    """Returns (payload, shop) or an AuthResult failure."""
    if not current_app.config.get('SHOPIFY_API_SECRET'):
        return AuthResult.failure('Shopify API secret is not configured', ErrorCode.INTERNAL_ERROR, 500)
    if not token:
        return AuthResult.failure('Missing session token')

    try:
        payload = decode_session_token(token)
    except jwt.ExpiredSignatureError:
        return AuthResult.failure('Session token expired', ErrorCode.INVALID_TOKEN)
    except jwt.InvalidAudienceError:
        return AuthResult.failure('Session token audience mismatch', ErrorCode.INVALID_TOKEN)
    except jwt.InvalidTokenError as e:
        logger.info(f'Rejected session token: {e}')
        return AuthResult.failure('Invalid session token', ErrorCode.INVALID_TOKEN)

    shop = shop_from_dest(str(payload.get('dest') or payload.get('iss') or ''))
    if not shop:
        return AuthResult.failure('Session token has no shop', ErrorCode.INVALID_TOKEN)
    return payload, shop


def verify_customer_session(token: str = None) -> AuthResult:
    """Verify a customer account session token; sub carries the customer."""
    verified = _verify_token(token if token is not None else bearer_token())
    if isinstance(verified, AuthResult):
        return verified
    payload, shop = verified

    sub = str(payload.get('sub') or '')
    customer_id = normalize_customer_id(sub)
    if not customer_id or not customer_id.isdigit():
        return AuthResult.failure('Customer is not logged in', ErrorCode.AUTH_REQUIRED)
    return AuthResult.success(shop, customer_id=customer_id)


def verify_admin_session(token: str = None) -> AuthResult:
    """Verify an App Bridge admin session token."""
    verified = _verify_token(token if token is not None else bearer_token())
    if isinstance(verified, AuthResult):
        return verified
    payload, shop = verified
    return AuthResult.success(shop, staff_id=payload.get('sub'))


def app_proxy_signature(params: dict, secret: str) -> str:
    """
    Hex HMAC-SHA256 over the sorted query parameters.

    Every parameter except hmac and signature, as key=value joined with '&'.
    Repeated keys are joined with ','.
    """
    pairs = []
    for key in sorted(k for k in params if k not in ('hmac', 'signature')):
        value = params[key]
        if isinstance(value, (list, tuple)):
            value = ','.join(value)
        pairs.append(f'{key}={value}')
    message = '&'.join(pairs)
    return hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()


def verify_app_proxy(args=None) -> AuthResult:
    """Verify an app proxy request signed by Shopify."""
    args = args if args is not None else request.args
    secret = current_app.config.get('SHOPIFY_API_SECRET', '')
    if not secret:
        return AuthResult.failure('Shopify API secret is not configured', ErrorCode.INTERNAL_ERROR, 500)

    received = args.get('hmac', '')
    if not received:
        return AuthResult.failure('Missing app proxy signature', ErrorCode.INVALID_SIGNATURE)

    params = {key: args.getlist(key) if hasattr(args, 'getlist') else args[key] for key in args}
    computed = app_proxy_signature(params, secret)
    if not hmac.compare_digest(computed, received):
        return AuthResult.failure('Invalid app proxy signature', ErrorCode.INVALID_SIGNATURE)

    shop = (args.get('shop') or '').strip().lower()
    if not shop:
        return AuthResult.failure('Missing shop', ErrorCode.INVALID_REQUEST, 400)

    customer_id = normalize_customer_id(args.get('logged_in_customer_id') or args.get('customer_id'))
    if not customer_id:
        return AuthResult.failure('Customer is not logged in', ErrorCode.AUTH_REQUIRED)
    return AuthResult.success(shop, customer_id=customer_id)


def require_auth(verifier):
    """
    Decorator that runs a verifier and stores the result on g.auth.

    Usage:
        @require_auth(verify_customer_session)
        def loyalty():
            shop = g.auth.shop
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            result = verifier()
            if not result.ok:
                return result.to_response()
            g.auth = result
            return f(*args, **kwargs)
        return decorated_function
    return decorator
