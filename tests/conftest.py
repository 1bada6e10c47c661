"""
Shared fixtures for the rewards engine tests.

The app fixture keeps one application context pushed for the whole test, so
fixtures, services and test-client requests share a single session on the
in-memory SQLite database.
"""
import base64
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import jwt
import pytest

from rewards import create_app
from rewards.extensions import db

SHOP = 'test-shop.myshopify.com'
CUSTOMER_ID = '7890123456789'
API_KEY = 'test-api-key'
API_SECRET = 'test-api-secret'
COLLECTION_GID = 'gid://shopify/Collection/424242'
DISCOUNT_NODE_ID = 'gid://shopify/DiscountCodeNode/1001'


def generate_hmac_signature(payload: bytes, secret: str = API_SECRET) -> str:
    """Generate Shopify-compatible webhook HMAC signature."""
    return base64.b64encode(
        hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).digest()
    ).decode('utf-8')


def make_session_token(shop: str = SHOP, sub: str = None, secret: str = API_SECRET,
                       aud: str = API_KEY, expires_in: int = 60) -> str:
    """Build a Shopify-style session token (HS256)."""
    now = int(time.time())
    payload = {
        'iss': f'https://{shop}/admin',
        'dest': f'https://{shop}',
        'aud': aud,
        'sub': sub if sub is not None else f'gid://shopify/Customer/{CUSTOMER_ID}',
        'exp': now + expires_in,
        'nbf': now - 5,
        'iat': now - 5,
        'jti': 'test-jti',
    }
    return jwt.encode(payload, secret, algorithm='HS256')


def post_webhook(client, topic_path: str, payload: dict, shop: str = SHOP,
                 webhook_id: str = 'wh-1', secret: str = API_SECRET):
    body = json.dumps(payload).encode('utf-8')
    return client.post(
        f'/webhook/{topic_path}',
        data=body,
        headers={
            'Content-Type': 'application/json',
            'X-Shopify-Shop-Domain': shop,
            'X-Shopify-Webhook-Id': webhook_id,
            'X-Shopify-Topic': topic_path,
            'X-Shopify-Hmac-SHA256': generate_hmac_signature(body, secret),
        },
    )


@pytest.fixture
def app():
    """Application with a fresh in-memory database."""
    app = create_app('testing')
    ctx = app.app_context()
    ctx.push()
    db.create_all()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_shopify(app):
    """Remote client double installed through SHOPIFY_CLIENT_FACTORY."""
    fake = MagicMock()
    fake.fetch_customer_tags.return_value = []
    fake.resolve_collection_by_handle.return_value = COLLECTION_GID
    fake.fetch_product_collection_ids.return_value = {}
    fake.create_discount_code.return_value = DISCOUNT_NODE_ID
    fake.deactivate_discount.return_value = None
    app.config['SHOPIFY_CLIENT_FACTORY'] = lambda shop: fake
    yield fake
    app.config['SHOPIFY_CLIENT_FACTORY'] = None


@pytest.fixture
def shop_settings(app):
    """Persisted settings for the test shop (defaults plus an 800-point step)."""
    from rewards.services.settings_service import SettingsProvider

    return SettingsProvider().upsert(
        SHOP,
        redemption_steps=[500, 800, 1000],
        redemption_value_map={'500': 10, '800': 15, '1000': 25},
        excluded_customer_tags=['Wholesale'],
    )


@pytest.fixture
def funded_customer(app, shop_settings):
    """A customer with 1200 points earned from one order."""
    from rewards.models.ledger import LedgerSource, LedgerType
    from rewards.services.ledger_service import record_movement

    record_movement(
        SHOP, CUSTOMER_ID, LedgerType.EARN, 1200, LedgerSource.ORDER, 'seed-order',
        description='Seed points', inc_earned=1200,
    )
    db.session.commit()
    return CUSTOMER_ID
