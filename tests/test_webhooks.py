"""
Tests for the Shopify webhook endpoints.

Covers:
- HMAC verification
- delivery dedupe on X-Shopify-Webhook-Id
- order paid / refund / cancel outcomes
- failures are recorded and still acknowledged
- privacy and uninstall topics
"""
import json
from unittest.mock import patch

from rewards.extensions import db
from rewards.models import (
    OrderPointsSnapshot,
    PointsLedgerEntry,
    PrivacyEvent,
    ShopInstallation,
    ShopSettings,
    WebhookError,
    WebhookEvent,
)
from rewards.services.ledger_service import get_balance
from rewards.webhooks import verify_shopify_webhook_signature

from conftest import SHOP, CUSTOMER_ID, API_SECRET, generate_hmac_signature, post_webhook


ORDER = {
    'id': 820982911946154508,
    'name': '#1001',
    'currency': 'USD',
    'processed_at': '2026-03-01T10:00:00-05:00',
    'customer': {'id': int(CUSTOMER_ID), 'tags': 'VIP'},
    'line_items': [
        {'id': 1, 'product_id': 632910392, 'price': '120.00', 'quantity': 1, 'tags': ''},
    ],
}


class TestSignature:

    def test_valid_signature(self, app):
        body = b'{"id": 1}'
        assert verify_shopify_webhook_signature(body, generate_hmac_signature(body), API_SECRET)

    def test_tampered_body(self, app):
        signature = generate_hmac_signature(b'{"id": 1}')
        assert not verify_shopify_webhook_signature(b'{"id": 2}', signature, API_SECRET)

    def test_missing_header(self, app):
        assert not verify_shopify_webhook_signature(b'{}', '', API_SECRET)

    def test_wrong_secret_rejected(self, client):
        response = post_webhook(client, 'orders/paid', ORDER, secret='not-the-secret')

        assert response.status_code == 401
        assert response.get_json()['error'] == 'Invalid signature'
        assert WebhookEvent.query.count() == 0

    def test_missing_shop_header(self, client):
        body = json.dumps(ORDER).encode('utf-8')
        response = client.post(
            '/webhook/orders/paid',
            data=body,
            headers={
                'Content-Type': 'application/json',
                'X-Shopify-Hmac-SHA256': generate_hmac_signature(body),
            },
        )

        assert response.status_code == 400


class TestOrderWebhooks:

    def test_order_paid_earns(self, client, shop_settings):
        response = post_webhook(client, 'orders/paid', ORDER)

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['outcome'] == 'PROCESSED'
        assert data['code'] == 'EARNED'
        assert data['points'] == 120
        assert get_balance(SHOP, CUSTOMER_ID).balance == 120

        event = WebhookEvent.query.filter_by(webhook_id='wh-1').one()
        assert event.topic == 'orders/paid'
        assert event.outcome == 'PROCESSED'
        assert event.outcome_code == 'EARNED'
        assert event.resource_id == str(ORDER['id'])
        assert event.processed_at is not None

    def test_duplicate_delivery_acknowledged(self, client, shop_settings):
        post_webhook(client, 'orders/paid', ORDER)

        response = post_webhook(client, 'orders/paid', ORDER)

        assert response.status_code == 200
        assert response.get_json() == {'success': True, 'duplicate': True}
        assert PointsLedgerEntry.query.count() == 1

    def test_redelivery_under_new_id_is_still_idempotent(self, client, shop_settings):
        """A new webhook id reaches the engine, whose own keys stop the double award."""
        post_webhook(client, 'orders/paid', ORDER, webhook_id='wh-1')

        response = post_webhook(client, 'orders/paid', ORDER, webhook_id='wh-2')

        data = response.get_json()
        assert data['outcome'] == 'SKIPPED'
        assert data['code'] == 'ALREADY_PROCESSED'
        assert get_balance(SHOP, CUSTOMER_ID).balance == 120

    def test_refund_then_cancel(self, client, shop_settings):
        post_webhook(client, 'orders/paid', ORDER, webhook_id='wh-1')

        refund = {
            'id': 929361462,
            'order_id': ORDER['id'],
            'refund_line_items': [{
                'quantity': 1,
                'line_item': {'id': 1, 'product_id': 632910392, 'price': '30.00', 'quantity': 1},
            }],
        }
        response = post_webhook(client, 'refunds/create', refund, webhook_id='wh-2')
        assert response.get_json()['points'] == 30

        response = post_webhook(client, 'orders/cancelled', {'id': ORDER['id']}, webhook_id='wh-3')
        assert response.get_json()['points'] == 90
        assert get_balance(SHOP, CUSTOMER_ID).balance == 0

    def test_handler_failure_recorded_and_acknowledged(self, client, shop_settings):
        with patch('rewards.webhooks.shopify.EventProcessor.process_order_paid',
                   side_effect=RuntimeError('database went away')):
            response = post_webhook(client, 'orders/paid', ORDER)

        assert response.status_code == 200
        assert response.get_json() == {'success': False, 'outcome': 'FAILED'}

        error = WebhookError.query.one()
        assert error.topic == 'orders/paid'
        assert 'database went away' in error.error

        event = WebhookEvent.query.filter_by(webhook_id='wh-1').one()
        assert event.outcome == 'FAILED'
        assert event.outcome_code == 'RuntimeError'


class TestPrivacyWebhooks:

    def test_data_request_recorded(self, client):
        payload = {'shop_domain': SHOP, 'customer': {'id': int(CUSTOMER_ID)}, 'orders_requested': [1]}

        response = post_webhook(client, 'customers/data_request', payload)

        assert response.get_json()['code'] == 'DATA_REQUEST_RECORDED'
        event = PrivacyEvent.query.one()
        assert event.topic == 'customers/data_request'
        assert event.payload['orders_requested'] == [1]

    def test_customer_redact_deletes_customer_rows(self, client, funded_customer):
        post_webhook(client, 'orders/paid', ORDER, webhook_id='wh-1')

        response = post_webhook(
            client, 'customers/redact', {'customer': {'id': int(CUSTOMER_ID)}}, webhook_id='wh-2'
        )

        assert response.get_json()['code'] == 'CUSTOMER_REDACTED'
        assert get_balance(SHOP, CUSTOMER_ID) is None
        assert PointsLedgerEntry.query.count() == 0
        assert OrderPointsSnapshot.query.count() == 0

    def test_customer_redact_without_customer(self, client):
        response = post_webhook(client, 'customers/redact', {'shop_domain': SHOP})

        assert response.get_json()['code'] == 'NO_CUSTOMER'

    def test_shop_redact_clears_shop(self, client, funded_customer):
        post_webhook(client, 'orders/paid', ORDER, webhook_id='wh-1')

        response = post_webhook(client, 'shop/redact', {'shop_domain': SHOP}, webhook_id='wh-2')

        assert response.get_json()['code'] == 'SHOP_REDACTED'
        assert PointsLedgerEntry.query.count() == 0
        assert db.session.get(ShopSettings, SHOP) is None
        assert [e.webhook_id for e in WebhookEvent.query.all()] == ['wh-2']

    def test_other_shops_untouched_by_redact(self, client, funded_customer):
        post_webhook(client, 'shop/redact', {'shop_domain': 'other.myshopify.com'},
                     shop='other.myshopify.com')

        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200


class TestAppUninstalled:

    def test_uninstall_drops_token_keeps_points(self, client, funded_customer):
        db.session.add(ShopInstallation(shop=SHOP, access_token='shpat_x', scope='write_discounts'))
        db.session.commit()

        response = post_webhook(client, 'app/uninstalled', {'domain': SHOP})

        assert response.get_json()['code'] == 'UNINSTALLED'
        installation = db.session.get(ShopInstallation, SHOP)
        assert installation.access_token is None
        assert installation.uninstalled_at is not None
        assert db.session.get(ShopSettings, SHOP) is None
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200
