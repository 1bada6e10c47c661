"""
Shopify webhook routes.

Flow for every topic:
1. Verify webhook signature (401 when invalid)
2. Record the delivery on (shop, X-Shopify-Webhook-Id); a repeat returns 200
3. Run the topic handler and store its outcome on the delivery
4. On failure, roll back, store a WebhookError, mark the delivery FAILED and
   still return 200 so Shopify does not retry into the same error
"""
import uuid
from typing import Any, Callable, Dict

from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from . import require_webhook_verification
from ..extensions import db
from ..models import WebhookError, WebhookEvent, WebhookOutcome
from ..services.event_processor import EventProcessor, ProcessingOutcome
from ..services.order_events import OrderCancelledEvent, OrderPaidEvent, RefundCreatedEvent
from ..services.privacy_service import (
    purge_webhook_events,
    record_data_request,
    redact_customer,
    redact_shop,
    uninstall_shop,
)
from ..utils.time import utcnow

webhooks_bp = Blueprint('webhooks', __name__)

Handler = Callable[[str, Dict[str, Any], str], ProcessingOutcome]


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True, force=True)
    return data if isinstance(data, dict) else {}


def _resource_id(payload: Dict[str, Any]) -> str:
    value = payload.get('id') or payload.get('order_id') or payload.get('admin_graphql_api_id') or ''
    return str(value)[:64]


def _record_delivery(shop: str, webhook_id: str, topic: str, payload: Dict[str, Any]):
    """Returns the new WebhookEvent, or None when this delivery was already seen."""
    if WebhookEvent.query.filter_by(shop=shop, webhook_id=webhook_id).first():
        return None

    event = WebhookEvent(
        shop=shop,
        webhook_id=webhook_id,
        topic=topic,
        resource_id=_resource_id(payload),
        outcome=WebhookOutcome.RECEIVED.value,
    )
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return event


def _handle(topic: str, handler: Handler):
    shop = g.webhook_shop
    if not shop:
        current_app.logger.warning(f'Webhook {topic} missing X-Shopify-Shop-Domain header')
        return jsonify({'error': 'Missing shop domain header'}), 400

    webhook_id = request.headers.get('X-Shopify-Webhook-Id') or uuid.uuid4().hex
    payload = _payload()

    event = _record_delivery(shop, webhook_id, topic, payload)
    if event is None:
        current_app.logger.info(f'Duplicate webhook {topic} {webhook_id} from {shop}')
        return jsonify({'success': True, 'duplicate': True})
    event_id = event.id

    try:
        outcome = handler(shop, payload, webhook_id)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f'Error processing {topic} webhook {webhook_id} for {shop}: {e}')
        db.session.add(WebhookError(shop=shop, topic=topic, webhook_id=webhook_id, error=str(e)[:5000]))
        event = db.session.get(WebhookEvent, event_id)
        if event is not None:
            event.outcome = WebhookOutcome.FAILED.value
            event.outcome_code = type(e).__name__[:64]
            event.outcome_message = str(e)[:500]
            event.processed_at = utcnow()
        db.session.commit()
        return jsonify({'success': False, 'outcome': WebhookOutcome.FAILED.value})

    event = db.session.get(WebhookEvent, event_id)
    if event is not None:
        event.outcome = outcome.status
        event.outcome_code = outcome.code
        event.outcome_message = (outcome.message or '')[:500]
        event.processed_at = utcnow()
        db.session.commit()

    current_app.logger.info(f'Webhook {topic} {webhook_id} for {shop}: {outcome.status} {outcome.code}')
    return jsonify({
        'success': True,
        'outcome': outcome.status,
        'code': outcome.code,
        'points': outcome.points,
    })


# ==================== Order events ====================

def _order_paid(shop, payload, webhook_id):
    return EventProcessor(shop).process_order_paid(OrderPaidEvent.from_payload(shop, payload))


def _refund_created(shop, payload, webhook_id):
    return EventProcessor(shop).process_refund_created(RefundCreatedEvent.from_payload(shop, payload))


def _order_cancelled(shop, payload, webhook_id):
    return EventProcessor(shop).process_order_cancelled(OrderCancelledEvent.from_payload(shop, payload))


@webhooks_bp.route('/orders/paid', methods=['POST'])
@require_webhook_verification
def handle_order_paid():
    """Award points for the eligible net merchandise of a paid order."""
    return _handle('orders/paid', _order_paid)


@webhooks_bp.route('/refunds/create', methods=['POST'])
@require_webhook_verification
def handle_refund_created():
    """Reverse points in proportion to the refunded eligible amount."""
    return _handle('refunds/create', _refund_created)


@webhooks_bp.route('/orders/cancelled', methods=['POST'])
@require_webhook_verification
def handle_order_cancelled():
    """Reverse whatever the order still has outstanding."""
    return _handle('orders/cancelled', _order_cancelled)


# ==================== Privacy & lifecycle ====================

def _data_request(shop, payload, webhook_id):
    record_data_request(shop, 'customers/data_request', payload)
    return ProcessingOutcome.processed('DATA_REQUEST_RECORDED')


def _customer_redact(shop, payload, webhook_id):
    customer = payload.get('customer') or {}
    customer_id = customer.get('id') if isinstance(customer, dict) else None
    if not customer_id:
        return ProcessingOutcome.skipped('NO_CUSTOMER', 'Redact payload has no customer id')
    redact_customer(shop, str(customer_id))
    return ProcessingOutcome.processed('CUSTOMER_REDACTED')


def _shop_redact(shop, payload, webhook_id):
    redact_shop(shop)
    purge_webhook_events(shop, keep_webhook_id=webhook_id)
    return ProcessingOutcome.processed('SHOP_REDACTED')


def _app_uninstalled(shop, payload, webhook_id):
    uninstall_shop(shop)
    return ProcessingOutcome.processed('UNINSTALLED')


@webhooks_bp.route('/customers/data_request', methods=['POST'])
@require_webhook_verification
def handle_customers_data_request():
    return _handle('customers/data_request', _data_request)


@webhooks_bp.route('/customers/redact', methods=['POST'])
@require_webhook_verification
def handle_customers_redact():
    return _handle('customers/redact', _customer_redact)


@webhooks_bp.route('/shop/redact', methods=['POST'])
@require_webhook_verification
def handle_shop_redact():
    return _handle('shop/redact', _shop_redact)


@webhooks_bp.route('/app/uninstalled', methods=['POST'])
@require_webhook_verification
def handle_app_uninstalled():
    """Required by Shopify for all apps. Drops the access token and settings."""
    return _handle('app/uninstalled', _app_uninstalled)
