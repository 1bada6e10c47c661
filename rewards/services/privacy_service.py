"""
Privacy and lifecycle data handling for the mandatory Shopify webhooks.
"""
import logging
from datetime import datetime
from typing import Any, Dict

from ..extensions import db
from ..models import (
    CustomerPointsBalance,
    OrderPointsSnapshot,
    PointsLedgerEntry,
    PrivacyEvent,
    Redemption,
    ShopInstallation,
    ShopSettings,
    WebhookError,
    WebhookEvent,
)
from .shopify_client import normalize_customer_id
from ..utils.time import utcnow

logger = logging.getLogger(__name__)


def record_data_request(shop: str, topic: str, payload: Dict[str, Any]) -> PrivacyEvent:
    """Store a customers/data_request payload for the merchant to fulfil."""
    event = PrivacyEvent(shop=shop, topic=topic, payload=payload or {})
    db.session.add(event)
    db.session.commit()
    logger.info(f'Recorded {topic} for {shop}')
    return event


def redact_customer(shop: str, customer_id: str) -> Dict[str, int]:
    """Delete every row held for one customer of a shop."""
    customer_id = normalize_customer_id(customer_id)
    counts = {
        'redemptions': Redemption.query.filter_by(shop=shop, customer_id=customer_id).delete(),
        'ledger': PointsLedgerEntry.query.filter_by(shop=shop, customer_id=customer_id).delete(),
        'balances': CustomerPointsBalance.query.filter_by(shop=shop, customer_id=customer_id).delete(),
        'snapshots': OrderPointsSnapshot.query.filter_by(shop=shop, customer_id=customer_id).delete(),
    }
    db.session.commit()
    logger.info(f'Redacted customer {shop}/{customer_id}: {counts}')
    return counts


def redact_shop(shop: str) -> Dict[str, int]:
    """
    Delete all data held for a shop.

    Webhook events are purged separately by purge_webhook_events so the
    delivery being handled keeps its dedupe row.
    """
    counts = {}
    for name, model in (
        ('redemptions', Redemption),
        ('ledger', PointsLedgerEntry),
        ('balances', CustomerPointsBalance),
        ('snapshots', OrderPointsSnapshot),
        ('settings', ShopSettings),
        ('installations', ShopInstallation),
        ('privacyEvents', PrivacyEvent),
        ('webhookErrors', WebhookError),
    ):
        counts[name] = model.query.filter_by(shop=shop).delete()
    db.session.commit()
    logger.info(f'Redacted shop {shop}: {counts}')
    return counts


def purge_webhook_events(shop: str, keep_webhook_id: str = None) -> int:
    query = WebhookEvent.query.filter(WebhookEvent.shop == shop)
    if keep_webhook_id:
        query = query.filter(WebhookEvent.webhook_id != keep_webhook_id)
    deleted = query.delete(synchronize_session=False)
    db.session.commit()
    return deleted


def uninstall_shop(shop: str, now: datetime = None) -> None:
    """
    Forget the shop's access token and settings.

    Points data is kept until shop/redact arrives.
    """
    now = now or utcnow()
    installation = db.session.get(ShopInstallation, shop)
    if installation is not None:
        installation.access_token = None
        installation.uninstalled_at = now
    ShopSettings.query.filter_by(shop=shop).delete()
    db.session.commit()
    logger.info(f'Shop {shop} uninstalled')
