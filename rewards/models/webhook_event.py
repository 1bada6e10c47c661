"""
Webhook delivery bookkeeping.

WebhookEvent dedupes deliveries on (shop, webhook_id) before the engine sees
them. This is separate from the ledger idempotency keys, which still hold if
the same event arrives under a different delivery id.
"""
from enum import Enum
from typing import Dict, Any

from ..extensions import db
from ..utils.time import utcnow, isoformat


class WebhookOutcome(str, Enum):
    RECEIVED = 'RECEIVED'
    PROCESSED = 'PROCESSED'
    SKIPPED = 'SKIPPED'
    FAILED = 'FAILED'


class WebhookEvent(db.Model):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    webhook_id = db.Column(db.String(128), nullable=False)
    topic = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.String(64))

    received_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    outcome = db.Column(db.String(20), default=WebhookOutcome.RECEIVED.value, nullable=False)
    outcome_code = db.Column(db.String(64))
    outcome_message = db.Column(db.String(500))
    processed_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint('shop', 'webhook_id', name='uq_webhook_events_shop_webhook'),
        db.Index('ix_webhook_events_shop_topic', 'shop', 'topic', 'received_at'),
    )

    def __repr__(self):
        return f'<WebhookEvent {self.topic} {self.webhook_id} {self.outcome}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'webhookId': self.webhook_id,
            'topic': self.topic,
            'resourceId': self.resource_id,
            'outcome': self.outcome,
            'outcomeCode': self.outcome_code,
            'outcomeMessage': self.outcome_message,
            'receivedAt': isoformat(self.received_at),
            'processedAt': isoformat(self.processed_at),
        }


class WebhookError(db.Model):
    """Failure recorded for operator visibility; the delivery is still acknowledged."""
    __tablename__ = 'webhook_errors'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    topic = db.Column(db.String(64), nullable=False)
    webhook_id = db.Column(db.String(128))
    error = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<WebhookError {self.topic} {self.webhook_id}>'


class PrivacyEvent(db.Model):
    """Mandatory privacy webhook payloads kept for compliance."""
    __tablename__ = 'privacy_events'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    topic = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<PrivacyEvent {self.topic} {self.shop}>'
