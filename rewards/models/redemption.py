"""
Redemption model.

A redemption is one issued discount code paid for with points.

Status flow:
    ISSUED -> APPLIED -> CONSUMED     (code used on a paid order)
    ISSUED/APPLIED -> EXPIRED         (expiry sweep)
    ISSUED -> VOID                    (remote creation failed, points restored)
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, Any

from ..extensions import db
from ..utils.time import utcnow, isoformat


class RedemptionStatus(str, Enum):
    ISSUED = 'ISSUED'
    APPLIED = 'APPLIED'
    CONSUMED = 'CONSUMED'
    EXPIRED = 'EXPIRED'
    VOID = 'VOID'


ACTIVE_STATUSES = (RedemptionStatus.ISSUED.value, RedemptionStatus.APPLIED.value)


class Redemption(db.Model):
    __tablename__ = 'redemptions'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(64), nullable=False)

    points = db.Column(db.Integer, nullable=False)
    value_dollars = db.Column(db.Numeric(12, 2), nullable=False)
    code = db.Column(db.String(64), nullable=False)
    discount_node_id = db.Column(db.String(255))  # Populated after remote creation
    idem_key = db.Column(db.String(128))

    status = db.Column(db.String(20), default=RedemptionStatus.ISSUED.value, nullable=False)

    issued_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    applied_at = db.Column(db.DateTime)
    consumed_at = db.Column(db.DateTime)
    consumed_order_id = db.Column(db.String(64))
    expired_at = db.Column(db.DateTime)
    voided_at = db.Column(db.DateTime)
    restored_at = db.Column(db.DateTime)
    restore_reason = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('shop', 'code', name='uq_redemptions_shop_code'),
        db.UniqueConstraint('shop', 'customer_id', 'idem_key', name='uq_redemptions_idem_key'),
        db.Index('ix_redemptions_shop_customer_created', 'shop', 'customer_id', 'created_at'),
        db.Index('ix_redemptions_shop_status_expires', 'shop', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f'<Redemption {self.code} {self.status} pts={self.points}>'

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        value = self.value_dollars if self.value_dollars is not None else Decimal('0')
        return {
            'redemptionId': self.id,
            'code': self.code,
            'discountNodeId': self.discount_node_id,
            'status': self.status,
            'points': self.points,
            'valueDollars': float(value),
            'issuedAt': isoformat(self.issued_at),
            'expiresAt': isoformat(self.expires_at),
            'consumedAt': isoformat(self.consumed_at),
            'consumedOrderId': self.consumed_order_id,
        }
