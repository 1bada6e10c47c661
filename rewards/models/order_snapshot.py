"""
Per-order earn snapshot.

The (shop, order_id) row is the idempotency gate for order-paid processing and
the basis for proportional refund reversals.
"""
from decimal import Decimal
from typing import Dict, Any

from ..extensions import db
from ..utils.time import utcnow, isoformat


class OrderPointsSnapshot(db.Model):
    __tablename__ = 'order_points_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    order_id = db.Column(db.String(64), nullable=False)
    order_name = db.Column(db.String(64))
    customer_id = db.Column(db.String(64), nullable=False)

    eligible_net_merchandise = db.Column(db.Numeric(12, 2), default=Decimal('0'), nullable=False)
    points_awarded = db.Column(db.Integer, default=0, nullable=False)
    points_reversed_to_date = db.Column(db.Integer, default=0, nullable=False)
    currency = db.Column(db.String(8))
    discount_codes = db.Column(db.JSON, default=list)

    paid_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('shop', 'order_id', name='uq_order_points_snapshots_shop_order'),
        db.Index('ix_order_points_snapshots_shop_customer', 'shop', 'customer_id'),
    )

    def __repr__(self):
        return f'<OrderPointsSnapshot {self.shop}/{self.order_id} awarded={self.points_awarded}>'

    @property
    def eligible_cents(self) -> int:
        return int((Decimal(self.eligible_net_merchandise or 0) * 100).to_integral_value())

    @property
    def points_remaining(self) -> int:
        return max(0, (self.points_awarded or 0) - (self.points_reversed_to_date or 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orderId': self.order_id,
            'orderName': self.order_name,
            'customerId': self.customer_id,
            'eligibleNetMerchandise': float(self.eligible_net_merchandise or 0),
            'pointsAwarded': self.points_awarded,
            'pointsReversedToDate': self.points_reversed_to_date,
            'paidAt': isoformat(self.paid_at),
            'cancelledAt': isoformat(self.cancelled_at),
        }
