"""
Points ledger and balance models.

The ledger is the source of truth:
- One row per point movement (EARN, REDEEM, REVERSAL, EXPIRE, ADJUST)
- Rows are never updated; a correction is a new ADJUST row
- (shop, customer_id, type, source, source_id) is the idempotency key

CustomerPointsBalance is a materialized cache of the ledger sum plus lifetime
counters. It is only written through ledger_service so the cache and the
ledger change in the same transaction.
"""
from enum import Enum
from typing import Dict, Any

from ..extensions import db
from ..utils.time import utcnow, isoformat


class LedgerType(str, Enum):
    """Kinds of point movements."""
    EARN = 'EARN'           # Order paid (positive)
    REDEEM = 'REDEEM'       # Redemption code issued (negative)
    REVERSAL = 'REVERSAL'   # Refund or cancellation (negative)
    EXPIRE = 'EXPIRE'       # Inactivity expiry (negative)
    ADJUST = 'ADJUST'       # Restores and admin corrections (+/-)


class LedgerSource(str, Enum):
    """Origin of a ledger entry. source_id is unique within a source."""
    ORDER = 'ORDER'
    REDEMPTION = 'REDEMPTION'
    REDEMPTION_VOID = 'REDEMPTION_VOID'
    REDEMPTION_EXPIRED = 'REDEMPTION_EXPIRED'
    REFUND = 'REFUND'
    CANCEL = 'CANCEL'
    INACTIVITY = 'INACTIVITY'
    ADMIN = 'ADMIN'


class PointsLedgerEntry(db.Model):
    """Immutable signed point movement for one customer."""
    __tablename__ = 'points_ledger'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(64), nullable=False)

    type = db.Column(db.String(20), nullable=False)
    delta = db.Column(db.Integer, nullable=False)
    source = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            'shop', 'customer_id', 'type', 'source', 'source_id',
            name='uq_points_ledger_idempotency'
        ),
        db.Index('ix_points_ledger_shop_customer_created', 'shop', 'customer_id', 'created_at'),
    )

    def __repr__(self):
        return f'<PointsLedgerEntry {self.type} {self.delta:+d} {self.source}:{self.source_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'delta': self.delta,
            'source': self.source,
            'sourceId': self.source_id,
            'description': self.description,
            'createdAt': isoformat(self.created_at),
        }


class CustomerPointsBalance(db.Model):
    """
    Cached running total for one (shop, customer).

    balance must equal the sum of the customer's ledger deltas after every
    committed transaction and never goes below zero.
    """
    __tablename__ = 'customer_points_balances'

    id = db.Column(db.Integer, primary_key=True)
    shop = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(64), nullable=False)

    balance = db.Column(db.Integer, default=0, nullable=False)
    lifetime_earned = db.Column(db.Integer, default=0, nullable=False)
    lifetime_redeemed = db.Column(db.Integer, default=0, nullable=False)

    last_activity_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expired_at = db.Column(db.DateTime)  # Set by inactivity expiry, cleared on activity

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('shop', 'customer_id', name='uq_customer_points_balances_shop_customer'),
        db.Index('ix_customer_points_balances_expiry', 'shop', 'expired_at', 'last_activity_at'),
    )

    def __repr__(self):
        return f'<CustomerPointsBalance {self.shop}/{self.customer_id} pts={self.balance}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'balance': self.balance,
            'lifetimeEarned': self.lifetime_earned,
            'lifetimeRedeemed': self.lifetime_redeemed,
            'lastActivityAt': isoformat(self.last_activity_at),
            'expiredAt': isoformat(self.expired_at),
        }
