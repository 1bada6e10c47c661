"""
Tests for the ledger store and balance aggregate.

Covers:
- record_movement keeps the cached balance equal to the ledger sum
- idempotency keys reject a second entry for the same event
- guarded debits never drive a balance negative
- reconciliation repairs drift from the ledger
- admin adjustments
"""
import pytest

from rewards.extensions import db
from rewards.models.ledger import CustomerPointsBalance, LedgerSource, LedgerType, PointsLedgerEntry
from rewards.services.ledger_service import (
    adjust_points,
    debit_balance,
    get_balance,
    ledger_sum,
    recent_ledger,
    reconcile_balance,
    record_movement,
)
from rewards.utils.exceptions import DuplicateEntryError, InsufficientPointsError, InvalidAmountError

from conftest import SHOP, CUSTOMER_ID


class TestRecordMovement:
    """Tests for record_movement."""

    def test_earn_creates_balance_row(self, app):
        """First movement for a customer creates the balance row."""
        record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 150, LedgerSource.ORDER, '1001',
                        inc_earned=150)
        db.session.commit()

        row = get_balance(SHOP, CUSTOMER_ID)
        assert row.balance == 150
        assert row.lifetime_earned == 150
        assert row.lifetime_redeemed == 0
        assert row.last_activity_at is not None

    def test_balance_matches_ledger_sum(self, app):
        """Balance equals the sum of deltas after a mix of movements."""
        record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 300, LedgerSource.ORDER, '1', inc_earned=300)
        record_movement(SHOP, CUSTOMER_ID, LedgerType.REVERSAL, -50, LedgerSource.REFUND, 'r1')
        record_movement(SHOP, CUSTOMER_ID, LedgerType.ADJUST, 25, LedgerSource.ADMIN, 'a1')
        db.session.commit()

        assert get_balance(SHOP, CUSTOMER_ID).balance == 275
        assert ledger_sum(SHOP, CUSTOMER_ID) == 275

    def test_duplicate_key_rejected(self, app):
        """The same (type, source, source_id) cannot be recorded twice."""
        record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 100, LedgerSource.ORDER, '1001', inc_earned=100)
        db.session.commit()

        with pytest.raises(DuplicateEntryError):
            record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 100, LedgerSource.ORDER, '1001',
                            inc_earned=100)
        db.session.rollback()

        assert PointsLedgerEntry.query.filter_by(shop=SHOP, customer_id=CUSTOMER_ID).count() == 1
        assert get_balance(SHOP, CUSTOMER_ID).balance == 100

    def test_same_source_id_different_type_allowed(self, app):
        """Idempotency keys include the entry type."""
        record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 100, LedgerSource.ORDER, '1001', inc_earned=100)
        record_movement(SHOP, CUSTOMER_ID, LedgerType.ADJUST, 10, LedgerSource.ORDER, '1001')
        db.session.commit()

        assert ledger_sum(SHOP, CUSTOMER_ID) == 110

    def test_shops_are_isolated(self, app):
        """The same customer id in two shops has two balances."""
        record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 100, LedgerSource.ORDER, '1', inc_earned=100)
        record_movement('other.myshopify.com', CUSTOMER_ID, LedgerType.EARN, 40, LedgerSource.ORDER, '1',
                        inc_earned=40)
        db.session.commit()

        assert get_balance(SHOP, CUSTOMER_ID).balance == 100
        assert get_balance('other.myshopify.com', CUSTOMER_ID).balance == 40

    def test_recent_ledger_newest_first(self, app):
        """recent_ledger returns newest entries first and honours the limit."""
        for i in range(5):
            record_movement(SHOP, CUSTOMER_ID, LedgerType.EARN, 10, LedgerSource.ORDER, str(i), inc_earned=10)
        db.session.commit()

        entries = recent_ledger(SHOP, CUSTOMER_ID, limit=3)
        assert len(entries) == 3
        assert [e.source_id for e in entries] == ['4', '3', '2']


class TestDebitBalance:
    """Tests for the guarded debit."""

    def test_debit_reduces_balance(self, app, funded_customer):
        debit_balance(SHOP, CUSTOMER_ID, 500)
        db.session.commit()

        row = get_balance(SHOP, CUSTOMER_ID)
        assert row.balance == 700
        assert row.lifetime_redeemed == 500

    def test_debit_more_than_balance_raises(self, app, funded_customer):
        """A debit larger than the balance changes nothing."""
        with pytest.raises(InsufficientPointsError) as exc_info:
            debit_balance(SHOP, CUSTOMER_ID, 1500)
        db.session.rollback()

        assert exc_info.value.current == 1200
        assert exc_info.value.required == 1500
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200

    def test_debit_unknown_customer_raises(self, app):
        with pytest.raises(InsufficientPointsError):
            debit_balance(SHOP, 'nobody', 1)


class TestReconcileBalance:
    """Tests for reconcile_balance."""

    def test_no_drift(self, app, funded_customer):
        result = reconcile_balance(SHOP, CUSTOMER_ID)

        assert result['drift'] == 0
        assert result['balance'] == 1200
        assert result['ledgerSum'] == 1200

    def test_repairs_drift(self, app, funded_customer):
        """A corrupted cache is rewritten from the ledger."""
        row = get_balance(SHOP, CUSTOMER_ID)
        row.balance = 9999
        db.session.commit()

        result = reconcile_balance(SHOP, CUSTOMER_ID)

        assert result['previousBalance'] == 9999
        assert result['balance'] == 1200
        assert result['drift'] == 1200 - 9999
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200

    def test_creates_missing_row(self, app, funded_customer):
        CustomerPointsBalance.query.filter_by(shop=SHOP, customer_id=CUSTOMER_ID).delete()
        db.session.commit()

        result = reconcile_balance(SHOP, CUSTOMER_ID)

        assert result['previousBalance'] is None
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200


class TestAdjustPoints:
    """Tests for admin adjustments."""

    def test_positive_adjustment(self, app, funded_customer):
        result = adjust_points(SHOP, CUSTOMER_ID, 300, reason='Goodwill', source_id='adj-1')

        assert result['applied'] == 300
        assert result['balance'] == 1500
        assert result['entry']['type'] == 'ADJUST'
        assert result['entry']['source'] == 'ADMIN'

    def test_negative_adjustment_capped_at_balance(self, app, funded_customer):
        """Taking away more than the balance takes the balance."""
        result = adjust_points(SHOP, CUSTOMER_ID, -5000, source_id='adj-2')

        assert result['applied'] == -1200
        assert result['balance'] == 0
        assert ledger_sum(SHOP, CUSTOMER_ID) == 0

    def test_negative_adjustment_on_empty_balance(self, app):
        with pytest.raises(InsufficientPointsError):
            adjust_points(SHOP, CUSTOMER_ID, -10)

    def test_zero_adjustment_rejected(self, app):
        with pytest.raises(InvalidAmountError):
            adjust_points(SHOP, CUSTOMER_ID, 0)

    def test_repeat_source_id_applies_once(self, app, funded_customer):
        adjust_points(SHOP, CUSTOMER_ID, 100, source_id='adj-3')
        result = adjust_points(SHOP, CUSTOMER_ID, 100, source_id='adj-3')

        assert result['duplicate'] is True
        assert result['balance'] == 1300

    def test_repeat_draining_adjustment_is_duplicate(self, app, funded_customer):
        """Replaying a debit that emptied the balance reports the original, not a shortfall."""
        first = adjust_points(SHOP, CUSTOMER_ID, -1200, source_id='adj-4')
        result = adjust_points(SHOP, CUSTOMER_ID, -1200, source_id='adj-4')

        assert first['balance'] == 0
        assert result['duplicate'] is True
        assert result['applied'] == -1200
        assert result['balance'] == 0
        assert ledger_sum(SHOP, CUSTOMER_ID) == 0
