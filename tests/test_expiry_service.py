"""
Tests for the expiry sweeper.
"""
from datetime import timedelta

import pytest

from rewards.extensions import db
from rewards.models.ledger import LedgerSource, LedgerType, PointsLedgerEntry
from rewards.models.redemption import Redemption, RedemptionStatus
from rewards.services.expiry_service import (
    expire_inactive_balances,
    expire_redemptions,
    run_expiry_sweep,
)
from rewards.services.ledger_service import get_balance, ledger_sum
from rewards.services.redemption_service import RedemptionService
from rewards.services.settings_service import SettingsProvider
from rewards.utils.exceptions import LockContentionError
from rewards.utils.job_lock import acquire_lock
from rewards.utils.time import utcnow

from conftest import SHOP, CUSTOMER_ID


@pytest.fixture
def issued(app, fake_shopify, funded_customer):
    """One 500-point code issued from the 1200-point balance."""
    return RedemptionService(SHOP).issue_redemption_code(CUSTOMER_ID, 500)


def after_expiry():
    return utcnow() + timedelta(hours=100)


class TestExpireRedemptions:

    def test_expires_without_restore_by_default(self, app, issued):
        result = expire_redemptions(SHOP, now=after_expiry())

        assert result == {'expiredCount': 1, 'pointsRestored': 0}
        redemption = db.session.get(Redemption, issued['redemptionId'])
        assert redemption.status == RedemptionStatus.EXPIRED.value
        assert redemption.expired_at is not None
        assert get_balance(SHOP, CUSTOMER_ID).balance == 700

    def test_restores_when_shop_enables_it(self, app, issued):
        SettingsProvider().upsert(SHOP, restore_points_on_redemption_expiry=True)

        result = expire_redemptions(SHOP, now=after_expiry())

        assert result == {'expiredCount': 1, 'pointsRestored': 500}
        balance = get_balance(SHOP, CUSTOMER_ID)
        assert balance.balance == 1200
        assert balance.lifetime_redeemed == 0
        assert ledger_sum(SHOP, CUSTOMER_ID) == 1200

        entry = PointsLedgerEntry.query.filter_by(source=LedgerSource.REDEMPTION_EXPIRED.value).one()
        assert entry.type == LedgerType.ADJUST.value
        assert entry.delta == 500

    def test_run_override_beats_setting(self, app, issued):
        result = expire_redemptions(SHOP, now=after_expiry(), restore_points=True)

        assert result['pointsRestored'] == 500

    def test_unexpired_codes_untouched(self, app, issued):
        result = expire_redemptions(SHOP, now=utcnow() + timedelta(hours=1))

        assert result['expiredCount'] == 0
        assert db.session.get(Redemption, issued['redemptionId']).status == RedemptionStatus.ISSUED.value

    def test_second_run_is_noop(self, app, issued):
        expire_redemptions(SHOP, now=after_expiry(), restore_points=True)

        result = expire_redemptions(SHOP, now=after_expiry(), restore_points=True)

        assert result == {'expiredCount': 0, 'pointsRestored': 0}
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200

    def test_consumed_codes_never_expire(self, app, issued):
        RedemptionService(SHOP).consume_codes_for_order(CUSTOMER_ID, '5001', [issued['code']])

        result = expire_redemptions(SHOP, now=after_expiry())

        assert result['expiredCount'] == 0

    def test_code_without_discount_always_restored(self, app, fake_shopify, funded_customer):
        """Points debited for a discount that was never created come back even with restore off."""
        settings = SettingsProvider().get(SHOP)
        stranded, _ = RedemptionService(SHOP)._debit_and_issue(
            settings, CUSTOMER_ID, 500, settings.value_for(500), None, utcnow()
        )

        result = expire_redemptions(SHOP, now=after_expiry())

        assert result == {'expiredCount': 1, 'pointsRestored': 500}
        stranded = db.session.get(Redemption, stranded.id)
        assert stranded.status == RedemptionStatus.VOID.value
        assert stranded.restore_reason == 'DISCOUNT_NOT_CREATED'
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200
        assert ledger_sum(SHOP, CUSTOMER_ID) == 1200


class TestExpireInactiveBalances:

    def test_zeroes_inactive_balance(self, app, funded_customer):
        now = utcnow() + timedelta(days=366)

        result = expire_inactive_balances(SHOP, now=now)

        assert result == {'expiredCustomers': 1, 'pointsExpired': 1200}
        balance = get_balance(SHOP, CUSTOMER_ID)
        assert balance.balance == 0
        assert balance.expired_at is not None
        assert ledger_sum(SHOP, CUSTOMER_ID) == 0

        entry = PointsLedgerEntry.query.filter_by(type=LedgerType.EXPIRE.value).one()
        assert entry.source == LedgerSource.INACTIVITY.value
        assert entry.source_id == f"INACTIVITY:{CUSTOMER_ID}:{now.strftime('%Y-%m-%d')}"

    def test_active_balance_untouched(self, app, funded_customer):
        result = expire_inactive_balances(SHOP, now=utcnow() + timedelta(days=30))

        assert result['expiredCustomers'] == 0
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200

    def test_same_day_rerun_is_noop(self, app, funded_customer):
        now = utcnow() + timedelta(days=366)
        expire_inactive_balances(SHOP, now=now)

        result = expire_inactive_balances(SHOP, now=now + timedelta(minutes=5))

        assert result['expiredCustomers'] == 0
        assert PointsLedgerEntry.query.filter_by(type=LedgerType.EXPIRE.value).count() == 1

    def test_zero_days_disables(self, app, funded_customer):
        SettingsProvider().upsert(SHOP, points_expire_inactivity_days=0)

        result = expire_inactive_balances(SHOP, now=utcnow() + timedelta(days=5000))

        assert result == {'expiredCustomers': 0, 'pointsExpired': 0}
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200

    def test_batches_cover_every_customer(self, app, shop_settings):
        from rewards.services.ledger_service import record_movement

        for i in range(5):
            record_movement(SHOP, f'10{i}', LedgerType.EARN, 50, LedgerSource.ORDER, f'o{i}', inc_earned=50)
        db.session.commit()

        result = expire_inactive_balances(SHOP, now=utcnow() + timedelta(days=366), batch_size=2)

        assert result == {'expiredCustomers': 5, 'pointsExpired': 250}


class TestRunExpirySweep:

    def test_unknown_job(self, app):
        with pytest.raises(ValueError):
            run_expiry_sweep('expire-everything')

    def test_expire_all_summary(self, app, issued):
        summary = run_expiry_sweep('expire-all', now=utcnow() + timedelta(days=366))

        assert summary['job'] == 'expire-all'
        assert summary['expiredCount'] == 1
        assert summary['pointsRestored'] == 0
        assert summary['expiredCustomers'] == 1
        assert summary['pointsExpired'] == 700
        assert summary['shops'] == 1

    def test_single_job_only_runs_that_job(self, app, issued):
        summary = run_expiry_sweep('expire-redemptions', now=utcnow() + timedelta(days=366))

        assert summary['expiredCount'] == 1
        assert summary['expiredCustomers'] == 0
        assert get_balance(SHOP, CUSTOMER_ID).balance == 700

    def test_lock_contention(self, app, issued):
        acquire_lock('expiry:expire-redemptions', ttl_seconds=60)

        with pytest.raises(LockContentionError):
            run_expiry_sweep('expire-redemptions', now=after_expiry())

        assert db.session.get(Redemption, issued['redemptionId']).status == RedemptionStatus.ISSUED.value
