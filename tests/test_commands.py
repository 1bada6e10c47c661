"""
Tests for the flask CLI commands.
"""
from rewards.extensions import db
from rewards.models.shop_settings import ShopInstallation
from rewards.services.ledger_service import get_balance
from rewards.utils.job_lock import acquire_lock

from conftest import SHOP, CUSTOMER_ID


class TestRewardsCommands:

    def test_expire_all(self, app, funded_customer):
        result = app.test_cli_runner().invoke(args=['rewards', 'expire'])

        assert result.exit_code == 0
        assert 'Job: expire-all' in result.output
        assert 'Customers expired: 0' in result.output

    def test_expire_rejects_unknown_job(self, app):
        result = app.test_cli_runner().invoke(args=['rewards', 'expire', '--job', 'expire-everything'])

        assert result.exit_code != 0

    def test_expire_skips_when_locked(self, app):
        acquire_lock('expiry:expire-redemptions', ttl_seconds=60)

        result = app.test_cli_runner().invoke(args=['rewards', 'expire', '--job', 'expire-redemptions'])

        assert result.exit_code == 0
        assert 'Skipped' in result.output

    def test_reconcile_shop(self, app, funded_customer):
        get_balance(SHOP, CUSTOMER_ID).balance = 3
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['rewards', 'reconcile', '--shop', SHOP])

        assert result.exit_code == 0
        assert 'Reconciled 1 customers, 1 corrected' in result.output
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200


class TestShopCommands:

    def test_register_and_list(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['shops', 'register', '--shop', 'Demo.myshopify.com',
                                     '--token', 'shpat_abc', '--scope', 'write_discounts'])
        assert result.exit_code == 0
        assert 'Registered demo.myshopify.com' in result.output

        installation = db.session.get(ShopInstallation, 'demo.myshopify.com')
        assert installation.access_token == 'shpat_abc'
        assert installation.is_active

        result = runner.invoke(args=['shops', 'list'])
        assert 'demo.myshopify.com  active  write_discounts' in result.output

    def test_register_reactivates(self, app):
        db.session.add(ShopInstallation(shop=SHOP, access_token=None, scope='read_orders'))
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['shops', 'register', '--shop', SHOP, '--token', 'shpat_new'])

        assert 'Updated' in result.output
        installation = db.session.get(ShopInstallation, SHOP)
        assert installation.is_active
        assert installation.scope == 'read_orders'

    def test_list_empty(self, app):
        result = app.test_cli_runner().invoke(args=['shops', 'list'])

        assert 'No shops registered' in result.output
