"""
CLI commands for the points engine.

These commands can be run manually or via cron jobs:

# Expire unused codes (daily)
15 0 * * * cd /app && flask rewards expire --job expire-redemptions

# Expire inactive balances (daily)
0 3 * * * cd /app && flask rewards expire --job expire-inactive

# Rebuild a customer's cached balance from the ledger
flask rewards reconcile --shop demo.myshopify.com --customer-id 1234
"""

import click
from flask.cli import with_appcontext
from ..models.ledger import CustomerPointsBalance
from ..services.expiry_service import JOB_EXPIRE_ALL, JOB_NAMES, run_expiry_sweep
from ..services.ledger_service import reconcile_balance
from ..services.shopify_client import normalize_customer_id
from ..utils.exceptions import LockContentionError


@click.group('rewards')
def rewards_cli():
    """Points engine commands."""
    pass


@rewards_cli.command('expire')
@click.option('--job', 'job_name', type=click.Choice(JOB_NAMES), default=JOB_EXPIRE_ALL,
              show_default=True, help='Which expiry job to run')
@click.option('--restore/--no-restore', default=None,
              help='Override each shop\'s restore-on-expiry setting for this run')
@with_appcontext
def expire(job_name, restore):
    """Run an expiry sweep across all shops."""
    try:
        summary = run_expiry_sweep(job_name, restore_points=restore)
    except LockContentionError as e:
        click.echo(f"Skipped: {e.message}")
        return

    click.echo(f"Job: {summary['job']} ({summary['shops']} shops)")
    click.echo(f"  Codes expired: {summary['expiredCount']}")
    click.echo(f"  Points restored: {summary['pointsRestored']}")
    click.echo(f"  Customers expired: {summary['expiredCustomers']}")
    click.echo(f"  Points expired: {summary['pointsExpired']}")


@rewards_cli.command('reconcile')
@click.option('--shop', required=True, help='Shop domain (e.g. demo.myshopify.com)')
@click.option('--customer-id', help='One customer (or every customer of the shop if not specified)')
@with_appcontext
def reconcile(shop, customer_id):
    """Recompute cached balances from the ledger."""
    if customer_id:
        customer_ids = [normalize_customer_id(customer_id)]
    else:
        rows = CustomerPointsBalance.query.filter_by(shop=shop).order_by(CustomerPointsBalance.id).all()
        customer_ids = [row.customer_id for row in rows]

    drifted = 0
    for cid in customer_ids:
        result = reconcile_balance(shop, cid)
        if result['drift']:
            drifted += 1
            click.echo(
                f"  {cid}: {result['previousBalance']} -> {result['balance']} (drift {result['drift']:+d})"
            )

    click.echo(f"Reconciled {len(customer_ids)} customers, {drifted} corrected")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(rewards_cli)
