"""
CLI commands for shop installations.

Usage:
    flask shops register --shop demo.myshopify.com --token shpat_xxx
    flask shops list
"""

import click
from flask.cli import with_appcontext
from ..extensions import db
from ..models.shop_settings import ShopInstallation
from ..utils.time import utcnow


@click.group('shops')
def shops_cli():
    """Shop installation commands."""
    pass


@shops_cli.command('register')
@click.option('--shop', required=True, help='Shop domain (e.g. demo.myshopify.com)')
@click.option('--token', required=True, help='Offline Admin API access token')
@click.option('--scope', default='', help='Granted access scopes')
@with_appcontext
def register(shop, token, scope):
    """Store (or replace) the Admin API token for a shop."""
    shop = shop.strip().lower()
    installation = db.session.get(ShopInstallation, shop)
    if installation is None:
        installation = ShopInstallation(shop=shop)
        db.session.add(installation)
        action = 'Registered'
    else:
        action = 'Updated'

    installation.access_token = token.strip()
    installation.scope = scope or installation.scope
    installation.installed_at = utcnow()
    installation.uninstalled_at = None
    db.session.commit()

    click.echo(f"{action} {shop}")


@shops_cli.command('list')
@with_appcontext
def list_shops():
    """Show every known installation."""
    installations = ShopInstallation.query.order_by(ShopInstallation.shop).all()
    if not installations:
        click.echo("No shops registered")
        return
    for installation in installations:
        status = 'active' if installation.is_active else 'uninstalled'
        click.echo(f"{installation.shop}  {status}  {installation.scope or ''}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(shops_cli)
