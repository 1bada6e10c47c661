"""
CLI Commands for the rewards engine.

Usage:
    flask rewards expire --job expire-all             # Run expiry sweeps
    flask rewards reconcile --shop demo.myshopify.com # Rebuild cached balances

    flask shops register --shop demo.myshopify.com --token shpat_xxx
    flask shops list
"""
from .rewards import init_app as init_rewards_commands
from .shops import init_app as init_shop_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_rewards_commands(app)
    init_shop_commands(app)
