"""
Customer loyalty payload shared by the customer account API and the app proxy.
"""
from datetime import datetime
from typing import Any, Dict

from .ledger_service import get_balance, recent_ledger
from .redemption_service import RedemptionService
from .settings_service import SettingsProvider
from .shopify_client import normalize_customer_id
from ..utils.time import utcnow

RECENT_LEDGER_LIMIT = 25


def get_customer_loyalty_payload(
    shop: str,
    customer_id: str,
    settings_provider: SettingsProvider = None,
    now: datetime = None,
) -> Dict[str, Any]:
    """Balance, public settings, the active code and the newest ledger rows."""
    now = now or utcnow()
    customer_id = normalize_customer_id(customer_id)
    provider = settings_provider or SettingsProvider()
    settings = provider.get(shop)

    row = get_balance(shop, customer_id)
    balances = row.to_dict() if row else {
        'balance': 0,
        'lifetimeEarned': 0,
        'lifetimeRedeemed': 0,
        'lastActivityAt': None,
        'expiredAt': None,
    }

    active = RedemptionService(shop, provider).active_redemption(customer_id, now)
    active_payload = None
    if active is not None:
        active_payload = {
            'code': active.code,
            'points': active.points,
            'valueDollars': float(active.value_dollars),
            'expiresAt': active.to_dict()['expiresAt'],
            'status': active.status,
        }

    return {
        'shop': shop,
        'customerId': customer_id,
        'balances': balances,
        'settings': settings.to_public_dict(),
        'activeRedemption': active_payload,
        'recentLedger': [entry.to_dict() for entry in recent_ledger(shop, customer_id, RECENT_LEDGER_LIMIT)],
    }
