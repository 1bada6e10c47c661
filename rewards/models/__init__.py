"""
Database models for the rewards engine.
"""
from .ledger import LedgerType, LedgerSource, PointsLedgerEntry, CustomerPointsBalance
from .redemption import Redemption, RedemptionStatus, ACTIVE_STATUSES
from .order_snapshot import OrderPointsSnapshot
from .shop_settings import ShopSettings, ShopInstallation
from .webhook_event import WebhookEvent, WebhookError, WebhookOutcome, PrivacyEvent
from .job_lock import JobLock

__all__ = [
    'LedgerType',
    'LedgerSource',
    'PointsLedgerEntry',
    'CustomerPointsBalance',
    'Redemption',
    'RedemptionStatus',
    'ACTIVE_STATUSES',
    'OrderPointsSnapshot',
    'ShopSettings',
    'ShopInstallation',
    'WebhookEvent',
    'WebhookError',
    'WebhookOutcome',
    'PrivacyEvent',
    'JobLock',
]
