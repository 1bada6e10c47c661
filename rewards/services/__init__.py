"""
Business logic services for the rewards engine.
"""
from .settings_service import SettingsProvider, ShopSettingsSnapshot
from .redemption_service import RedemptionService
from .event_processor import EventProcessor, ProcessingOutcome
from .expiry_service import run_expiry_sweep
from .loyalty_service import get_customer_loyalty_payload

__all__ = [
    'SettingsProvider',
    'ShopSettingsSnapshot',
    'RedemptionService',
    'EventProcessor',
    'ProcessingOutcome',
    'run_expiry_sweep',
    'get_customer_loyalty_payload',
]
