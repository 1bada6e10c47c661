"""
Per-shop rewards configuration and installation records.
"""
from typing import Dict, Any

from ..extensions import db
from ..utils.settings_defaults import DEFAULT_SHOP_SETTINGS
from ..utils.time import utcnow, isoformat


class ShopSettings(db.Model):
    """
    Rewards program configuration for one shop.

    Owned by the admin settings workflow; the engine reads it through
    SettingsProvider, which normalizes every value. The only field the engine
    writes is the cached eligible_collection_gid.
    """
    __tablename__ = 'shop_settings'

    shop = db.Column(db.String(255), primary_key=True)

    earn_rate = db.Column(db.Integer, default=DEFAULT_SHOP_SETTINGS['earn_rate'], nullable=False)
    redemption_steps = db.Column(db.JSON, default=lambda: list(DEFAULT_SHOP_SETTINGS['redemption_steps']))
    redemption_value_map = db.Column(db.JSON, default=lambda: dict(DEFAULT_SHOP_SETTINGS['redemption_value_map']))
    redemption_min_order = db.Column(db.Integer, default=0, nullable=False)
    points_expire_inactivity_days = db.Column(db.Integer, default=365, nullable=False)
    redemption_expiry_hours = db.Column(db.Integer, default=72, nullable=False)
    prevent_multiple_active_redemptions = db.Column(db.Boolean, default=True, nullable=False)
    restore_points_on_redemption_expiry = db.Column(db.Boolean, default=False, nullable=False)

    # Eligibility
    eligible_collection_handle = db.Column(db.String(255), default=DEFAULT_SHOP_SETTINGS['eligible_collection_handle'])
    eligible_collection_gid = db.Column(db.String(255))  # Cached resolution of the handle
    eligible_collection_gid_handle = db.Column(db.String(255))  # Handle the cached gid belongs to
    excluded_customer_tags = db.Column(db.JSON, default=lambda: list(DEFAULT_SHOP_SETTINGS['excluded_customer_tags']))
    include_product_tags = db.Column(db.JSON, default=list)
    exclude_product_tags = db.Column(db.JSON, default=list)
    excluded_collection_ids = db.Column(db.JSON, default=list)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<ShopSettings {self.shop}>'

    def raw_values(self) -> Dict[str, Any]:
        """Column values keyed like DEFAULT_SHOP_SETTINGS, before normalization."""
        return {key: getattr(self, key) for key in DEFAULT_SHOP_SETTINGS}


class ShopInstallation(db.Model):
    """Offline Admin API token for a shop."""
    __tablename__ = 'shop_installations'

    shop = db.Column(db.String(255), primary_key=True)
    access_token = db.Column(db.String(255))
    scope = db.Column(db.String(500))
    installed_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    uninstalled_at = db.Column(db.DateTime)

    def __repr__(self):
        return f'<ShopInstallation {self.shop}>'

    @property
    def is_active(self) -> bool:
        return bool(self.access_token) and self.uninstalled_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'shop': self.shop,
            'scope': self.scope,
            'installedAt': isoformat(self.installed_at),
            'uninstalledAt': isoformat(self.uninstalled_at),
            'active': self.is_active,
        }
