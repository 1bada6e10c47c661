"""
Settings provider.

The engine never reads ShopSettings rows directly. It asks a SettingsProvider
for an immutable, normalized ShopSettingsSnapshot, so every operation sees one
consistent view of the configuration.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..extensions import db
from ..models.shop_settings import ShopSettings
from ..utils.settings_defaults import DEFAULT_SHOP_SETTINGS, normalize_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShopSettingsSnapshot:
    shop: str
    earn_rate: int
    redemption_steps: Tuple[int, ...]
    redemption_value_map: Dict[int, int]
    redemption_min_order: int
    points_expire_inactivity_days: int
    redemption_expiry_hours: int
    prevent_multiple_active_redemptions: bool
    restore_points_on_redemption_expiry: bool
    eligible_collection_handle: str
    excluded_customer_tags: Tuple[str, ...] = ()
    include_product_tags: Tuple[str, ...] = ()
    exclude_product_tags: Tuple[str, ...] = ()
    excluded_collection_ids: Tuple[str, ...] = ()
    eligible_collection_gid: Optional[str] = None
    persisted: bool = field(default=False, compare=False)

    def value_for(self, points: int) -> Optional[Decimal]:
        """Dollar value of a redemption step, or None when the map does not price it."""
        dollars = self.redemption_value_map.get(int(points))
        return Decimal(dollars) if dollars else None

    def is_customer_excluded(self, tags) -> Optional[str]:
        """Return the first excluded tag the customer carries (case-insensitive)."""
        excluded = {t.strip().lower() for t in self.excluded_customer_tags if t.strip()}
        for tag in tags or []:
            if str(tag).strip().lower() in excluded:
                return str(tag).strip()
        return None

    def to_public_dict(self) -> Dict[str, Any]:
        """Customer-facing subset used by the loyalty payload."""
        return {
            'earnRate': self.earn_rate,
            'redemptionSteps': list(self.redemption_steps),
            'redemptionValueMap': {str(k): v for k, v in sorted(self.redemption_value_map.items())},
            'redemptionMinOrder': self.redemption_min_order,
            'redemptionExpiryHours': self.redemption_expiry_hours,
            'pointsExpireInactivityDays': self.points_expire_inactivity_days,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full settings for the admin, keyed the way upsert() accepts them."""
        return {
            'earn_rate': self.earn_rate,
            'redemption_steps': list(self.redemption_steps),
            'redemption_value_map': {str(k): v for k, v in sorted(self.redemption_value_map.items())},
            'redemption_min_order': self.redemption_min_order,
            'points_expire_inactivity_days': self.points_expire_inactivity_days,
            'redemption_expiry_hours': self.redemption_expiry_hours,
            'prevent_multiple_active_redemptions': self.prevent_multiple_active_redemptions,
            'restore_points_on_redemption_expiry': self.restore_points_on_redemption_expiry,
            'eligible_collection_handle': self.eligible_collection_handle,
            'excluded_customer_tags': list(self.excluded_customer_tags),
            'include_product_tags': list(self.include_product_tags),
            'exclude_product_tags': list(self.exclude_product_tags),
            'excluded_collection_ids': list(self.excluded_collection_ids),
        }


class SettingsProvider:
    """
    Reads and maintains ShopSettings rows.

    Usage:
        provider = SettingsProvider()
        settings = provider.get('shop.myshopify.com')
    """

    def get(self, shop: str) -> ShopSettingsSnapshot:
        row = db.session.get(ShopSettings, shop)
        values = normalize_settings(row.raw_values() if row else {})

        gid = None
        if row and row.eligible_collection_gid and \
                row.eligible_collection_gid_handle == values['eligible_collection_handle']:
            gid = row.eligible_collection_gid

        return ShopSettingsSnapshot(
            shop=shop,
            earn_rate=values['earn_rate'],
            redemption_steps=tuple(values['redemption_steps']),
            redemption_value_map=dict(values['redemption_value_map']),
            redemption_min_order=values['redemption_min_order'],
            points_expire_inactivity_days=values['points_expire_inactivity_days'],
            redemption_expiry_hours=values['redemption_expiry_hours'],
            prevent_multiple_active_redemptions=values['prevent_multiple_active_redemptions'],
            restore_points_on_redemption_expiry=values['restore_points_on_redemption_expiry'],
            eligible_collection_handle=values['eligible_collection_handle'],
            excluded_customer_tags=tuple(values['excluded_customer_tags']),
            include_product_tags=tuple(values['include_product_tags']),
            exclude_product_tags=tuple(values['exclude_product_tags']),
            excluded_collection_ids=tuple(values['excluded_collection_ids']),
            eligible_collection_gid=gid,
            persisted=row is not None,
        )

    def upsert(self, shop: str, **values) -> ShopSettingsSnapshot:
        """Write normalized values for a shop and return the fresh snapshot."""
        unknown = set(values) - set(DEFAULT_SHOP_SETTINGS)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        row = db.session.get(ShopSettings, shop)
        current = row.raw_values() if row else {}
        current.update(values)
        normalized = normalize_settings(current)
        normalized['redemption_value_map'] = {
            str(k): v for k, v in normalized['redemption_value_map'].items()
        }

        if row is None:
            row = ShopSettings(shop=shop)
            db.session.add(row)
        for key, value in normalized.items():
            setattr(row, key, value)
        db.session.commit()
        logger.info(f'Settings updated for {shop}: {", ".join(sorted(values))}')
        return self.get(shop)

    def remember_collection_gid(self, shop: str, handle: str, gid: str) -> None:
        """Cache the resolved collection for the handle it was resolved from."""
        row = db.session.get(ShopSettings, shop)
        if row is None:
            row = ShopSettings(shop=shop)
            db.session.add(row)
        row.eligible_collection_gid = gid
        row.eligible_collection_gid_handle = handle
        db.session.commit()

    def delete(self, shop: str) -> int:
        deleted = ShopSettings.query.filter_by(shop=shop).delete()
        db.session.commit()
        return deleted
