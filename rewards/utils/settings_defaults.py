"""
Default shop settings and normalization.

Shared between the settings model and the settings service to avoid circular imports.
"""
import json
from typing import Any, Dict, List


DEFAULT_SHOP_SETTINGS = {
    'earn_rate': 1,                             # Points per eligible whole dollar
    'redemption_steps': [500, 1000],            # Allowed point amounts
    'redemption_value_map': {'500': 10, '1000': 25},  # Points -> dollars off
    'redemption_min_order': 0,                  # Minimum subtotal in whole dollars
    'points_expire_inactivity_days': 365,
    'redemption_expiry_hours': 72,
    'prevent_multiple_active_redemptions': True,
    'restore_points_on_redemption_expiry': False,
    'eligible_collection_handle': 'rewards-eligible',
    'excluded_customer_tags': ['Wholesale'],
    'include_product_tags': [],
    'exclude_product_tags': [],
    'excluded_collection_ids': [],
}

# (min, max) for every integer setting
INT_BOUNDS = {
    'earn_rate': (0, 10000),
    'redemption_min_order': (0, 100000),
    'points_expire_inactivity_days': (0, 10000),
    'redemption_expiry_hours': (1, 8760),
}


def clamp_int(value: Any, fallback: int, minimum: int, maximum: int) -> int:
    """Coerce to int and clamp; unparseable values fall back to the default."""
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return fallback
    return max(minimum, min(maximum, number))


def parse_string_list(value: Any) -> List[str]:
    """
    Accept a list, a JSON array string, or a comma-separated string.

    Blank entries are dropped and duplicates removed (first wins).
    """
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith('['):
            try:
                value = json.loads(text)
            except ValueError:
                value = text.strip('[]').split(',')
        else:
            value = text.split(',')
    result = []
    for item in value:
        item = str(item).strip()
        if item and item not in result:
            result.append(item)
    return result


def normalize_steps(value: Any) -> List[int]:
    """Positive integer steps, de-duplicated, ascending."""
    if isinstance(value, str):
        value = parse_string_list(value)
    elif not isinstance(value, (list, tuple, set)):
        return []
    steps = set()
    for raw in value:
        try:
            step = int(raw)
        except (TypeError, ValueError):
            continue
        if step > 0:
            steps.add(step)
    return sorted(steps)


def normalize_value_map(value: Any) -> Dict[int, int]:
    """Points -> whole dollars. JSON object keys arrive as strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    if not isinstance(value, dict):
        return {}
    result = {}
    for points, dollars in value.items():
        try:
            points_int, dollars_int = int(points), int(dollars)
        except (TypeError, ValueError):
            continue
        if points_int > 0 and dollars_int > 0:
            result[points_int] = dollars_int
    return result


def normalize_settings(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge raw settings over the defaults and coerce every field.

    Missing or malformed values fall back to DEFAULT_SHOP_SETTINGS.
    """
    raw = raw or {}
    merged = dict(DEFAULT_SHOP_SETTINGS)
    merged.update({k: v for k, v in raw.items() if v is not None})

    for key, (minimum, maximum) in INT_BOUNDS.items():
        merged[key] = clamp_int(merged[key], DEFAULT_SHOP_SETTINGS[key], minimum, maximum)

    steps = normalize_steps(merged['redemption_steps'])
    merged['redemption_steps'] = steps or list(DEFAULT_SHOP_SETTINGS['redemption_steps'])

    value_map = normalize_value_map(merged['redemption_value_map'])
    if not value_map and 'redemption_value_map' not in raw:
        value_map = normalize_value_map(DEFAULT_SHOP_SETTINGS['redemption_value_map'])
    merged['redemption_value_map'] = value_map

    for key in ('excluded_customer_tags', 'include_product_tags',
                'exclude_product_tags', 'excluded_collection_ids'):
        merged[key] = parse_string_list(merged[key])

    handle = merged.get('eligible_collection_handle')
    merged['eligible_collection_handle'] = str(handle).strip() if handle else ''

    merged['prevent_multiple_active_redemptions'] = bool(merged['prevent_multiple_active_redemptions'])
    merged['restore_points_on_redemption_expiry'] = bool(merged['restore_points_on_redemption_expiry'])
    return merged
