"""
Operational store settings as stored in `tenants.settings` (brand defaults)
and `stores.settings` (per-store overrides).
"""

import copy
import json

DEFAULT_KDS_SETTINGS = {
    "overdue_minutes": 15,
    "show_dine_in": True,
    "show_take_out": True,
    "auto_clear_completed_minutes": 10,
}

DEFAULT_SETTINGS = {
    "is_open": True,
    "allow_dine_in": True,
    "allow_take_out": True,
    "service_charge_percent": 0,
    "kds_settings": DEFAULT_KDS_SETTINGS,
}


def as_dict(value) -> dict:
    # jsonb comes back as a dict from psycopg, but tolerate text columns / NULL.
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def merge_settings(current, patch: dict) -> dict:
    """
    Merge a partial settings payload into the stored JSON.

    Keys absent from `patch` are preserved, including keys this service does not
    know about. `kds_settings` is merged one level deeper so saving the kitchen
    thresholds does not wipe the store's open/closed flag and vice versa.
    """
    out = copy.deepcopy(as_dict(current))
    for key, value in (patch or {}).items():
        if key == "kds_settings" and isinstance(value, dict):
            nested = as_dict(out.get("kds_settings"))
            nested.update(value)
            out["kds_settings"] = nested
        else:
            out[key] = value
    return out


def effective_settings(tenant_settings, store_settings) -> dict:
    """Defaults, then brand-level values, then store-level overrides."""
    out = merge_settings(DEFAULT_SETTINGS, {})
    for layer in (as_dict(tenant_settings), as_dict(store_settings)):
        for key in DEFAULT_SETTINGS:
            if key in layer and layer[key] is not None:
                out = merge_settings(out, {key: layer[key]})
    return out
