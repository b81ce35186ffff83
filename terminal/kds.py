"""Kitchen display filtering driven by the reconciled `kds_settings`."""

from datetime import datetime, timezone
from typing import Iterable, Optional

from .reconciliation import DEFAULT_KDS_SETTINGS

COMPLETED = "completed"


def _kds(settings: Optional[dict]) -> dict:
    return {**DEFAULT_KDS_SETTINGS, **((settings or {}).get("kds_settings") or {})}


def _parse_ts(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _elapsed_minutes(since: Optional[datetime], now: datetime) -> int:
    if since is None:
        return 0
    return int((now - since).total_seconds() // 60)


def is_overdue(order: dict, settings: Optional[dict], now: Optional[datetime] = None) -> bool:
    if order.get("status") == COMPLETED:
        return False
    now = now or datetime.now(timezone.utc)
    return _elapsed_minutes(_parse_ts(order.get("created_at")), now) >= int(_kds(settings)["overdue_minutes"])


def visible_orders(orders: Iterable[dict], settings: Optional[dict], now: Optional[datetime] = None) -> list[dict]:
    kds = _kds(settings)
    now = now or datetime.now(timezone.utc)
    clear_after = int(kds["auto_clear_completed_minutes"] or 0)
    out = []
    for order in orders:
        order_type = order.get("order_type")
        if order_type == "dine_in" and not kds["show_dine_in"]:
            continue
        if order_type == "take_out" and not kds["show_take_out"]:
            continue
        if order.get("status") == COMPLETED and clear_after > 0:
            finished = _parse_ts(order.get("updated_at")) or _parse_ts(order.get("created_at"))
            if _elapsed_minutes(finished, now) >= clear_after:
                continue
        out.append(order)
    return out
