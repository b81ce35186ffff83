"""
Single entry point for every settings update the terminal receives.

Initial store-config fetch, realtime `store.updated` pushes and heartbeat
responses all call `SettingsReconciliation.merge`, so the three channels can
arrive in any order without clobbering each other's fields.
"""

from __future__ import annotations

import copy
from decimal import Decimal
from typing import Annotated, Any, Callable, Optional

from pydantic import Field, TypeAdapter, ValidationError

from .logs import json_log

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
    "service_charge_percent": Decimal("0"),
    "kds_settings": DEFAULT_KDS_SETTINGS,
}

_bool = TypeAdapter(bool)
_minutes = TypeAdapter(Annotated[int, Field(ge=0)])
_percent = TypeAdapter(Annotated[Decimal, Field(ge=0, le=100)])

_TOP_FIELDS = {
    "is_open": _bool,
    "allow_dine_in": _bool,
    "allow_take_out": _bool,
    "service_charge_percent": _percent,
}
_KDS_FIELDS = {
    "overdue_minutes": _minutes,
    "show_dine_in": _bool,
    "show_take_out": _bool,
    "auto_clear_completed_minutes": _minutes,
}

Subscriber = Callable[[dict, dict], Any]


def _coerce(adapter: TypeAdapter, key: str, value, source: str):
    try:
        return adapter.validate_python(value)
    except ValidationError:
        json_log("warning", "terminal.settings.invalid_field", field=key, source=source, value=value)
        return None


class SettingsReconciliation:
    def __init__(self, initial: Optional[dict] = None) -> None:
        self._snapshot = copy.deepcopy(DEFAULT_SETTINGS)
        self._subscribers: list[Subscriber] = []
        if initial:
            self.merge(initial, source="initial")

    @property
    def snapshot(self) -> dict:
        return copy.deepcopy(self._snapshot)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def reset(self) -> None:
        self._snapshot = copy.deepcopy(DEFAULT_SETTINGS)

    def merge(self, partial, source: str = "unknown") -> dict:
        """
        Overwrite only the fields present in `partial`; returns the fields that changed.

        Missing or null fields keep their current value. Unknown keys are ignored.
        """
        if not isinstance(partial, dict):
            return {}

        changed: dict = {}
        for key, adapter in _TOP_FIELDS.items():
            if partial.get(key) is None:
                continue
            value = _coerce(adapter, key, partial[key], source)
            if value is None or self._snapshot[key] == value:
                continue
            self._snapshot[key] = value
            changed[key] = value

        kds_partial = partial.get("kds_settings")
        if isinstance(kds_partial, dict):
            kds_changed = {}
            current_kds = self._snapshot["kds_settings"]
            for key, adapter in _KDS_FIELDS.items():
                if kds_partial.get(key) is None:
                    continue
                value = _coerce(adapter, f"kds_settings.{key}", kds_partial[key], source)
                if value is None or current_kds.get(key) == value:
                    continue
                current_kds[key] = value
                kds_changed[key] = value
            if kds_changed:
                changed["kds_settings"] = kds_changed

        if changed:
            json_log("info", "terminal.settings.merged", source=source, fields=sorted(changed))
            snapshot = self.snapshot
            for callback in list(self._subscribers):
                callback(snapshot, changed)
        return changed

    def apply_store_config(self, config: dict) -> dict:
        """Brand defaults first, then store overrides on top."""
        changed: dict = {}
        tenant_settings = (config or {}).get("tenant_settings")
        store_settings = (config or {}).get("store_settings")
        for layer, source in ((tenant_settings, "tenant"), (store_settings, "store")):
            layer_changed = self.merge(layer, source=source)
            kds = layer_changed.pop("kds_settings", None)
            changed.update(layer_changed)
            if kds:
                changed.setdefault("kds_settings", {}).update(kds)
        return changed
