from decimal import ROUND_HALF_UP, Decimal

from .errors import OrderTypeNotAllowedError, StoreClosedError
from .logs import json_log
from .reconciliation import SettingsReconciliation

DINE_IN = "dine_in"
TAKE_OUT = "take_out"


def _allowed(settings: dict, order_type: str) -> bool:
    return bool(settings.get("allow_dine_in" if order_type == DINE_IN else "allow_take_out", True))


class OrderingState:
    def __init__(self, reconciliation: SettingsReconciliation, order_type: str = DINE_IN) -> None:
        self.reconciliation = reconciliation
        self.order_type = order_type
        self._unsubscribe = reconciliation.subscribe(self._on_settings)
        self._on_settings(reconciliation.snapshot, {})

    def close(self) -> None:
        self._unsubscribe()

    @property
    def settings(self) -> dict:
        return self.reconciliation.snapshot

    def _on_settings(self, settings: dict, changed: dict) -> None:
        if self.order_type == DINE_IN and not _allowed(settings, DINE_IN) and _allowed(settings, TAKE_OUT):
            self.order_type = TAKE_OUT
        elif self.order_type == TAKE_OUT and not _allowed(settings, TAKE_OUT) and _allowed(settings, DINE_IN):
            self.order_type = DINE_IN
        else:
            return
        json_log("info", "terminal.ordering.order_type_switched", order_type=self.order_type)

    def select_order_type(self, order_type: str) -> None:
        if order_type not in (DINE_IN, TAKE_OUT):
            raise OrderTypeNotAllowedError(f"unknown order type: {order_type}")
        if not _allowed(self.settings, order_type):
            raise OrderTypeNotAllowedError(f"{order_type} is not available at this store")
        self.order_type = order_type

    def service_charge(self, subtotal) -> Decimal:
        if self.order_type != DINE_IN:
            return Decimal("0")
        pct = Decimal(str(self.settings.get("service_charge_percent") or 0))
        charge = Decimal(str(subtotal)) * pct / Decimal("100")
        return charge.quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    def total(self, subtotal) -> Decimal:
        return Decimal(str(subtotal)) + self.service_charge(subtotal)

    def assert_can_submit(self) -> None:
        settings = self.settings
        if not settings.get("is_open", True):
            raise StoreClosedError("store is closed")
        if not _allowed(settings, self.order_type):
            raise OrderTypeNotAllowedError(f"{self.order_type} is not available at this store")
