from __future__ import annotations

import re
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _strip_code(v):
    # Codes are displayed as "482 913"; accept what the operator types.
    if v is None:
        return v
    return re.sub(r"[\s-]", "", str(v))


def _strip_str(v):
    if v is None:
        return v
    return str(v).strip()


# Canonical codes mirror the CHECK constraints in `backend/db/migrations/001_init.sql`.
DeviceRole = Annotated[Literal["pos", "kitchen"], BeforeValidator(_to_lower_str)]
TenantMode = Annotated[Literal["single", "multi"], BeforeValidator(_to_lower_str)]
EmployeeRole = Annotated[Literal["staff", "store_manager"], BeforeValidator(_to_lower_str)]
AdminRole = Annotated[Literal["admin", "partner", "store_manager"], BeforeValidator(_to_lower_str)]

PairingCode = Annotated[
    str,
    BeforeValidator(_strip_code),
    StringConstraints(pattern=r"^[0-9]{6}$"),
]

Pin = Annotated[
    str,
    BeforeValidator(_strip_str),
    StringConstraints(pattern=r"^[0-9]{4,6}$"),
]


class KdsSettingsPatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overdue_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)
    show_dine_in: Optional[bool] = None
    show_take_out: Optional[bool] = None
    auto_clear_completed_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)


class StoreSettingsPatch(BaseModel):
    """
    Partial update of the operational settings JSON (stores.settings / tenants.settings).
    Only fields the caller actually sends are merged; everything else is preserved.
    """

    model_config = ConfigDict(extra="ignore")

    is_open: Optional[bool] = None
    allow_dine_in: Optional[bool] = None
    allow_take_out: Optional[bool] = None
    service_charge_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    kds_settings: Optional[KdsSettingsPatch] = None

    def as_json(self) -> dict:
        data = self.model_dump(exclude_none=True)
        pct = data.get("service_charge_percent")
        if pct is not None:
            # JSON mode would serialise Decimal as a string; keep it numeric in jsonb.
            data["service_charge_percent"] = int(pct) if pct == pct.to_integral_value() else float(pct)
        return data
