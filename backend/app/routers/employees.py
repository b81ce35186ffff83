from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional
import uuid
from ..db import get_conn
from ..deps import require_device
from ..security import verify_pin
from ..validation import Pin

router = APIRouter(prefix="/employees", tags=["employees"])


class PinVerifyIn(BaseModel):
    pin: Pin
    store_id: Optional[uuid.UUID] = None


def _active_employees(cur, store_id: str):
    cur.execute(
        """
        SELECT id, name, role, store_id, tenant_id, pin_hash
        FROM employees
        WHERE store_id = %s
          AND is_active = true
        ORDER BY updated_at DESC
        """,
        (store_id,),
    )
    return cur.fetchall() or []


def _match_pin(rows, pin: str):
    for r in rows:
        if verify_pin(pin, r.get("pin_hash")):
            return r
    return None


@router.post("/verify-pin")
def verify_employee_pin(data: PinVerifyIn, device=Depends(require_device)):
    store_id = str(device["store_id"])
    if data.store_id and str(data.store_id) != store_id:
        raise HTTPException(status_code=400, detail="store mismatch")
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = _match_pin(_active_employees(cur, store_id), data.pin)
    if not row:
        raise HTTPException(status_code=401, detail="invalid pin")
    return {
        "employee": {
            "id": row["id"],
            "name": row["name"],
            "role": row["role"],
            "store_id": row["store_id"],
            "tenant_id": row["tenant_id"],
        }
    }
