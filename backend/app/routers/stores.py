from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from datetime import datetime, timedelta, timezone
import json
from psycopg.errors import UniqueViolation  # type: ignore
from ..config import settings
from ..db import get_conn
from ..deps import get_current_user, require_store_access
from ..logs import json_log
from ..security import new_pairing_code
from ..store_settings import as_dict, effective_settings, merge_settings
from ..validation import DeviceRole, StoreSettingsPatch

router = APIRouter(prefix="/stores", tags=["stores"])

PAIRING_CODE_ATTEMPTS = 5


class PairingCodeIn(BaseModel):
    role: DeviceRole


def _assert_role_allowed(tenant_mode: str, role: str) -> None:
    # Single-mode brands run one combined POS role; there is no kitchen display to pair.
    if tenant_mode == "single" and role == "kitchen":
        raise HTTPException(status_code=400, detail="kitchen devices are not available in single mode")


def _insert_pairing_code(conn, store_id: str, role: str, user_id, expires_at: datetime) -> str:
    # Release the values of expired, unclaimed codes from the live-code index.
    with conn.cursor() as cur:
        cur.execute("DELETE FROM pairing_codes WHERE used_at IS NULL AND expires_at <= now()")
        if cur.rowcount:
            json_log("info", "stores.pairing_code.expired_purged", count=cur.rowcount)
    for _ in range(PAIRING_CODE_ATTEMPTS):
        code = new_pairing_code()
        try:
            # Savepoint per attempt: a collision with another live code must not
            # abort the outer transaction.
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO pairing_codes (id, code, store_id, role, expires_at, created_by)
                        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                        """,
                        (code, store_id, role, expires_at, user_id),
                    )
            return code
        except UniqueViolation:
            continue
    raise HTTPException(status_code=503, detail="could not allocate a pairing code, try again")


@router.post("/{store_id}/pairing-codes")
def generate_pairing_code(
    data: PairingCodeIn,
    store=Depends(require_store_access),
    user=Depends(get_current_user),
):
    _assert_role_allowed(store["tenant_mode"], data.role)
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.pairing_code_ttl_minutes)
    with get_conn() as conn:
        code = _insert_pairing_code(conn, str(store["id"]), data.role, user["user_id"], expires_at)
    json_log("info", "stores.pairing_code.created", store_id=store["id"], role=data.role, user_id=user["user_id"])
    return {"code": code, "role": data.role, "store_id": store["id"], "expires_at": expires_at}


def _is_online(last_active_at, now: datetime) -> bool:
    if not last_active_at:
        return False
    return last_active_at >= now - timedelta(minutes=settings.device_online_window_minutes)


@router.get("/{store_id}/devices")
def list_devices(store=Depends(require_store_access)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, device_name, role, last_active_at, created_at
                FROM pos_devices
                WHERE store_id = %s
                ORDER BY last_active_at DESC
                """,
                (store["id"],),
            )
            rows = cur.fetchall() or []
    now = datetime.now(timezone.utc)
    devices = [
        {
            "id": r["id"],
            "device_name": r["device_name"],
            "role": r["role"],
            "last_active_at": r["last_active_at"],
            "created_at": r["created_at"],
            "online": _is_online(r["last_active_at"], now),
        }
        for r in rows
    ]
    return {"devices": devices, "tenant_mode": store["tenant_mode"]}


@router.get("/{store_id}/settings")
def get_store_settings(store=Depends(require_store_access)):
    store_settings = as_dict(store["settings"])
    tenant_settings = as_dict(store["tenant_settings"])
    return {
        "store_id": store["id"],
        "store_settings": store_settings,
        "tenant_settings": tenant_settings,
        "effective": effective_settings(tenant_settings, store_settings),
    }


@router.patch("/{store_id}/settings")
def update_store_settings(
    data: StoreSettingsPatch,
    store=Depends(require_store_access),
    user=Depends(get_current_user),
):
    patch = data.as_json()
    if not patch:
        raise HTTPException(status_code=400, detail="no settings to update")
    with get_conn() as conn:
        with conn.cursor() as cur:
            # Lock the row so two admins saving different sections don't drop each other's keys.
            cur.execute(
                """
                SELECT settings
                FROM stores
                WHERE id = %s
                FOR UPDATE
                """,
                (store["id"],),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="store not found")
            merged = merge_settings(row["settings"], patch)
            # The update trigger publishes `store_settings` to bound terminals.
            cur.execute(
                """
                UPDATE stores
                SET settings = %s::jsonb
                WHERE id = %s
                """,
                (json.dumps(merged), store["id"]),
            )
            cur.execute(
                """
                INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                VALUES (gen_random_uuid(), %s, %s, 'store.settings.update', 'store', %s, %s::jsonb)
                """,
                (store["tenant_id"], user["user_id"], store["id"], json.dumps(patch)),
            )
    json_log("info", "stores.settings.updated", store_id=store["id"], fields=sorted(patch.keys()))
    return {
        "store_id": store["id"],
        "store_settings": merged,
        "effective": effective_settings(store["tenant_settings"], merged),
    }
