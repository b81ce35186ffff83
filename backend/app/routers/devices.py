from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import Optional
import json
import uuid
from ..db import get_conn
from ..deps import INVALID_DEVICE_TOKEN, require_device, get_current_user, can_manage_store, load_store
from ..logs import json_log
from ..security import hash_device_token, new_device_token
from ..store_settings import as_dict, effective_settings
from ..validation import PairingCode

router = APIRouter(prefix="/devices", tags=["devices"])

INVALID_PAIRING_CODE = "invalid or expired pairing code"


class PairIn(BaseModel):
    code: PairingCode
    device_name: Optional[str] = Field(default=None, max_length=120)


def _claim_pairing_code(cur, code: str):
    # Validation and consumption happen in one statement so two terminals racing
    # on the same code cannot both win.
    cur.execute(
        """
        UPDATE pairing_codes
        SET used_at = now()
        WHERE code = %s
          AND used_at IS NULL
          AND expires_at > now()
        RETURNING id, store_id, role
        """,
        (code,),
    )
    return cur.fetchone()


def _insert_device(cur, store_id: str, role: str, device_name: Optional[str]):
    token = new_device_token()
    cur.execute(
        """
        INSERT INTO pos_devices (id, store_id, role, device_name, device_token_hash, last_active_at)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, now())
        RETURNING id
        """,
        (store_id, role, device_name, hash_device_token(token)),
    )
    return cur.fetchone()["id"], token


def _audit(cur, tenant_id, user_id, action: str, device_id, details: dict):
    cur.execute(
        """
        INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, 'pos_device', %s, %s::jsonb)
        """,
        (tenant_id, user_id, action, device_id, json.dumps(details)),
    )


def _device_session_payload(cur, device: dict) -> dict:
    store = load_store(cur, str(device["store_id"]))
    if not store:
        # Store deleted underneath the device; treat like a revoked credential.
        raise HTTPException(status_code=401, detail=INVALID_DEVICE_TOKEN)
    return {
        "device_id": device["device_id"],
        "device_name": device.get("device_name"),
        "store_id": store["id"],
        "store_name": store["name"],
        "role": device["role"],
        "tenant_mode": store["tenant_mode"],
        "store_settings": as_dict(store["settings"]),
    }


@router.post("/pair")
def pair_device(data: PairIn):
    device_name = (data.device_name or "").strip() or None
    with get_conn() as conn:
        with conn.cursor() as cur:
            claimed = _claim_pairing_code(cur, data.code)
            if not claimed:
                raise HTTPException(status_code=400, detail=INVALID_PAIRING_CODE)
            store = load_store(cur, str(claimed["store_id"]))
            if not store:
                raise HTTPException(status_code=400, detail=INVALID_PAIRING_CODE)
            device_id, token = _insert_device(cur, str(store["id"]), claimed["role"], device_name)
            _audit(
                cur,
                store["tenant_id"],
                None,
                "pos.device.pair",
                device_id,
                {"role": claimed["role"], "device_name": device_name},
            )
    json_log("info", "devices.paired", device_id=device_id, store_id=store["id"], role=claimed["role"])
    return {
        "device_id": device_id,
        "device_token": token,
        "store_id": store["id"],
        "store_name": store["name"],
        "role": claimed["role"],
        "tenant_mode": store["tenant_mode"],
    }


@router.post("/session")
def resolve_session(device=Depends(require_device)):
    """
    Device session lookup. Called once at terminal startup and on every heartbeat;
    each call refreshes the device's last-active timestamp.
    """
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE pos_devices
                SET last_active_at = now()
                WHERE id = %s
                """,
                (device["device_id"],),
            )
            return _device_session_payload(cur, device)


@router.get("/store-config")
def store_config(device=Depends(require_device)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            store = load_store(cur, str(device["store_id"]))
    if not store:
        raise HTTPException(status_code=401, detail=INVALID_DEVICE_TOKEN)
    tenant_settings = as_dict(store["tenant_settings"])
    store_settings = as_dict(store["settings"])
    return {
        "store_id": store["id"],
        "store_name": store["name"],
        "tenant_name": store["tenant_name"],
        "tenant_mode": store["tenant_mode"],
        "tenant_settings": tenant_settings,
        "store_settings": store_settings,
        "effective": effective_settings(tenant_settings, store_settings),
    }


@router.post("/unbind")
def unbind_device(device=Depends(require_device)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                DELETE FROM pos_devices
                WHERE id = %s
                """,
                (device["device_id"],),
            )
            _audit(cur, device["tenant_id"], None, "pos.device.unbind", device["device_id"], {})
    json_log("info", "devices.unbound", device_id=device["device_id"])
    return {"ok": True}


@router.delete("/{device_id}")
def revoke_device(device_id: uuid.UUID, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, store_id, device_name, role
                FROM pos_devices
                WHERE id = %s
                """,
                (str(device_id),),
            )
            device = cur.fetchone()
            if not device:
                raise HTTPException(status_code=404, detail="device not found")
            store = load_store(cur, str(device["store_id"]))
            if not store or not can_manage_store(user, store):
                raise HTTPException(status_code=403, detail="no store access")
            # The delete trigger publishes `device_deleted`; bound terminals log
            # themselves out when they see their own token hash in it.
            cur.execute(
                """
                DELETE FROM pos_devices
                WHERE id = %s
                """,
                (str(device_id),),
            )
            if cur.rowcount == 0:
                raise HTTPException(status_code=404, detail="device not found")
            _audit(
                cur,
                store["tenant_id"],
                user["user_id"],
                "pos.device.revoke",
                str(device_id),
                {"device_name": device["device_name"], "role": device["role"]},
            )
    json_log("info", "devices.revoked", device_id=str(device_id), user_id=user["user_id"])
    return {"ok": True}
