from fastapi import Header, HTTPException, Depends, Cookie
from .db import get_conn
from .security import hash_device_token, hash_session_token
from datetime import datetime, timezone
from typing import Optional
import uuid


SESSION_COOKIE_NAME = "velopos_session"
# Terminals match on this exact detail to tell a revoked credential apart from
# any other 401 (e.g. a wrong employee PIN).
INVALID_DEVICE_TOKEN = "invalid device token"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, s.expires_at, s.is_active,
                       u.email, u.role, u.tenant_id, u.store_id, u.is_active AS user_active
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or not row["user_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "email": row["email"],
                "role": row["role"],
                "tenant_id": row["tenant_id"],
                "store_id": row["store_id"],
                "token": token,
            }


def get_current_user(session=Depends(get_session)):
    return {
        "user_id": session["user_id"],
        "email": session["email"],
        "role": session["role"],
        "tenant_id": session["tenant_id"],
        "store_id": session["store_id"],
    }


def can_manage_store(user: dict, store: dict) -> bool:
    role = user.get("role")
    if role == "admin":
        return True
    if role == "partner":
        return bool(user.get("tenant_id")) and str(user["tenant_id"]) == str(store.get("tenant_id"))
    if role == "store_manager":
        return bool(user.get("store_id")) and str(user["store_id"]) == str(store.get("id"))
    return False


def load_store(cur, store_id: str):
    cur.execute(
        """
        SELECT s.id, s.tenant_id, s.name, s.settings,
               t.name AS tenant_name, t.mode AS tenant_mode, t.settings AS tenant_settings
        FROM stores s
        JOIN tenants t ON t.id = s.tenant_id
        WHERE s.id = %s
        """,
        (store_id,),
    )
    return cur.fetchone()


def require_store_access(store_id: uuid.UUID, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            store = load_store(cur, str(store_id))
    if not store:
        raise HTTPException(status_code=404, detail="store not found")
    if not can_manage_store(user, store):
        raise HTTPException(status_code=403, detail="no store access")
    return store


def require_device(device_token: Optional[str] = Header(None, alias="X-Device-Token")):
    # Devices only know their token; the row (and so the store binding) is
    # looked up by its one-way hash.
    token = (device_token or "").strip()
    if not token:
        raise HTTPException(status_code=401, detail=INVALID_DEVICE_TOKEN)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT d.id, d.store_id, d.role, d.device_name, s.tenant_id
                FROM pos_devices d
                JOIN stores s ON s.id = d.store_id
                WHERE d.device_token_hash = %s
                """,
                (hash_device_token(token),),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=401, detail=INVALID_DEVICE_TOKEN)
            return {
                "device_id": row["id"],
                "store_id": row["store_id"],
                "tenant_id": row["tenant_id"],
                "role": row["role"],
                "device_name": row["device_name"],
            }
