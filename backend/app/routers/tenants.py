from fastapi import APIRouter, HTTPException, Depends
import json
import uuid
from ..db import get_conn
from ..deps import get_current_user
from ..logs import json_log
from ..store_settings import merge_settings
from ..validation import StoreSettingsPatch

router = APIRouter(prefix="/tenants", tags=["tenants"])


def _can_manage_tenant(user: dict, tenant_id: str) -> bool:
    if user.get("role") == "admin":
        return True
    return user.get("role") == "partner" and str(user.get("tenant_id") or "") == tenant_id


@router.patch("/{tenant_id}/settings")
def update_tenant_settings(tenant_id: uuid.UUID, data: StoreSettingsPatch, user=Depends(get_current_user)):
    """
    Brand-level defaults. Stores inherit any field they do not override.
    """
    tid = str(tenant_id)
    if not _can_manage_tenant(user, tid):
        raise HTTPException(status_code=403, detail="no tenant access")
    patch = data.as_json()
    if not patch:
        raise HTTPException(status_code=400, detail="no settings to update")
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT settings
                FROM tenants
                WHERE id = %s
                FOR UPDATE
                """,
                (tid,),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="tenant not found")
            merged = merge_settings(row["settings"], patch)
            cur.execute(
                """
                UPDATE tenants
                SET settings = %s::jsonb
                WHERE id = %s
                """,
                (json.dumps(merged), tid),
            )
    json_log("info", "tenants.settings.updated", tenant_id=tid, fields=sorted(patch.keys()))
    return {"tenant_id": tid, "tenant_settings": merged}
