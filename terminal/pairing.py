import platform
import re
from datetime import date
from typing import Optional

from .api import BackendClient
from .errors import InvalidInputError, TransientError
from .logs import json_log
from .token_store import DeviceCredential, TokenStore

_CODE_RE = re.compile(r"^[0-9]{6}$")


def normalize_code(raw) -> str:
    code = re.sub(r"[\s\-]+", "", str(raw or ""))
    if not _CODE_RE.match(code):
        raise InvalidInputError("pairing code must be 6 digits")
    return code


def describe_device(today: Optional[date] = None) -> str:
    system = platform.system() or "Terminal"
    machine = platform.machine() or "device"
    return f"{system} {machine} · {(today or date.today()).isoformat()}"


class PairingService:
    def __init__(self, api: BackendClient, token_store: TokenStore) -> None:
        self.api = api
        self.token_store = token_store

    async def pair(self, code, device_name: Optional[str] = None) -> DeviceCredential:
        """
        Exchange a one-time pairing code for a device credential.

        Nothing is written to the token store unless the exchange succeeds, so a
        bad or reused code can be retried without side effects.
        """
        normalized = normalize_code(code)
        name = (device_name or "").strip() or describe_device()
        res = await self.api.exchange_pairing_code(normalized, name)

        credential = DeviceCredential.from_dict(
            {
                "device_token": res.get("device_token"),
                "store_id": res.get("store_id"),
                "role": res.get("role"),
                "tenant_mode": res.get("tenant_mode") or "multi",
                "store_name": res.get("store_name") or "",
                "device_id": res.get("device_id") or "",
                "device_name": name,
            }
        )
        if credential is None:
            raise TransientError("pairing response missing device_token/store_id/role")
        self.token_store.save(credential)
        json_log(
            "info",
            "terminal.pairing.ok",
            store_id=credential.store_id,
            role=credential.role,
            device_id=credential.device_id,
        )
        return credential
