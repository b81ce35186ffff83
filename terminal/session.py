from dataclasses import dataclass, replace
from typing import Optional

from .api import BackendClient
from .errors import InvalidCredentialError, TransientError
from .logs import json_log, token_prefix
from .token_store import DeviceCredential, TokenStore

UNPAIRED = "unpaired"
REVOKED = "revoked"
READY = "ready"
OFFLINE = "offline"


@dataclass
class Resolution:
    status: str
    credential: Optional[DeviceCredential] = None
    store_settings: Optional[dict] = None


def refresh_credential(credential: DeviceCredential, res: dict) -> DeviceCredential:
    """Apply the server's view of the binding onto the stored credential."""
    return replace(
        credential,
        store_id=str(res.get("store_id") or credential.store_id),
        role=str(res.get("role") or credential.role),
        tenant_mode=str(res.get("tenant_mode") or credential.tenant_mode),
        store_name=str(res.get("store_name") or credential.store_name),
        device_id=str(res.get("device_id") or credential.device_id),
        device_name=str(res.get("device_name") or credential.device_name),
        last_active_at=res.get("last_active_at") or credential.last_active_at,
    )


class SessionResolver:
    def __init__(self, api: BackendClient, token_store: TokenStore) -> None:
        self.api = api
        self.token_store = token_store

    async def resolve(self) -> Resolution:
        credential = self.token_store.load()
        if credential is None:
            return Resolution(UNPAIRED)

        try:
            res = await self.api.resolve_session(credential.device_token)
        except InvalidCredentialError:
            json_log("warning", "terminal.session.revoked", token=token_prefix(credential.device_token))
            self.token_store.clear()
            return Resolution(REVOKED)
        except TransientError as ex:
            # Keep the cached binding; the heartbeat re-validates once the backend is reachable.
            json_log("warning", "terminal.session.offline", error=str(ex))
            return Resolution(OFFLINE, credential)

        refreshed = refresh_credential(credential, res)
        current = self.token_store.load()
        if current is not None and current.device_token == credential.device_token:
            self.token_store.save(refreshed)
        settings = res.get("store_settings")
        return Resolution(READY, refreshed, settings if isinstance(settings, dict) else None)
