"""
Realtime change feed: one SSE connection per session, fanned out to listeners.

The backend publishes `store.updated` and `device.deleted` for the whole store;
each listener decides locally whether an event concerns this terminal.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, Optional

from .api import BackendClient
from .errors import InvalidCredentialError
from .logs import json_log
from .reconciliation import SettingsReconciliation
from .token_store import TokenStore, token_fingerprint

STORE_UPDATED = "store.updated"
DEVICE_DELETED = "device.deleted"


class SettingsListener:
    event = STORE_UPDATED

    def __init__(self, store_id: str, reconciliation: SettingsReconciliation) -> None:
        self.store_id = str(store_id)
        self.reconciliation = reconciliation

    async def handle(self, data: dict) -> None:
        if str(data.get("store_id") or "") != self.store_id:
            return
        settings = data.get("settings")
        if isinstance(settings, dict):
            self.reconciliation.merge(settings, source="realtime")


class RevocationListener:
    event = DEVICE_DELETED

    def __init__(self, token_store: TokenStore, on_revoked: Callable[[str], Awaitable[None]]) -> None:
        self.token_store = token_store
        self.on_revoked = on_revoked

    async def handle(self, data: dict) -> None:
        credential = self.token_store.load()
        if credential is None:
            return
        deleted_hash = str(data.get("device_token_hash") or "")
        if not deleted_hash or deleted_hash != token_fingerprint(credential.device_token):
            return
        json_log("warning", "terminal.realtime.device_deleted", device_id=data.get("id"))
        await self.on_revoked("device_deleted")


class RealtimeChannel:
    def __init__(
        self,
        api: BackendClient,
        token_store: TokenStore,
        listeners: Iterable,
        on_invalid_token: Callable[[str], Awaitable[None]],
        retry_seconds: float = 5.0,
        on_connectivity: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.api = api
        self.token_store = token_store
        self.listeners = list(listeners)
        self.on_invalid_token = on_invalid_token
        self.retry_seconds = retry_seconds
        self.on_connectivity = on_connectivity
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    def _report(self, online: bool) -> None:
        if self.on_connectivity is not None:
            self.on_connectivity(online)

    def _opened(self) -> None:
        self._report(True)

    async def dispatch(self, event: str, data: dict) -> None:
        for listener in self.listeners:
            if listener.event == event:
                await listener.handle(data)

    async def _run(self) -> None:
        while not self._stopped:
            credential = self.token_store.load()
            if credential is None:
                return
            try:
                async for event, data in self.api.stream_events(credential.device_token, on_open=self._opened):
                    await self.dispatch(event, data)
                    if self._stopped:
                        return
            except asyncio.CancelledError:
                raise
            except InvalidCredentialError:
                await self.on_invalid_token("realtime")
                return
            except Exception as ex:
                json_log("warning", "terminal.realtime.disconnected", error=str(ex))
            if self._stopped:
                return
            self._report(False)
            await asyncio.sleep(self.retry_seconds)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
