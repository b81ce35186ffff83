import asyncio
from typing import Awaitable, Callable, Optional

from .api import BackendClient
from .errors import InvalidCredentialError
from .logs import json_log, token_prefix
from .reconciliation import SettingsReconciliation
from .token_store import TokenStore


class HeartbeatLoop:
    """
    Periodic device-session lookup.

    Runs at a fixed rate measured from each tick's start. A slow backend does not
    delay the next tick, so ticks can overlap.
    """

    def __init__(
        self,
        api: BackendClient,
        token_store: TokenStore,
        reconciliation: SettingsReconciliation,
        on_invalid_token: Callable[[str], Awaitable[None]],
        on_connectivity: Optional[Callable[[bool], None]] = None,
        interval: float = 30.0,
    ) -> None:
        self.api = api
        self.token_store = token_store
        self.reconciliation = reconciliation
        self.on_invalid_token = on_invalid_token
        self.on_connectivity = on_connectivity
        self.interval = interval
        self._scheduler: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._scheduler is not None and not self._scheduler.done()

    def _set_online(self, online: bool) -> None:
        if self.on_connectivity is not None:
            self.on_connectivity(online)

    async def tick(self) -> None:
        credential = self.token_store.load()
        if credential is None:
            return
        token = credential.device_token
        try:
            res = await self.api.resolve_session(token)
        except asyncio.CancelledError:
            raise
        except InvalidCredentialError:
            current = self.token_store.load()
            if current is None or current.device_token != token:
                # The terminal was re-paired or already logged out while this tick was in flight.
                return
            json_log("warning", "terminal.heartbeat.invalid_token", token=token_prefix(token))
            await self.on_invalid_token("heartbeat")
            return
        except Exception as ex:
            json_log("warning", "terminal.heartbeat.offline", error=str(ex))
            self._set_online(False)
            return

        if self._stopped:
            return
        self._set_online(True)
        settings = res.get("store_settings")
        if isinstance(settings, dict):
            self.reconciliation.merge(settings, source="heartbeat")

    def _spawn_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self.tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while not self._stopped:
            self._spawn_tick()
            next_at += self.interval
            await asyncio.sleep(max(0.0, next_at - loop.time()))

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._scheduler = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._stopped = True
        current = asyncio.current_task()
        tasks = [t for t in [self._scheduler, *self._ticks] if t is not None and t is not current]
        self._scheduler = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
