"""
Terminal orchestration: screen routing plus the lifetime of the session monitor.

Every path that decides the credential is no longer valid (heartbeat, realtime
device deletion, realtime 401, order-time token check) goes through
`Terminal.force_logout`.
"""

from decimal import Decimal
from functools import partial
from typing import Optional

from .api import BackendClient
from .config import TerminalConfig, config as default_config
from .errors import InvalidCredentialError, InvalidInputError, NotPairedError, TerminalError, TransientError
from .heartbeat import HeartbeatLoop
from .logs import json_log
from .ordering import OrderingState
from .pairing import PairingService
from .realtime import RealtimeChannel, RevocationListener, SettingsListener
from .reconciliation import SettingsReconciliation
from .session import OFFLINE, READY, REVOKED, SessionResolver
from .token_store import DeviceCredential, EmployeeSession, TokenStore

LOADING = "loading"
PAIRING = "pairing"
EMPLOYEE_LOGIN = "employee_login"
ORDERING = "ordering"
KITCHEN = "kitchen"

DEVICE_UNBOUND_NOTICE = "device unbound"
CREDENTIAL_REVOKED_NOTICE = "credential revoked, please re-pair"


class SessionMonitor:
    """Heartbeat + realtime channel for one bound credential."""

    def __init__(self, api, token_store, reconciliation, credential: DeviceCredential, on_invalid_token, on_connectivity, cfg):
        self.heartbeat = HeartbeatLoop(
            api,
            token_store,
            reconciliation,
            on_invalid_token=on_invalid_token,
            on_connectivity=partial(on_connectivity, "heartbeat"),
            interval=cfg.heartbeat_seconds,
        )
        self.channel = RealtimeChannel(
            api,
            token_store,
            [SettingsListener(credential.store_id, reconciliation), RevocationListener(token_store, on_invalid_token)],
            on_invalid_token=on_invalid_token,
            retry_seconds=cfg.realtime_retry_seconds,
            on_connectivity=partial(on_connectivity, "realtime"),
        )

    def start(self) -> None:
        self.heartbeat.start()
        self.channel.start()

    async def stop(self) -> None:
        await self.heartbeat.stop()
        await self.channel.stop()


class Terminal:
    def __init__(
        self,
        cfg: Optional[TerminalConfig] = None,
        *,
        api: Optional[BackendClient] = None,
        token_store: Optional[TokenStore] = None,
    ) -> None:
        self.cfg = cfg or default_config
        self._owns_api = api is None
        self.api = api or BackendClient(self.cfg.api_base_url, timeout_s=self.cfg.request_timeout_seconds)
        self.token_store = token_store or TokenStore(self.cfg.state_path)
        self.reconciliation = SettingsReconciliation()
        self.resolver = SessionResolver(self.api, self.token_store)
        self.pairing = PairingService(self.api, self.token_store)

        self.screen = LOADING
        self.online = True
        self.notices: list[str] = []
        self.code_input = ""
        self.credential: Optional[DeviceCredential] = None
        self.employee: Optional[EmployeeSession] = None
        self.ordering: Optional[OrderingState] = None
        self.monitor: Optional[SessionMonitor] = None
        self._links: dict[str, bool] = {}
        self._logging_out = False

    def _notify(self, message: str) -> None:
        self.notices.append(message)
        json_log("info", "terminal.notice", message=message)

    def _set_screen(self, screen: str) -> None:
        if screen != self.screen:
            json_log("info", "terminal.screen", screen=screen, previous=self.screen)
        self.screen = screen

    def _set_online(self, online: bool) -> None:
        if online != self.online:
            json_log("info", "terminal.connectivity", online=online)
        self.online = online

    def _set_link(self, link: str, online: bool) -> None:
        """Online only while every monitored link (heartbeat, realtime) last succeeded."""
        self._links[link] = online
        self._set_online(all(self._links.values()))

    async def _stop_monitor(self) -> None:
        monitor, self.monitor = self.monitor, None
        if monitor is not None:
            await monitor.stop()
        self._links = {}

    def _start_monitor(self) -> None:
        if self.monitor is not None or self.credential is None:
            return
        self.monitor = SessionMonitor(
            self.api,
            self.token_store,
            self.reconciliation,
            self.credential,
            on_invalid_token=self.force_logout,
            on_connectivity=self._set_link,
            cfg=self.cfg,
        )
        self.monitor.start()

    def _close_ordering(self) -> None:
        if self.ordering is not None:
            self.ordering.close()
            self.ordering = None

    async def start(self) -> str:
        self._set_screen(LOADING)
        resolution = await self.resolver.resolve()
        if resolution.status == REVOKED:
            self._notify(CREDENTIAL_REVOKED_NOTICE)
        if resolution.credential is None:
            self._set_screen(PAIRING)
            return self.screen

        self.credential = resolution.credential
        self._set_online(resolution.status == READY)
        if resolution.store_settings:
            self.reconciliation.merge(resolution.store_settings, source="session")

        employee = self.token_store.load_employee()
        if employee is not None and employee.store_id == self.credential.store_id:
            self.employee = employee
            await self._enter_session()
        else:
            if employee is not None:
                self.token_store.clear_employee()
            self._set_screen(EMPLOYEE_LOGIN)
            self._start_monitor()
        if resolution.status == OFFLINE:
            self._notify("offline: using cached store binding")
        return self.screen

    async def submit_pairing_code(self, code: str, device_name: Optional[str] = None) -> bool:
        self.code_input = str(code or "")
        try:
            credential = await self.pairing.pair(code, device_name)
        except InvalidInputError as ex:
            self.code_input = ""
            self._notify(f"pairing failed: {ex}")
            return False
        except TransientError as ex:
            self._notify(f"pairing failed: backend unreachable ({ex})")
            return False
        self.code_input = ""
        # The previous binding, if any, was replaced in the token store.
        await self._stop_monitor()
        self._close_ordering()
        self.credential = credential
        self.employee = None
        self.reconciliation.reset()
        self._set_online(True)
        self._set_screen(EMPLOYEE_LOGIN)
        self._start_monitor()
        return True

    async def login_employee(self, pin: str) -> bool:
        if self.credential is None:
            raise NotPairedError("device is not paired")
        try:
            employee = await self.api.verify_pin(self.credential.device_token, str(pin or ""), self.credential.store_id)
        except InvalidCredentialError:
            await self.force_logout("verify_pin")
            return False
        except InvalidInputError:
            self._notify("invalid pin")
            return False
        except TransientError as ex:
            self._set_online(False)
            self._notify(f"pin check failed: backend unreachable ({ex})")
            return False

        session = EmployeeSession(
            employee_id=str(employee.get("id")),
            name=str(employee.get("name") or ""),
            role=str(employee.get("role") or "staff"),
            store_id=str(employee.get("store_id") or self.credential.store_id),
            tenant_id=str(employee.get("tenant_id") or ""),
        )
        self.token_store.save_employee(session)
        self.employee = session
        json_log("info", "terminal.employee.login", employee_id=session.employee_id, store_id=session.store_id)
        await self._enter_session()
        return True

    async def _enter_session(self) -> None:
        credential = self.credential
        try:
            store_config = await self.api.fetch_store_config(credential.device_token)
        except InvalidCredentialError:
            await self.force_logout("store_config")
            return
        except TransientError as ex:
            json_log("warning", "terminal.store_config.offline", error=str(ex))
            self._set_online(False)
        else:
            self.reconciliation.apply_store_config(store_config)

        if credential.role == "kitchen":
            self._close_ordering()
            self._set_screen(KITCHEN)
        else:
            if self.ordering is None:
                self.ordering = OrderingState(self.reconciliation)
            self._set_screen(ORDERING)
        self._start_monitor()

    async def submit_order(self, subtotal) -> dict:
        """Validate the cart against current settings and the device credential."""
        if self.ordering is None or self.credential is None:
            raise NotPairedError("ordering is not active")
        self.ordering.assert_can_submit()
        try:
            await self.api.resolve_session(self.credential.device_token)
        except InvalidCredentialError:
            await self.force_logout("submit_order")
            raise
        return {
            "order_type": self.ordering.order_type,
            "subtotal": Decimal(str(subtotal)),
            "service_charge": self.ordering.service_charge(subtotal),
            "total": self.ordering.total(subtotal),
            "employee_id": self.employee.employee_id if self.employee else None,
        }

    async def logout_employee(self) -> None:
        self.token_store.clear_employee()
        self.employee = None
        self._close_ordering()
        if self.credential is not None:
            self._set_screen(EMPLOYEE_LOGIN)

    async def unbind(self) -> None:
        credential = self.credential or self.token_store.load()
        await self._stop_monitor()
        if credential is not None:
            try:
                await self.api.unbind(credential.device_token)
            except TerminalError as ex:
                json_log("warning", "terminal.unbind.remote_failed", error=str(ex))
        self._reset_local()
        self._set_screen(PAIRING)

    def _reset_local(self) -> None:
        self.token_store.clear()
        self.credential = None
        self.employee = None
        self.code_input = ""
        self._close_ordering()
        self.reconciliation.reset()

    async def force_logout(self, reason: str = "unknown") -> None:
        if self._logging_out:
            return
        self._logging_out = True
        try:
            already_clear = self.credential is None and self.token_store.load() is None
            await self._stop_monitor()
            self._reset_local()
            if not already_clear:
                json_log("warning", "terminal.force_logout", reason=reason)
                self._notify(DEVICE_UNBOUND_NOTICE)
            self._set_screen(PAIRING)
        finally:
            self._logging_out = False

    async def close(self) -> None:
        await self._stop_monitor()
        self._close_ordering()
        if self._owns_api:
            await self.api.aclose()
