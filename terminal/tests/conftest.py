import asyncio
import os
import secrets
import sys

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from terminal.api import INVALID_DEVICE_TOKEN  # noqa: E402
from terminal.config import TerminalConfig  # noqa: E402
from terminal.errors import InvalidCredentialError, InvalidInputError, TransientError  # noqa: E402
from terminal.token_store import DeviceCredential, TokenStore, token_fingerprint  # noqa: E402

STORE_ID = "store-s1"


class FakeBackend:
    """In-memory stand-in for BackendClient with the same coroutine surface."""

    store_id = STORE_ID

    def __init__(self):
        self.pairing_codes = {}
        self.devices = {}
        self.store_settings = {"is_open": True, "service_charge_percent": 10}
        self.tenant_settings = {}
        self.employees = {"4821": {"id": "emp-1", "name": "Rana", "role": "staff", "store_id": STORE_ID}}
        self.offline = False
        self.calls = []
        self._streams = []

    def add_code(self, code, role="pos", store_id=STORE_ID):
        self.pairing_codes[code] = {"store_id": store_id, "role": role}

    def _check(self, name):
        self.calls.append(name)
        if self.offline:
            raise TransientError("backend unreachable")

    def _device(self, token):
        device = self.devices.get(token)
        if device is None:
            raise InvalidCredentialError(INVALID_DEVICE_TOKEN)
        return device

    async def exchange_pairing_code(self, code, device_name):
        self._check("pair")
        claimed = self.pairing_codes.pop(code, None)
        if claimed is None:
            raise InvalidInputError("invalid or expired pairing code")
        token = secrets.token_urlsafe(16)
        device_id = f"dev-{len(self.devices) + 1}"
        self.devices[token] = {"device_id": device_id, "device_name": device_name, **claimed}
        return {
            "device_id": device_id,
            "device_token": token,
            "store_id": claimed["store_id"],
            "store_name": "Downtown",
            "role": claimed["role"],
            "tenant_mode": "multi",
        }

    async def resolve_session(self, token):
        self._check("session")
        device = self._device(token)
        return {
            "device_id": device["device_id"],
            "store_id": device["store_id"],
            "store_name": "Downtown",
            "role": device["role"],
            "tenant_mode": "multi",
            "store_settings": dict(self.store_settings),
        }

    async def fetch_store_config(self, token):
        self._check("store_config")
        self._device(token)
        return {"tenant_settings": dict(self.tenant_settings), "store_settings": dict(self.store_settings)}

    async def verify_pin(self, token, pin, store_id=None):
        self._check("verify_pin")
        self._device(token)
        employee = self.employees.get(pin)
        if employee is None:
            raise InvalidInputError("invalid pin")
        return dict(employee)

    async def unbind(self, token):
        self._check("unbind")
        self._device(token)
        self.devices.pop(token, None)

    async def stream_events(self, token, on_open=None):
        self._check("stream")
        self._device(token)
        if on_open is not None:
            on_open()
        queue = asyncio.Queue()
        self._streams.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._streams.remove(queue)

    def publish(self, event, data):
        for queue in list(self._streams):
            queue.put_nowait((event, data))

    def update_store_settings(self, patch):
        self.store_settings.update(patch)
        self.publish("store.updated", {"store_id": STORE_ID, "settings": dict(self.store_settings)})

    def delete_device(self, token, publish=True):
        device = self.devices.pop(token)
        if publish:
            self.publish(
                "device.deleted",
                {"id": device["device_id"], "store_id": device["store_id"], "device_token_hash": token_fingerprint(token)},
            )

    async def aclose(self):
        pass


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def token_store(tmp_path):
    return TokenStore(tmp_path / "device.json")


@pytest.fixture
def paired(backend, token_store):
    """A token store already holding a credential the fake backend accepts."""
    token = "tok-" + secrets.token_hex(8)
    backend.devices[token] = {"device_id": "dev-1", "device_name": "Front", "store_id": STORE_ID, "role": "pos"}
    credential = DeviceCredential(device_token=token, store_id=STORE_ID, role="pos", store_name="Downtown", device_id="dev-1")
    token_store.save(credential)
    return credential


@pytest.fixture
def fast_config(tmp_path):
    cfg = TerminalConfig()
    cfg.api_base_url = "http://pos.test"
    cfg.state_path = tmp_path / "device.json"
    cfg.heartbeat_seconds = 0.05
    cfg.realtime_retry_seconds = 0.01
    return cfg
