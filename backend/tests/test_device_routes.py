import uuid

import pytest
from fastapi.testclient import TestClient

from backend.app import deps
from backend.app.main import app
from backend.app.routers import devices as devices_router
from backend.app.routers import employees as employees_router
from backend.app.security import hash_device_token, hash_pin

STORE_ID = "11111111-1111-1111-1111-111111111111"
TENANT_ID = "22222222-2222-2222-2222-222222222222"


class _FakeCursor:
    def __init__(self, pairing_code=None, employees=None, tenant_mode="multi"):
        self.pairing_code = pairing_code
        self.employees = list(employees or [])
        self.store = {
            "id": STORE_ID,
            "tenant_id": TENANT_ID,
            "name": "Downtown",
            "settings": {"is_open": True, "service_charge_percent": 10},
            "tenant_name": "Velo Coffee",
            "tenant_mode": tenant_mode,
            "tenant_settings": {"allow_take_out": False},
        }
        self.devices = {}
        self.audit = []
        self.rows = []
        self.rowcount = 0

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.rows = []
        if text.startswith("update pairing_codes"):
            (code,) = params
            if self.pairing_code and self.pairing_code["code"] == code:
                claimed = self.pairing_code
                self.pairing_code = None
                self.rows = [{"id": "code-1", "store_id": claimed["store_id"], "role": claimed["role"]}]
            return
        if "from stores s join tenants t" in text:
            self.rows = [self.store] if params[0] == STORE_ID else []
            return
        if text.startswith("insert into pos_devices"):
            store_id, role, device_name, token_hash = params
            device_id = str(uuid.uuid4())
            self.devices[device_id] = {
                "id": device_id,
                "store_id": store_id,
                "role": role,
                "device_name": device_name,
                "device_token_hash": token_hash,
                "tenant_id": TENANT_ID,
            }
            self.rows = [{"id": device_id}]
            return
        if text.startswith("insert into audit_logs"):
            self.audit.append(params)
            return
        if "from pos_devices d join stores s" in text:
            (token_hash,) = params
            self.rows = [d for d in self.devices.values() if d["device_token_hash"] == token_hash]
            return
        if text.startswith("update pos_devices set last_active_at"):
            self.rowcount = 1 if params[0] in self.devices else 0
            return
        if text.startswith("select id, store_id, device_name, role from pos_devices"):
            d = self.devices.get(params[0])
            self.rows = [d] if d else []
            return
        if text.startswith("delete from pos_devices"):
            self.rowcount = 1 if self.devices.pop(params[0], None) else 0
            return
        if "from employees" in text:
            self.rows = [e for e in self.employees if e["store_id"] == params[0]]
            return
        raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchall(self):
        return list(self.rows)

    def fetchone(self):
        if not self.rows:
            return None
        return self.rows[0]


@pytest.fixture
def wire(monkeypatch, fake_get_conn):
    def _wire(cur):
        get_conn = fake_get_conn(cur)
        monkeypatch.setattr(deps, "get_conn", get_conn)
        monkeypatch.setattr(devices_router, "get_conn", get_conn)
        monkeypatch.setattr(employees_router, "get_conn", get_conn)
        return TestClient(app)

    yield _wire
    app.dependency_overrides.clear()


def _pair(client, code="482913", name="Front counter"):
    return client.post("/devices/pair", json={"code": code, "device_name": name})


def test_pair_returns_token_and_stores_only_its_hash(wire):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"})
    client = wire(cur)

    res = _pair(client, code="482 913")
    assert res.status_code == 200
    body = res.json()
    assert body["store_id"] == STORE_ID
    assert body["role"] == "pos"
    assert body["tenant_mode"] == "multi"
    token = body["device_token"]
    (device,) = cur.devices.values()
    assert device["device_token_hash"] == hash_device_token(token)
    assert token not in str(cur.devices)
    assert cur.audit


def test_pairing_code_is_single_use(wire):
    cur = _FakeCursor(pairing_code={"code": "123456", "store_id": STORE_ID, "role": "kitchen"})
    client = wire(cur)

    assert _pair(client, code="123456").status_code == 200
    second = _pair(client, code="123456")
    assert second.status_code == 400
    assert second.json()["detail"] == devices_router.INVALID_PAIRING_CODE
    assert len(cur.devices) == 1


def test_pair_rejects_malformed_code_before_db(wire):
    cur = _FakeCursor()
    client = wire(cur)
    res = _pair(client, code="12ab")
    assert res.status_code == 422
    assert res.json()["detail"] == "validation failed"


def test_session_with_unknown_token_is_invalid_device_token(wire):
    client = wire(_FakeCursor())
    res = client.post("/devices/session", headers={"X-Device-Token": "nope"})
    assert res.status_code == 401
    assert res.json()["detail"] == deps.INVALID_DEVICE_TOKEN


def test_session_without_header_is_invalid_device_token(wire):
    client = wire(_FakeCursor())
    res = client.post("/devices/session")
    assert res.status_code == 401
    assert res.json()["detail"] == deps.INVALID_DEVICE_TOKEN


def test_session_returns_binding_and_store_settings(wire):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"})
    client = wire(cur)
    token = _pair(client).json()["device_token"]

    res = client.post("/devices/session", headers={"X-Device-Token": token})
    assert res.status_code == 200
    body = res.json()
    assert body["store_id"] == STORE_ID
    assert body["store_name"] == "Downtown"
    assert body["store_settings"] == {"is_open": True, "service_charge_percent": 10}


def test_store_config_includes_both_layers_and_effective(wire):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"})
    client = wire(cur)
    token = _pair(client).json()["device_token"]

    body = client.get("/devices/store-config", headers={"X-Device-Token": token}).json()
    assert body["tenant_settings"] == {"allow_take_out": False}
    assert body["store_settings"]["service_charge_percent"] == 10
    assert body["effective"]["allow_take_out"] is False
    assert body["effective"]["service_charge_percent"] == 10


def test_unbind_deletes_own_row_then_token_is_invalid(wire):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"})
    client = wire(cur)
    token = _pair(client).json()["device_token"]

    assert client.post("/devices/unbind", headers={"X-Device-Token": token}).json() == {"ok": True}
    assert cur.devices == {}
    res = client.post("/devices/session", headers={"X-Device-Token": token})
    assert res.status_code == 401


def test_revoke_device_requires_store_access(wire):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"})
    client = wire(cur)
    device_id = _pair(client).json()["device_id"]

    app.dependency_overrides[deps.get_current_user] = lambda: {
        "user_id": "u-2",
        "role": "partner",
        "tenant_id": "another-tenant",
        "store_id": None,
    }
    assert client.delete(f"/devices/{device_id}").status_code == 403
    assert device_id in cur.devices

    app.dependency_overrides[deps.get_current_user] = lambda: {
        "user_id": "u-1",
        "role": "store_manager",
        "tenant_id": TENANT_ID,
        "store_id": STORE_ID,
    }
    assert client.delete(f"/devices/{device_id}").json() == {"ok": True}
    assert cur.devices == {}


@pytest.fixture(scope="module")
def employee_rows():
    return [
        {
            "id": "emp-1",
            "name": "Rana",
            "role": "staff",
            "store_id": STORE_ID,
            "tenant_id": TENANT_ID,
            "pin_hash": hash_pin("4821"),
        }
    ]


def test_verify_pin_matches_employee_of_device_store(wire, employee_rows):
    cur = _FakeCursor(pairing_code={"code": "482913", "store_id": STORE_ID, "role": "pos"}, employees=employee_rows)
    client = wire(cur)
    token = _pair(client).json()["device_token"]
    headers = {"X-Device-Token": token}

    ok = client.post("/employees/verify-pin", json={"pin": "4821", "store_id": STORE_ID}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["employee"]["id"] == "emp-1"
    assert "pin_hash" not in ok.json()["employee"]

    wrong = client.post("/employees/verify-pin", json={"pin": "0000"}, headers=headers)
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "invalid pin"

    other_store = client.post(
        "/employees/verify-pin",
        json={"pin": "4821", "store_id": str(uuid.uuid4())},
        headers=headers,
    )
    assert other_store.status_code == 400


def test_can_manage_store_by_role():
    store = {"id": STORE_ID, "tenant_id": TENANT_ID}
    assert deps.can_manage_store({"role": "admin"}, store) is True
    assert deps.can_manage_store({"role": "partner", "tenant_id": TENANT_ID}, store) is True
    assert deps.can_manage_store({"role": "partner", "tenant_id": "x"}, store) is False
    assert deps.can_manage_store({"role": "store_manager", "store_id": STORE_ID}, store) is True
    assert deps.can_manage_store({"role": "store_manager", "store_id": "x"}, store) is False
    assert deps.can_manage_store({"role": "staff"}, store) is False
