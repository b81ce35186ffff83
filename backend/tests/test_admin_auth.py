import pytest
from fastapi.testclient import TestClient

from backend.app.deps import SESSION_COOKIE_NAME
from backend.app.main import app
from backend.app.routers import auth as auth_router
from backend.app.routers.tenants import _can_manage_tenant
from backend.app.security import hash_password, hash_session_token


class _UserCursor:
    def __init__(self, user):
        self.user = user
        self.sessions = []
        self.rows = []

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.rows = []
        if "from users" in text:
            self.rows = [self.user] if self.user and params[0] == self.user["email"] else []
            return
        if text.startswith("insert into auth_sessions"):
            self.sessions.append(params)
            return
        if text.startswith("update users set hashed_password"):
            return
        raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None


@pytest.fixture(scope="module")
def admin_row():
    return {
        "id": "u-1",
        "email": "admin@velopos.local",
        "hashed_password": hash_password("correct horse"),
        "is_active": True,
        "role": "admin",
        "tenant_id": None,
        "store_id": None,
    }


def test_login_sets_cookie_and_stores_only_token_hash(monkeypatch, fake_get_conn, admin_row):
    cur = _UserCursor(admin_row)
    monkeypatch.setattr(auth_router, "get_conn", fake_get_conn(cur))

    res = TestClient(app).post("/auth/login", json={"email": " Admin@VeloPOS.local ", "password": "correct horse"})

    assert res.status_code == 200
    token = res.json()["token"]
    assert res.cookies.get(SESSION_COOKIE_NAME) == token
    (session,) = cur.sessions
    assert session[1] == hash_session_token(token)


def test_login_rejects_wrong_password(monkeypatch, fake_get_conn, admin_row):
    cur = _UserCursor(admin_row)
    monkeypatch.setattr(auth_router, "get_conn", fake_get_conn(cur))

    res = TestClient(app).post("/auth/login", json={"email": "admin@velopos.local", "password": "nope"})

    assert res.status_code == 401
    assert res.json()["detail"] == "invalid credentials"
    assert cur.sessions == []


def test_tenant_settings_are_managed_by_admin_or_own_partner():
    assert _can_manage_tenant({"role": "admin"}, "t1") is True
    assert _can_manage_tenant({"role": "partner", "tenant_id": "t1"}, "t1") is True
    assert _can_manage_tenant({"role": "partner", "tenant_id": "t2"}, "t1") is False
    assert _can_manage_tenant({"role": "store_manager", "tenant_id": "t1"}, "t1") is False
