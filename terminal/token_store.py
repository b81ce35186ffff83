"""
Durable per-device state: the device credential and the employee session.

One JSON document on local disk. Every write replaces the whole document via a
temp file + os.replace, so a crash mid-write leaves either the old or the new
state, never a mix.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

from .errors import NotPairedError
from .logs import json_log

SCHEMA_VERSION = 1


def token_fingerprint(token: str) -> str:
    # Same digest the backend stores for the device row.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class DeviceCredential:
    device_token: str
    store_id: str
    role: str
    tenant_mode: str = "multi"
    store_name: str = ""
    device_id: str = ""
    device_name: str = ""
    last_active_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> Optional["DeviceCredential"]:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (data or {}).items() if k in known}
        if not values.get("device_token") or not values.get("store_id") or not values.get("role"):
            return None
        for key in ("device_token", "store_id", "role", "tenant_mode", "store_name", "device_id", "device_name"):
            if values.get(key) is not None:
                values[key] = str(values[key])
        return cls(**values)


@dataclass
class EmployeeSession:
    employee_id: str
    name: str
    role: str
    store_id: str
    tenant_id: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Optional["EmployeeSession"]:
        known = {f.name for f in fields(cls)}
        values = {k: str(v) for k, v in (data or {}).items() if k in known and v is not None}
        if not values.get("employee_id") or not values.get("store_id"):
            return None
        values.setdefault("name", "")
        values.setdefault("role", "staff")
        return cls(**values)


class TokenStore:
    def __init__(self, path) -> None:
        self.path = Path(path)

    def _read(self) -> dict:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            json_log("warning", "terminal.token_store.corrupt", path=str(self.path))
            return {}
        if not isinstance(data, dict):
            return {}
        if data.get("version") != SCHEMA_VERSION:
            # Unknown layout: treat as unpaired rather than guess at field meanings.
            json_log("warning", "terminal.token_store.unsupported_version", version=data.get("version"))
            return {}
        return data

    def _write(self, data: Optional[dict]) -> None:
        if data is None:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".device-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"version": SCHEMA_VERSION, **data}, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def load(self) -> Optional[DeviceCredential]:
        return DeviceCredential.from_dict(self._read().get("device") or {})

    def save(self, credential: DeviceCredential) -> None:
        data = self._read()
        current = DeviceCredential.from_dict(data.get("device") or {})
        employee = data.get("employee")
        if current is None or current.device_token != credential.device_token:
            # A different credential means a different binding; the old shift is void.
            employee = None
        self._write({"device": asdict(credential), "employee": employee})

    def clear(self) -> None:
        self._write(None)

    def load_employee(self) -> Optional[EmployeeSession]:
        data = self._read()
        if DeviceCredential.from_dict(data.get("device") or {}) is None:
            return None
        return EmployeeSession.from_dict(data.get("employee") or {})

    def save_employee(self, session: EmployeeSession) -> None:
        data = self._read()
        if DeviceCredential.from_dict(data.get("device") or {}) is None:
            raise NotPairedError("device is not paired")
        self._write({"device": data["device"], "employee": asdict(session)})

    def clear_employee(self) -> None:
        data = self._read()
        if not data.get("device"):
            return
        self._write({"device": data["device"], "employee": None})
