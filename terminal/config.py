import os
from pathlib import Path

ROOT = Path(__file__).resolve().parent


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class TerminalConfig:
    def __init__(self) -> None:
        self.api_base_url = (os.getenv("POS_API_BASE_URL") or "http://localhost:8001").strip().rstrip("/")
        # Durable per-device state (credential + employee session).
        self.state_path = Path(os.getenv("POS_STATE_PATH") or (ROOT / "device.json"))
        self.heartbeat_seconds = _env_float("POS_HEARTBEAT_SECONDS", 30.0)
        self.request_timeout_seconds = _env_float("POS_REQUEST_TIMEOUT_SECONDS", 10.0)
        self.realtime_retry_seconds = _env_float("POS_REALTIME_RETRY_SECONDS", 5.0)


config = TerminalConfig()
