import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/velopos')
        # Comma-separated list of allowed CORS origins for the admin back-office.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        self.pairing_code_ttl_minutes = _env_int("PAIRING_CODE_TTL_MINUTES", 10)
        self.admin_session_days = _env_int("ADMIN_SESSION_DAYS", 7)
        # A device counts as "online" in the admin device list when its last
        # session lookup (heartbeat) is within this window.
        self.device_online_window_minutes = _env_int("DEVICE_ONLINE_WINDOW_MINUTES", 10)
        self.realtime_keepalive_seconds = _env_int("REALTIME_KEEPALIVE_SECONDS", 15)

settings = Settings()
