import json
import sys
from datetime import datetime, timezone


def json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


def token_prefix(token) -> str:
    # Never log a full device token.
    token = str(token or "")
    return (token[:8] + "...") if token else ""
