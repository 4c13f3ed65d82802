# tabcast/logger.py
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any

LOG_LEVEL = os.getenv("TABCAST_LOG_LEVEL", "INFO").upper()
LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def _should_log(level: str) -> bool:
    return LEVELS.get(level, 20) >= LEVELS.get(LOG_LEVEL, 20)


def _stream(level: str):
    return sys.stderr if LEVELS.get(level, 20) >= LEVELS["WARN"] else sys.stdout


def log(level: str, event: str, message: str = "", **kwargs: Any) -> None:
    """
    Emit one JSON line. `event` is snake_case with the emitting component as
    its first word (launch_*, registry_*, bridge_*, cdp_*, ...).
    """
    if not _should_log(level):
        return
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "component": event.split("_", 1)[0],
        "event": event,
        "message": str(message),
        "payload": kwargs,
    }
    try:
        line = json.dumps(entry, default=str)
    except (TypeError, ValueError) as e:
        line = json.dumps({
            "ts": entry["ts"],
            "level": "ERROR",
            "component": "logger",
            "event": "log_serialization_error",
            "message": f"Failed to log event {event}: {e}",
        })
    print(line, file=_stream(level), flush=True)
