# tabcast/config.py
import os
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


def _env_size(name: str, default: str) -> Tuple[int, int]:
    raw = os.getenv(name, default)
    w, _, h = raw.replace("x", ",").partition(",")
    return int(w), int(h)


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# Browser launch
HEADLESS = _env_bool("HEADLESS", True)
BROWSER_EXEC_PATH = os.getenv("BROWSER_EXEC_PATH") or None
WINDOW_SIZE = _env_size("WINDOW_SIZE", "1920,1080")
DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "en-US")
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
STEALTH_ENABLED = _env_bool("STEALTH_ENABLED", True)
SESSION_DEFAULT_DURATION_SEC = int(os.getenv("SESSION_DEFAULT_DURATION_SEC", "0"))

# Debugging ports
CDP_HOST = os.getenv("CDP_HOST", "127.0.0.1")
CDP_PORT_RANGE_START = int(os.getenv("CDP_PORT_RANGE_START", "9222"))
CDP_PORT_RANGE_END = int(os.getenv("CDP_PORT_RANGE_END", "9322"))

# Launch readiness probe (attempts x interval, not a single deadline)
PROBE_MAX_ATTEMPTS = int(os.getenv("PROBE_MAX_ATTEMPTS", "60"))
PROBE_INTERVAL_MS = int(os.getenv("PROBE_INTERVAL_MS", "150"))
PROBE_REQUEST_TIMEOUT_SEC = float(os.getenv("PROBE_REQUEST_TIMEOUT_SEC", "0.5"))

# Steady-state calls must fail fast
TARGET_LIST_TIMEOUT_SEC = float(os.getenv("TARGET_LIST_TIMEOUT_SEC", "0.7"))
CDP_CALL_TIMEOUT_SEC = float(os.getenv("CDP_CALL_TIMEOUT_SEC", "0.8"))
TAB_POLL_INTERVAL_SEC = float(os.getenv("TAB_POLL_INTERVAL_SEC", "0.7"))

# Screencast
SCREENCAST_FORMAT = os.getenv("SCREENCAST_FORMAT", "jpeg")
SCREENCAST_QUALITY = int(os.getenv("SCREENCAST_QUALITY", "80"))

# Server
SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("PORT", os.getenv("SERVER_PORT", "3000")))
STATIC_DIR = os.getenv("STATIC_DIR", "public")
CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
PROMETHEUS_METRICS_PORT = int(os.getenv("PROMETHEUS_METRICS_PORT", "0"))

# Outer wrapper (main.py)
CDP_PORT = int(os.getenv("CDP_PORT", "9222"))
MCP_PORT = int(os.getenv("MCP_PORT", "8931"))
