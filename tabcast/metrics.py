from prometheus_client import start_http_server, Counter, Gauge
import threading

from .logger import log

# Sessions
SESSIONS_ACTIVE = Gauge("tabcast_sessions_active", "Browser sessions currently registered")
SESSIONS_CREATED = Counter("tabcast_sessions_created_total", "Browser sessions created")
SESSIONS_DESTROYED = Counter("tabcast_sessions_destroyed_total", "Browser sessions destroyed", ["reason"])
LAUNCH_FAILURES = Counter("tabcast_launch_failures_total", "Failed browser launches", ["error"])

# Bridge
BRIDGE_VIEWERS = Gauge("tabcast_bridge_viewers", "Connected screencast viewers")
FRAMES_FORWARDED = Counter("tabcast_frames_forwarded_total", "Screencast frames forwarded to viewers")
TAB_SWITCHES = Counter("tabcast_tab_switches_total", "Screencast re-attachments to a new active tab")

_metrics_server_started = False
_metrics_lock = threading.Lock()

def start_metrics_server(port: int):
    global _metrics_server_started
    if not port:
        return
    with _metrics_lock:
        if _metrics_server_started:
            return
        start_http_server(port)
        _metrics_server_started = True
        log("INFO", "metrics_started", f"Prometheus metrics server started on port {port}")
