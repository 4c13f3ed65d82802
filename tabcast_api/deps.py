from fastapi import FastAPI, Request

from tabcast import metrics, config
from tabcast.logger import log
from tabcast.session_manager import SessionManager


async def init_services(app: FastAPI, manager: SessionManager = None):
    app.state.session_manager = manager if manager is not None else SessionManager()
    try:
        metrics.start_metrics_server(config.PROMETHEUS_METRICS_PORT)
    except OSError as e:
        log("WARN", "metrics_start_failed", "Could not start Prometheus metrics server; continuing without metrics", error=str(e))
    log("INFO", "services_started", "Session registry initialised")


async def shutdown_services(app: FastAPI):
    sm = getattr(app.state, "session_manager", None)
    if sm is not None:
        await sm.destroy_all()
    log("INFO", "services_stopped", "All sessions destroyed")


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager
