# tabcast_api/main.py
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from tabcast import config
from tabcast.session_manager import SessionManager
from .deps import init_services, shutdown_services
from .routes import session_routes, bridge_routes


def create_app(manager: Optional[SessionManager] = None, static_dir: Optional[str] = config.STATIC_DIR) -> FastAPI:
    app = FastAPI(title="tabcast")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        await init_services(app, manager)

    # Browsers must not outlive the server
    @app.on_event("shutdown")
    async def shutdown():
        await shutdown_services(app)

    app.include_router(session_routes.router, prefix="/api")
    app.include_router(bridge_routes.router, prefix="/api")
    app.include_router(bridge_routes.router)

    # UI assets are served as-is when present
    if static_dir and os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


app = create_app()
