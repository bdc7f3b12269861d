"""FastAPI relay server: status files in, WebSocket broadcasts out."""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .api.routes import control
from .api.websocket import ConnectionManager, websocket_route
from .config import RelaySettings
from .models.schemas import HealthResponse
from .services.watcher import StatusChangeAdapter, StatusWatcher

logger = logging.getLogger(__name__)


def _write_pid_file(path: str):
    try:
        with open(path, "w") as f:
            f.write(str(os.getpid()))
    except OSError as e:
        logger.warning(f"Could not write PID file {path}: {e}")


def _remove_pid_file(path: str):
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove PID file {path}: {e}")


def create_app(settings: Optional[RelaySettings] = None) -> FastAPI:
    """Build the relay app for ``settings`` (environment defaults if omitted)."""
    settings = settings or RelaySettings.from_env()

    connection_manager = ConnectionManager(replay_on_connect=settings.replay_on_connect)
    watcher = StatusWatcher(
        settings.status_dir,
        adapter=StatusChangeAdapter(settings.status_extension, settings.missions),
        debounce_ms=settings.debounce_ms,
        use_polling=settings.use_polling
    )
    watcher.register_callback(connection_manager.publish)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info(f"Starting relay server, watching {settings.status_dir}")
        app.state.started_at = time.time()
        watcher.start(asyncio.get_running_loop())
        _write_pid_file(settings.pid_file)

        yield

        logger.info("Shutting down relay server...")
        watcher.stop()
        await connection_manager.close_all()
        for task in list(app.state.background_tasks):
            task.cancel()
        _remove_pid_file(settings.pid_file)

    app = FastAPI(
        title="Mission Relay",
        description="Relays mission status files to connected viewers",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.connection_manager = connection_manager
    app.state.watcher = watcher
    app.state.background_tasks = set()
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(control.router, tags=["control"])

    @app.get("/health", tags=["health"])
    async def health_check() -> HealthResponse:
        """Liveness probe for the relay process."""
        return HealthResponse(
            status="ok",
            version=__version__,
            uptime=time.time() - app.state.started_at,
            timestamp=datetime.now()
        )

    @app.get("/api/stats", tags=["monitoring"])
    async def get_stats():
        """Get connection and watcher statistics."""
        return {
            "websocket_connections": connection_manager.get_connection_stats(),
            "watcher": watcher.get_stats(),
            "server_uptime": time.time() - app.state.started_at
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Push channel for status envelopes."""
        await websocket_route(websocket, connection_manager)

    @app.exception_handler(404)
    async def not_found_handler(request, exc):
        return JSONResponse(status_code=404, content={"detail": "Resource not found"})

    @app.exception_handler(500)
    async def internal_error_handler(request, exc):
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Static assets last so API routes take precedence
    if os.path.isdir(settings.public_dir):
        app.mount("/", StaticFiles(directory=settings.public_dir, html=True), name="public")

    return app


def run(settings: Optional[RelaySettings] = None, log_level: str = "info"):
    """Serve the relay with uvicorn until interrupted."""
    import uvicorn

    settings = settings or RelaySettings.from_env()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=log_level
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    run()
