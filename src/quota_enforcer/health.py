"""Readiness state plus the health and metrics HTTP endpoints."""

import logging
import threading
from typing import Optional, Tuple

import uvicorn
from fastapi import APIRouter, FastAPI
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

logger = logging.getLogger(__name__)


class HealthState:
    """Readiness flag, set once the caches have synced."""

    def __init__(self):
        self._ready = threading.Event()

    def set_ready(self) -> None:
        self._ready.set()

    def is_ready(self) -> bool:
        return self._ready.is_set()


def create_router(health: HealthState, registry: CollectorRegistry) -> APIRouter:
    router = APIRouter()

    @router.get("/healthz", response_class=PlainTextResponse)
    def healthz():
        return "ok"

    @router.get("/readyz", response_class=PlainTextResponse)
    def readyz():
        if not health.is_ready():
            return PlainTextResponse("not ready", status_code=503)
        return "ready"

    @router.get("/metrics")
    def metrics():
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return router


def create_health_app(health: HealthState, registry: CollectorRegistry) -> FastAPI:
    """Controller-side app exposing /healthz, /readyz and /metrics."""
    app = FastAPI(title="resource-quota-enforcer")
    app.include_router(create_router(health, registry))
    return app


def serve_in_thread(
    app: FastAPI,
    port: int,
    host: str = "0.0.0.0",
    ssl_certfile: Optional[str] = None,
    ssl_keyfile: Optional[str] = None,
) -> Tuple[uvicorn.Server, threading.Thread]:
    """Run a uvicorn server in a daemon thread. Stop it with server.should_exit = True."""
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=host,
            port=port,
            ssl_certfile=ssl_certfile,
            ssl_keyfile=ssl_keyfile,
            log_level="warning",
        )
    )
    thread = threading.Thread(target=server.run, name=f"http-{port}", daemon=True)
    thread.start()
    logger.info(f"HTTP endpoints started on :{port}")
    return server, thread
