"""FastAPI entrypoint: wires config, container, routes, and lifecycle hooks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tarot_events.api.http.health import router as health_router
from tarot_events.api.http.orchestrator import router as orchestrator_router
from tarot_events.api.http.sessions import router as sessions_router
from tarot_events.api.stream.sse import router as sse_router
from tarot_events.core.config import Settings
from tarot_events.core.container import build_container
from tarot_events.core.lifecycle import on_shutdown, on_startup
from tarot_events.infra.observability.logger import get_logger, setup_logging
from tarot_events.transport.stomp_client import ConnectFactory

access_logger = get_logger("uvicorn.access")


def create_app(
    settings: Settings | None = None,
    *,
    connect_factory: ConnectFactory | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    container = build_container(settings, connect_factory=connect_factory)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        on_startup(container)
        try:
            yield
        finally:
            await on_shutdown(container)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (perf_counter() - start) * 1000
            client_ip = request.client.host if request.client else "-"
            access_logger.info(
                '%s "%s %s" %s %.2fms',
                client_ip,
                request.method,
                request.url.path,
                status_code,
                duration_ms,
            )

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(orchestrator_router)
    app.include_router(sse_router)

    return app


app = create_app()
