from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from tubefeed.app.api.routes import router
from tubefeed.app.dependencies import get_pipeline, get_settings, get_telemetry
from tubefeed.app.logging_config import configure_application_logging
from tubefeed.app.models.video_contracts import SchedulerStatusResponse
from tubefeed.app.services.scheduler_service import SchedulerService

LOGGER = logging.getLogger("tubefeed.api")

REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


def scheduler_status(request: Request) -> SchedulerStatusResponse:
    scheduler: SchedulerService | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return SchedulerStatusResponse(enabled=False)
    return SchedulerStatusResponse(
        enabled=True,
        state=scheduler.state.value,
        runs_started=scheduler.runs_started,
        ticks_skipped=scheduler.ticks_skipped,
    )


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    app.state.scheduler = None

    if settings.scheduler_enabled:
        scheduler = SchedulerService(
            get_pipeline(),
            query=settings.search_query,
            interval_seconds=settings.fetch_interval_seconds,
            run_timeout_seconds=settings.fetch_run_timeout_seconds,
            telemetry=get_telemetry(),
            lock_path=settings.data_dir / "scheduler.lock",
        )
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        LOGGER.info("scheduler disabled; serving read API only")

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            app.state.scheduler.stop()
            app.state.scheduler = None


def _request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER)
    if isinstance(incoming, str) and incoming.strip():
        return incoming.strip()
    return uuid4().hex


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = _request_id(request)
    telemetry = get_telemetry().bind(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    context_tokens = bind_contextvars(http_request_id=request_id)
    started_at = perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        telemetry.emit(
            "http.request.error",
            duration_ms=int((perf_counter() - started_at) * 1000),
            error_type=type(exc).__name__,
        )
        raise
    finally:
        reset_contextvars(**context_tokens)

    response.headers[REQUEST_ID_HEADER] = request_id
    telemetry.emit(
        "http.request.finish",
        duration_ms=int((perf_counter() - started_at) * 1000),
        status_code=response.status_code,
    )
    return response


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.error(
        "video store unavailable path=%s error=%s",
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(status_code=503, content={"detail": "Video store unavailable"})


def create_app() -> FastAPI:
    app = FastAPI(title="Tubefeed API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(sqlite3.OperationalError, storage_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    app.add_api_route(
        "/system/scheduler",
        scheduler_status,
        methods=["GET"],
        response_model=SchedulerStatusResponse,
        tags=["system"],
        operation_id="scheduler_status",
    )
    return app


app = create_app()
