"""
EventRelay - webhook ingestion and durable event/job processing.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import Settings, get_settings
from src.api.router import api_router
from src.services.container import Services, build_services
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("eventrelay")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    try:
        import sentry_sdk
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=0.1,
            environment=settings.app_env,
        )
        logger.info("Sentry initialized")
    except Exception as e:
        logger.warning("Sentry initialization failed: %s", str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings: Settings = app.state.settings
    logger.info("EventRelay starting up (env=%s)", settings.app_env)

    if not settings.service_token:
        logger.warning(
            "SERVICE_TOKEN not set - /process-events and /jobs are unauthenticated. "
            "Set a token for production."
        )

    _init_sentry(settings)

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    services: Services = app.state.services

    worker_tasks: list[asyncio.Task] = []
    if settings.dispatcher_enabled:
        from src.workers.event_dispatcher import run_event_dispatcher
        worker_tasks.append(asyncio.create_task(
            run_event_dispatcher(services.dispatcher, settings.dispatcher_interval_seconds)
        ))
        logger.info("Event dispatcher worker started")
    else:
        logger.info("In-process dispatcher disabled (DISPATCHER_ENABLED=false); use POST /process-events")

    yield

    # Graceful shutdown - give the dispatcher time to finish its batch
    logger.info("EventRelay shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    from src.database import dispose_engine
    await dispose_engine()
    logger.info("EventRelay shutdown complete")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Application factory.

    Services are built lazily at startup unless passed in (tests pass a
    container wired to their own database and registries).
    """
    settings = settings or get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="EventRelay",
        description="Webhook gateway and durable event/job dispatcher",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.services = services

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
