"""
hookgate application factory.

Embedding applications build a GatewayServices, register their handlers and
outgoing endpoints on it, then hand it to create_app():

    services = build_services()
    services.handlers.register("stripe", "charge.succeeded", "record_charge", record_charge)
    app = create_app(services)

Without services the lifespan builds a default container from settings, which
is enough to accept and persist webhooks before any handler is registered.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from hookgate.api.router import api_router
from hookgate.config import Settings, get_settings
from hookgate.database import dispose_engine
from hookgate.services.container import GatewayServices, build_services
from hookgate.services.intake import IntakePipeline
from hookgate.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from hookgate.utils.redis_client import close_redis

logger = logging.getLogger("hookgate")

API_VERSION = "1.0.0"
WORKER_SHUTDOWN_GRACE_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds X-Correlation-ID (or a fresh id) for the request and echoes it back."""

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

        sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.1, environment=settings.app_env)
        logger.info("Sentry initialized")
    except Exception as e:
        logger.warning("Sentry initialization failed: %s", str(e))


def _bind_services(app: FastAPI, services: GatewayServices) -> None:
    app.state.services = services
    app.state.intake = IntakePipeline(services)


def _start_workers(services: GatewayServices) -> list[asyncio.Task]:
    from hookgate.workers.maintenance import run_maintenance
    from hookgate.workers.task_processor import run_task_processor

    return [
        asyncio.create_task(run_task_processor(services), name="hookgate-task-processor"),
        asyncio.create_task(run_maintenance(services), name="hookgate-maintenance"),
    ]


async def _stop_workers(tasks: list[asyncio.Task]) -> None:
    if not tasks:
        return
    for task in tasks:
        task.cancel()
    _, still_running = await asyncio.wait(tasks, timeout=WORKER_SHUTDOWN_GRACE_SECONDS)
    if still_running:
        logger.warning("%d workers did not stop within %.0fs", len(still_running), WORKER_SHUTDOWN_GRACE_SECONDS)
        await asyncio.gather(*still_running, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("hookgate starting (env=%s)", settings.app_env)
    _init_sentry(settings)

    if app.state.services is None:
        _bind_services(app, build_services(settings))
    services: GatewayServices = app.state.services

    app.state.worker_tasks = _start_workers(services) if settings.workers_enabled else []
    logger.info(
        "Workers %s", "started" if app.state.worker_tasks else "disabled (WORKERS_ENABLED=false)",
    )

    yield

    await _stop_workers(app.state.worker_tasks)
    await services.aclose()
    await close_redis()
    await dispose_engine()
    logger.info("hookgate stopped")


def create_app(services: Optional[GatewayServices] = None) -> FastAPI:
    configure_structured_logging(get_settings().log_level)

    application = FastAPI(
        title="hookgate",
        description="Webhook gateway: verified intake, handler dispatch, outgoing delivery",
        version=API_VERSION,
        lifespan=lifespan,
    )
    application.state.services = None
    application.state.worker_tasks = []
    if services is not None:
        _bind_services(application, services)

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)
    return application


app = create_app()
