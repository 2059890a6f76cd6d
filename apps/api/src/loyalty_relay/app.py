from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from loyalty_relay.core.settings import settings
from loyalty_relay.db.session import async_session, engine
from .api.errors import register_exception_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.relay.runtime import RelayRuntime


APP_VERSION = "0.1.0"
SERVICE_NAME = "loyalty-relay"


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = RelayRuntime.from_settings(async_session)
    app.state.relay_runtime = runtime

    if not settings.salesforce_configured:
        logger.warning("Salesforce credentials missing; loyalty lookups and postings will fail")

    workers_enabled = settings.relay_worker_enabled
    if workers_enabled and not settings.celery_broker_url:
        runtime.start_workers()
        logger.info(
            "Relay worker pool enabled (in-process)",
            concurrency=runtime.worker_pool.concurrency,
            poll_interval_seconds=runtime.worker_pool.poll_interval_seconds,
        )
    elif workers_enabled and settings.celery_broker_url:
        logger.info(
            "Relay Celery drain enabled",
            queue=settings.celery_default_queue,
        )
    else:
        logger.info(
            "Relay worker pool disabled",
            reason="relay_worker_enabled is false",
        )

    try:
        yield
    finally:
        await runtime.shutdown()
        app.state.relay_runtime = None
        await engine.dispose()


def create_app() -> FastAPI:
    """Application factory for the loyalty relay service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        json_output=settings.log_json,
    )

    app = FastAPI(
        title="Loyalty Relay API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
            exporter_endpoint=settings.otel_exporter_otlp_endpoint,
            exporter_headers=settings.otel_exporter_otlp_headers,
        )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
