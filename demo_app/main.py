from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from demo_app.api.hello import router as hello_router
from demo_app.api.metrics import router as metrics_router
from demo_app.config import Settings, get_settings
from demo_app.observability.logging import configure_logging
from demo_app.observability.metrics import MetricsRegistry
from demo_app.observability.middleware import InstrumentationMiddleware
from demo_app.observability.tracing import TracingConfig, TracingManager


def build_metrics(settings: Settings) -> MetricsRegistry:
    return MetricsRegistry(
        settings.service_name,
        collect_default_metrics=settings.collect_default_metrics,
    )


def build_tracing(settings: Settings) -> TracingManager:
    config = TracingConfig(
        service_name=settings.service_name,
        exporter_type=settings.trace_exporter,
        collector_host=settings.trace_collector_host,
        collector_port=settings.trace_collector_port,
        log_spans=settings.log_spans,
    )
    tracing = TracingManager(config)
    tracing.setup()
    return tracing


def create_app(
    settings: Settings | None = None,
    metrics: MetricsRegistry | None = None,
    tracing: TracingManager | None = None,
) -> FastAPI:
    """Build the service with its telemetry collaborators.

    Registry and tracer live for the lifetime of the returned app; the tracer
    is flushed and shut down when the app's lifespan ends.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level.upper(), service_name=settings.service_name)

    metrics = metrics or build_metrics(settings)
    tracing = tracing or build_tracing(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        structlog.get_logger("app").info(f"App listening on port {settings.port}")
        yield
        app.state.tracing.shutdown()

    app = FastAPI(title="Demo App", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.tracing = tracing

    app.add_middleware(InstrumentationMiddleware, metrics=metrics, tracing=tracing)
    app.include_router(hello_router)
    app.include_router(metrics_router)
    return app
