from __future__ import annotations

import io
import json
import logging
from collections.abc import AsyncIterator, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from demo_app.config import Settings, get_settings
from demo_app.main import create_app
from demo_app.observability.logging import build_json_handler, configure_logging
from demo_app.observability.metrics import MetricsRegistry
from demo_app.observability.tracing import TracingConfig, TracingManager


# Install the JSON handler before pytest's per-test capture handlers attach.
configure_logging()


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVICE_NAME", "test-app")
    monkeypatch.setenv("TRACE_EXPORTER", "none")
    monkeypatch.setenv("LOG_SPANS", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def metrics(settings: Settings) -> MetricsRegistry:
    return MetricsRegistry(settings.service_name)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def tracing(settings: Settings, span_exporter: InMemorySpanExporter) -> TracingManager:
    config = TracingConfig(service_name=settings.service_name, exporter_type="none", log_spans=False)
    manager = TracingManager(config, exporter=span_exporter)
    manager.setup()
    yield manager
    manager.shutdown()


@pytest.fixture
def app(settings: Settings, metrics: MetricsRegistry, tracing: TracingManager) -> FastAPI:
    return create_app(settings, metrics=metrics, tracing=tracing)


@pytest.fixture
async def api_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def json_log_lines() -> Callable[[], list[dict]]:
    """Parsed JSON lines written to the root logger during the test."""

    stream = io.StringIO()
    handler = build_json_handler(stream)
    root = logging.getLogger()
    root.addHandler(handler)

    def lines() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield lines
    root.removeHandler(handler)
