"""
OpenTelemetry tracing for inbound HTTP requests.

The service owns its own TracerProvider instead of installing a global one,
so tests and multiple app instances never share span pipelines.

Propagation accepts the common single- and multi-header conventions:
- Jaeger ``uber-trace-id``
- B3 multi-header (``X-B3-TraceId``, ``X-B3-SpanId``, ``X-B3-Sampled``, ...)
- B3 single-header (``b3``)
- W3C ``traceparent``

Example:
    config = TracingConfig(service_name="demo-app", exporter_type="jaeger")
    tracing = TracingManager(config)
    tracing.setup()

    parent = tracing.extract(request_headers)
    span = tracing.start_server_span("/", parent)
    ...
    span.end()
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

import structlog
from opentelemetry.context import Context
from opentelemetry.exporter.jaeger.thrift import JaegerExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.b3 import B3MultiFormat, B3SingleFormat
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.jaeger import JaegerPropagator
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace import Span, SpanKind, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator


logger = structlog.get_logger("tracing")

EXPORTER_TYPES = ("jaeger", "otlp", "console", "none")


@dataclass
class TracingConfig:
    """Configuration for request tracing."""

    service_name: str
    """Name reported for every span (``service.name`` resource attribute)"""

    exporter_type: str = "jaeger"
    """Type of exporter: 'jaeger' (UDP agent), 'otlp', 'console' or 'none'"""

    collector_host: str = "jaeger"

    collector_port: int = 6832
    """Jaeger agent port for 'jaeger'; OTLP/HTTP collectors listen on 4318"""

    log_spans: bool = True
    """Emit a log line for every finished span"""

    @property
    def otlp_endpoint(self) -> str:
        return f"http://{self.collector_host}:{self.collector_port}/v1/traces"


class _LoggingSpanProcessor(SpanProcessor):
    """Logs each finished span, like a reporter with span logging enabled."""

    def on_end(self, span: ReadableSpan) -> None:
        ctx = span.get_span_context()
        logger.info(
            "span_reported",
            span_name=span.name,
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
        )


def build_propagator() -> CompositePropagator:
    return CompositePropagator(
        [
            TraceContextTextMapPropagator(),
            B3MultiFormat(),
            B3SingleFormat(),
            JaegerPropagator(),
        ]
    )


class TracingManager:
    """
    Owns the tracer provider, its exporters and header propagation.

    Constructed once at startup and shut down once at application shutdown.
    """

    def __init__(self, config: TracingConfig, exporter: Optional[SpanExporter] = None):
        """
        Args:
            config: Tracing configuration
            exporter: Explicit exporter; exported synchronously when given
        """
        self.config = config
        self.propagator = build_propagator()
        self.tracer_provider: Optional[TracerProvider] = None
        self.tracer: Optional[Tracer] = None
        self.exporter: Optional[SpanExporter] = None
        self._exporter = exporter
        self._initialized = False

    def setup(self) -> Tracer:
        """
        Build the provider and return its tracer.

        Raises:
            ValueError: If exporter type is invalid
        """
        if self._initialized:
            logger.warning("tracing_already_initialized")
            return self.tracer

        exporter_type = self.config.exporter_type
        if self._exporter is None and exporter_type not in EXPORTER_TYPES:
            raise ValueError(f"Invalid exporter type: {exporter_type}")

        resource = Resource.create({"service.name": self.config.service_name})
        # Constant sampling: every request is traced.
        self.tracer_provider = TracerProvider(resource=resource, sampler=ALWAYS_ON)

        if self._exporter is not None:
            self.exporter = self._exporter
            self.tracer_provider.add_span_processor(SimpleSpanProcessor(self._exporter))
        elif exporter_type != "none":
            self.exporter = self._build_exporter()
            # Batch export runs on a background thread; failed exports are
            # logged by the SDK and the spans dropped.
            self.tracer_provider.add_span_processor(BatchSpanProcessor(self.exporter))

        if self.config.log_spans:
            self.tracer_provider.add_span_processor(_LoggingSpanProcessor())

        self.tracer = self.tracer_provider.get_tracer(__name__)
        self._initialized = True

        logger.info("tracing_initialized", service_name=self.config.service_name)
        return self.tracer

    def _build_exporter(self) -> SpanExporter:
        config = self.config
        if config.exporter_type == "jaeger":
            logger.info(
                "trace_exporter_configured",
                exporter="jaeger",
                agent_host=config.collector_host,
                agent_port=config.collector_port,
            )
            return JaegerExporter(agent_host_name=config.collector_host, agent_port=config.collector_port)
        if config.exporter_type == "otlp":
            logger.info("trace_exporter_configured", exporter="otlp", endpoint=config.otlp_endpoint)
            return OTLPSpanExporter(endpoint=config.otlp_endpoint)
        logger.info("trace_exporter_configured", exporter="console")
        return ConsoleSpanExporter()

    def extract(self, headers: Mapping[str, str]) -> Context:
        """Parent context from inbound headers; an empty context means "no parent"."""

        try:
            return self.propagator.extract(carrier=headers, context=Context())
        except Exception:
            logger.warning("trace_context_extract_failed", exc_info=True)
            return Context()

    def start_server_span(self, name: str, parent: Optional[Context] = None, attributes: Optional[dict] = None) -> Span:
        if self.tracer is None:
            self.setup()
        return self.tracer.start_span(
            name,
            context=parent if parent is not None else Context(),
            kind=SpanKind.SERVER,
            attributes=attributes,
        )

    def shutdown(self) -> None:
        """Flush pending spans and close exporters."""
        if self.tracer_provider:
            self.tracer_provider.shutdown()
            logger.info("tracing_shutdown_complete")

    @property
    def is_initialized(self) -> bool:
        return self._initialized


__all__ = [
    "EXPORTER_TYPES",
    "TracingConfig",
    "TracingManager",
    "build_propagator",
]
