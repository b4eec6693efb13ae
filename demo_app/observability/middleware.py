from __future__ import annotations

import threading
from time import perf_counter
from typing import Any, Callable

import structlog

from demo_app.observability.metrics import MetricsRegistry
from demo_app.observability.tracing import TracingManager


HTTP_STATUS_CODE_TAG = "http.status_code"
HTTP_METHOD_TAG = "http.method"

telemetry_logger = structlog.get_logger("telemetry")


class Timer:
    """Measures one duration in milliseconds with a monotonic clock."""

    def __init__(self) -> None:
        self._start = perf_counter()
        self.elapsed_ms: float | None = None

    def stop(self) -> float:
        if self.elapsed_ms is None:
            self.elapsed_ms = max(0.0, (perf_counter() - self._start) * 1000.0)
        return self.elapsed_ms


class RequestInstrumentation:
    """Span, timer and metric samples for a single request.

    ``complete`` runs its actions at most once, however many times the
    response signals completion.
    """

    def __init__(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        *,
        metrics: MetricsRegistry,
        tracing: TracingManager,
    ) -> None:
        self.method = method
        self.path = path
        self._metrics = metrics
        self._tracing = tracing
        self._lock = threading.Lock()
        self.completed = False

        parent = None
        try:
            parent = tracing.extract(headers)
        except Exception:
            telemetry_logger.warning("trace_context_extract_failed", exc_info=True)

        self.span = None
        try:
            self.span = tracing.start_server_span(path, parent, attributes={HTTP_METHOD_TAG: method})
        except Exception:
            telemetry_logger.exception("span_start_failed", path=path)

        self.timer = Timer()

    @property
    def trace_ids(self) -> dict[str, str]:
        if self.span is None:
            return {}
        try:
            ctx = self.span.get_span_context()
            return {"trace_id": format(ctx.trace_id, "032x"), "span_id": format(ctx.span_id, "016x")}
        except Exception:
            return {}

    def complete(self, status_code: int) -> bool:
        """Record metrics and finish the span. Returns False if already completed."""

        with self._lock:
            if self.completed:
                return False
            self.completed = True

            try:
                self._metrics.inc_request(self.method, self.path, status_code)
            except Exception:
                telemetry_logger.exception("request_counter_failed", route=self.path)

            elapsed_ms = self.timer.stop()
            try:
                self._metrics.observe_duration(self.method, self.path, status_code, elapsed_ms)
            except Exception:
                telemetry_logger.exception("request_duration_failed", route=self.path)

            if self.span is not None:
                try:
                    self.span.set_attribute(HTTP_STATUS_CODE_TAG, status_code)
                except Exception:
                    telemetry_logger.exception("span_tag_failed", route=self.path)
                try:
                    self.span.end()
                except Exception:
                    telemetry_logger.exception("span_finish_failed", route=self.path)

            return True


class InstrumentationMiddleware:
    """Traces every HTTP request and records request count/duration metrics."""

    def __init__(self, app: Callable[..., Any], *, metrics: MetricsRegistry, tracing: TracingManager) -> None:
        self.app = app
        self.metrics = metrics
        self.tracing = tracing

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "")
        path = scope.get("path", "")
        headers = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in scope.get("headers") or []
        }

        request = RequestInstrumentation(method, path, headers, metrics=self.metrics, tracing=self.tracing)

        structlog.contextvars.bind_contextvars(method=method, path=path, **request.trace_ids)

        status_code: int | None = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))

            await send(message)

            if message.get("type") == "http.response.body" and not message.get("more_body", False):
                request.complete(status_code or 500)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # Errors, cancellations and disconnects before the final body chunk.
            if status_code is None:
                status_code = 500
            request.complete(status_code)

            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(request.timer.stop(), 2),
            )

            structlog.contextvars.clear_contextvars()
