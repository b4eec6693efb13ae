from __future__ import annotations

from collections.abc import Iterable, Mapping

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector


HTTP_REQUESTS_TOTAL = "http_requests_total"
HTTP_REQUEST_DURATION_MS = "http_request_duration_ms"

# Response times from 0.1ms to 500ms.
HTTP_DURATION_BUCKETS_MS = (0.1, 5, 15, 50, 100, 200, 300, 400, 500)


class _DefaultLabelsCollector(Collector):
    """Re-exposes every metric of ``source`` with ``labels`` added to each sample."""

    def __init__(self, source: CollectorRegistry, labels: Mapping[str, str]) -> None:
        self._source = source
        self._labels = dict(labels)

    def collect(self) -> Iterable[Metric]:
        for metric in self._source.collect():
            relabelled = Metric(metric.name, metric.documentation, metric.type, metric.unit)
            relabelled.samples = [
                # Labels set on the series itself win over the defaults.
                sample._replace(labels={**self._labels, **sample.labels})
                for sample in metric.samples
            ]
            yield relabelled


class MetricsRegistry:
    """Per-service Prometheus registry holding the HTTP request metrics.

    Counter/histogram updates are safe to call from concurrent requests;
    prometheus-client guards every child with its own lock.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self,
        service_name: str,
        *,
        collect_default_metrics: bool = True,
        default_labels: Mapping[str, str] | None = None,
    ) -> None:
        self.service_name = service_name
        self._registry = CollectorRegistry()

        if collect_default_metrics:
            ProcessCollector(registry=self._registry)
            PlatformCollector(registry=self._registry)
            GCCollector(registry=self._registry)

        self.http_requests_total = Counter(
            HTTP_REQUESTS_TOTAL,
            "Total number of HTTP requests",
            ["method", "route", "status_code"],
            registry=self._registry,
        )
        self.http_request_duration_ms = Histogram(
            HTTP_REQUEST_DURATION_MS,
            "Duration of HTTP requests in ms",
            ["method", "route", "code"],
            buckets=HTTP_DURATION_BUCKETS_MS,
            registry=self._registry,
        )

        labels = {"app": service_name}
        labels.update(default_labels or {})
        self.default_labels = labels

        self._exposition = CollectorRegistry(auto_describe=False)
        self._exposition.register(_DefaultLabelsCollector(self._registry, labels))

    def observe(self, name: str, labels: Mapping[str, object], value: float = 1.0) -> None:
        """Record one sample: counters are incremented by ``value``, histograms observe it."""

        str_labels = {k: str(v) for k, v in labels.items()}
        if name == HTTP_REQUESTS_TOTAL:
            self.http_requests_total.labels(**str_labels).inc(value)
        elif name == HTTP_REQUEST_DURATION_MS:
            self.http_request_duration_ms.labels(**str_labels).observe(value)
        else:
            raise KeyError(f"Unknown metric: {name}")

    def inc_request(self, method: str, route: str, status_code: int) -> None:
        self.observe(
            HTTP_REQUESTS_TOTAL,
            {"method": method, "route": route, "status_code": status_code},
        )

    def observe_duration(self, method: str, route: str, code: int, elapsed_ms: float) -> None:
        self.observe(
            HTTP_REQUEST_DURATION_MS,
            {"method": method, "route": route, "code": code},
            elapsed_ms,
        )

    def render(self) -> bytes:
        """Text exposition of all series, default labels applied."""

        return generate_latest(self._exposition)

    def get_sample_value(self, name: str, labels: Mapping[str, str] | None = None) -> float | None:
        # Default labels are only added at render time, so look them up without.
        return self._registry.get_sample_value(name, dict(labels or {}))
