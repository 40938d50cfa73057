"""Metrics sinks: counters and gauges for the relayer.

``PrometheusMetrics`` registers metrics lazily on its own registry and can
expose them over HTTP; ``NullMetrics`` discards everything.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


class MetricsSink:
    """Interface for counter/gauge reporting."""

    def counter(
        self, name: str, amount: float = 1.0, labels: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter."""
        raise NotImplementedError

    def gauge(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Set a gauge."""
        raise NotImplementedError


class NullMetrics(MetricsSink):
    """Metrics sink that drops everything."""

    def counter(
        self, name: str, amount: float = 1.0, labels: Mapping[str, str] | None = None
    ) -> None:
        return None

    def gauge(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        return None


class PrometheusMetrics(MetricsSink):
    """Prometheus-backed metrics.

    A metric's label names are fixed by its first use.

    :ivar prefix: Prepended to every metric name.
    :ivar registry: Registry holding this sink's metrics.
    """

    def __init__(
        self, prefix: str = "relay_oracle", registry: CollectorRegistry | None = None
    ) -> None:
        self.prefix = prefix
        self.registry = registry if registry is not None else CollectorRegistry()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}

    def _name(self, name: str) -> str:
        return f"{self.prefix}_{name}" if self.prefix else name

    def counter(
        self, name: str, amount: float = 1.0, labels: Mapping[str, str] | None = None
    ) -> None:
        labels = dict(labels or {})
        metric = self._counters.get(name)
        if metric is None:
            metric = Counter(
                self._name(name), name.replace("_", " "), sorted(labels), registry=self.registry
            )
            self._counters[name] = metric
        (metric.labels(**labels) if labels else metric).inc(amount)

    def gauge(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        labels = dict(labels or {})
        metric = self._gauges.get(name)
        if metric is None:
            metric = Gauge(
                self._name(name), name.replace("_", " "), sorted(labels), registry=self.registry
            )
            self._gauges[name] = metric
        (metric.labels(**labels) if labels else metric).set(value)

    def get(self, name: str, labels: Mapping[str, str] | None = None) -> float | None:
        """Read back a sample value, mostly for tests and health output."""
        sample = self._name(name)
        value = self.registry.get_sample_value(sample, dict(labels or {}))
        if value is None:
            value = self.registry.get_sample_value(f"{sample}_total", dict(labels or {}))
        return value

    def serve(self, port: int) -> None:
        """Expose the registry on ``http://0.0.0.0:<port>/metrics``."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics on port {port}")
