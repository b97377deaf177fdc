"""
Prometheus metrics for the ClickHouse HTTP client.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class ClientMetrics:
    """Collectors for one client instance.

    Each instance owns its own ``CollectorRegistry`` unless one is passed in,
    so several clients can live in the same process without name clashes.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        self._metrics["queries_total"] = Counter(
            "clickhouse_queries_total",
            "Total ClickHouse requests",
            ["operation", "status"],
            registry=self.registry
        )

        self._metrics["query_duration_seconds"] = Histogram(
            "clickhouse_query_duration_seconds",
            "ClickHouse request duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["rows_inserted_total"] = Counter(
            "clickhouse_rows_inserted_total",
            "Total rows sent with INSERT",
            registry=self.registry
        )

        self._metrics["retries_total"] = Counter(
            "clickhouse_retries_total",
            "Total retried attempts",
            ["reason"],
            registry=self.registry
        )

        self._metrics["pool_connections"] = Gauge(
            "clickhouse_pool_connections",
            "Pooled connections by state",
            ["state"],
            registry=self.registry
        )

        self._metrics["pool_timeouts_total"] = Counter(
            "clickhouse_pool_timeouts_total",
            "Total pool checkout timeouts",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_request(self, operation: str, status: str, duration: float):
        """Record a finished query, command or insert."""
        self._metrics["queries_total"].labels(operation=operation, status=status).inc()
        self._metrics["query_duration_seconds"].labels(operation=operation).observe(duration)

    def record_rows_inserted(self, count: int):
        self._metrics["rows_inserted_total"].inc(count)

    def record_retry(self, reason: str):
        self._metrics["retries_total"].labels(reason=reason).inc()

    def set_pool_state(self, available: int, in_use: int):
        self._metrics["pool_connections"].labels(state="available").set(available)
        self._metrics["pool_connections"].labels(state="in_use").set(in_use)

    def record_pool_timeout(self):
        self._metrics["pool_timeouts_total"].inc()

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample value from this client's registry."""
        return self.registry.get_sample_value(name, labels or {})
