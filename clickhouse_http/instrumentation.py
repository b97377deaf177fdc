"""
Event publishing for queries, inserts and pool activity.

Applications observe the client by passing a hook callable
``hook(event_name, payload)``. Every query and insert publishes a start
event and then either a complete or an error event; the pool publishes
checkout, checkin and timeout events.
"""

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from clickhouse_http.errors import ClickHouseError
from clickhouse_http.logging import get_logger
from clickhouse_http.metrics import ClientMetrics

QUERY_START = "clickhouse.query.start"
QUERY_COMPLETE = "clickhouse.query.complete"
QUERY_ERROR = "clickhouse.query.error"
INSERT_START = "clickhouse.insert.start"
INSERT_COMPLETE = "clickhouse.insert.complete"
INSERT_ERROR = "clickhouse.insert.error"
POOL_CHECKOUT = "clickhouse.pool.checkout"
POOL_CHECKIN = "clickhouse.pool.checkin"
POOL_TIMEOUT = "clickhouse.pool.timeout"

EVENTS = {
    "query": (QUERY_START, QUERY_COMPLETE, QUERY_ERROR),
    "insert": (INSERT_START, INSERT_COMPLETE, INSERT_ERROR),
}

PublishHook = Callable[[str, Dict[str, Any]], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class Instrumentation:
    """Fans events out to the publish hook, the log and the metrics."""

    def __init__(self, hook: Optional[PublishHook] = None, metrics: Optional[ClientMetrics] = None):
        self.hook = hook
        self.metrics = metrics
        self.logger = get_logger("instrumentation")

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to the hook; hook failures never reach the caller."""
        if self.hook is None:
            return
        try:
            self.hook(event, payload)
        except Exception as exc:
            self.logger.warning("Instrumentation hook failed", event=event, error=str(exc))

    @contextmanager
    def instrument(self, kind: str, payload: Dict[str, Any], operation: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Time a query or insert and publish its lifecycle events.

        The payload dict is yielded so the body can add fields such as
        ``row_count`` before the completion event is sent.
        """
        start_event, complete_event, error_event = EVENTS[kind]
        operation = operation or kind
        self.publish(start_event, dict(payload))
        started = monotonic_ms()
        try:
            yield payload
        except Exception as exc:
            payload["duration_ms"] = monotonic_ms() - started
            payload["exception"] = (type(exc).__name__, str(exc))
            if isinstance(exc, ClickHouseError):
                payload["error"] = exc.to_payload().model_dump()
            if self.metrics is not None:
                self.metrics.record_request(operation, "error", payload["duration_ms"] / 1000)
            self.publish(error_event, payload)
            raise
        payload["duration_ms"] = monotonic_ms() - started
        if self.metrics is not None:
            self.metrics.record_request(operation, "success", payload["duration_ms"] / 1000)
            if kind == "insert":
                self.metrics.record_rows_inserted(payload.get("row_count", 0))
        self.publish(complete_event, payload)
