"""
Bounded, thread-safe pool of ClickHouse connections.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

import httpx

from clickhouse_http.config import ClickHouseSettings
from clickhouse_http.connection import Connection
from clickhouse_http.errors import PoolExhausted, PoolTimeout
from clickhouse_http.instrumentation import POOL_CHECKIN, POOL_CHECKOUT, POOL_TIMEOUT, Instrumentation
from clickhouse_http.logging import get_logger
from clickhouse_http.metrics import ClientMetrics


class ConnectionPool:
    """Keep-alive connections partitioned into available and in-use sets.

    ``available + in_use + connecting <= size`` holds at all times. One
    condition variable guards every piece of mutable state; it is released
    before any network I/O (connect, disconnect, ping) happens.
    """

    def __init__(self,
                 settings: ClickHouseSettings,
                 size: Optional[int] = None,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 instrumentation: Optional[Instrumentation] = None,
                 metrics: Optional[ClientMetrics] = None,
                 connection_factory: Optional[Callable[[], Connection]] = None):
        self.settings = settings
        self.size = size if size is not None else settings.pool_size
        self.timeout = timeout if timeout is not None else settings.pool_timeout
        self.max_idle = settings.pool_max_idle
        self.instrumentation = instrumentation or Instrumentation(metrics=metrics)
        self.metrics = metrics
        self.logger = get_logger("pool")

        if connection_factory is None:
            connection_factory = lambda: Connection(settings, transport=transport)  # noqa: E731
        self._connection_factory = connection_factory

        self._available: List[Connection] = []
        self._in_use: Set[Connection] = set()
        self._all: List[Connection] = []
        self._connecting = 0
        self._condition = threading.Condition(threading.Lock())

        self._created_at = time.monotonic()
        self._total_checkouts = 0
        self._total_timeouts = 0

        self._reaper: Optional[threading.Thread] = None
        self._stop_reaper = threading.Event()
        if settings.pool_reap_interval:
            self._start_reaper(settings.pool_reap_interval)

    # Checkout / checkin

    def checkout(self, timeout: Optional[float] = None) -> Connection:
        """Take a connection, creating one when there is spare capacity.

        Waits up to ``timeout`` seconds (the pool timeout by default) for a
        connection to be checked in. With a timeout of zero or less, raises
        ``PoolExhausted`` instead of waiting.
        """
        timeout = self.timeout if timeout is None else timeout
        started = time.monotonic()
        deadline = started + timeout
        discarded: List[Connection] = []
        connection = None
        error = None

        with self._condition:
            while True:
                connection = self._pop_usable(discarded)
                if connection is not None:
                    self._in_use.add(connection)
                    break
                if self._total_locked() < self.size:
                    self._connecting += 1
                    break
                if timeout <= 0:
                    error = PoolExhausted(
                        f"Connection pool exhausted (size: {self.size}, in use: {len(self._in_use)})",
                        details={"size": self.size, "in_use": len(self._in_use)},
                    )
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._total_timeouts += 1
                    error = PoolTimeout(
                        f"Could not obtain a connection from the pool within {timeout} seconds "
                        f"(size: {self.size}, in use: {len(self._in_use)})",
                        details={"timeout": timeout, "size": self.size, "in_use": len(self._in_use)},
                    )
                    break
                self._condition.wait(remaining)

        self._disconnect_all(discarded)

        if error is not None:
            wait_ms = (time.monotonic() - started) * 1000
            if isinstance(error, PoolTimeout):
                if self.metrics is not None:
                    self.metrics.record_pool_timeout()
                self.instrumentation.publish(POOL_TIMEOUT, self._event_payload(wait_ms))
            self.logger.warning("Pool checkout failed", error=error.message, wait_ms=round(wait_ms, 2))
            raise error

        if connection is None:
            connection = self._create_connection()

        with self._condition:
            self._total_checkouts += 1
        self._publish_state(POOL_CHECKOUT, (time.monotonic() - started) * 1000)
        return connection

    def checkin(self, connection: Connection) -> None:
        """Return a connection; unhealthy or stale connections are destroyed.

        Never raises: the caller's operation has already completed.
        """
        with self._condition:
            if connection not in self._in_use:
                tracked = False
                keep = False
            else:
                tracked = True
                self._in_use.discard(connection)
                keep = connection.healthy and not connection.stale(self.max_idle)
                if keep:
                    self._available.append(connection)
                else:
                    self._forget(connection)
                self._condition.notify()

        if not tracked:
            self.logger.debug("Checkin of untracked connection", connection=repr(connection))
        if not keep:
            self._safe_disconnect(connection)
        if tracked:
            self._publish_state(POOL_CHECKIN, 0.0)

    @contextmanager
    def with_connection(self, timeout: Optional[float] = None) -> Iterator[Connection]:
        """Check out a connection for the duration of the block."""
        connection = self.checkout(timeout)
        try:
            yield connection
        finally:
            self.checkin(connection)

    # Maintenance

    def cleanup(self, max_idle: Optional[float] = None) -> int:
        """Destroy idle connections that are stale or unhealthy; return the count."""
        max_idle = self.max_idle if max_idle is None else max_idle
        with self._condition:
            keep, removed = [], []
            for connection in self._available:
                if connection.healthy and not connection.stale(max_idle):
                    keep.append(connection)
                else:
                    removed.append(connection)
            self._available = keep
            for connection in removed:
                self._forget(connection)
            if removed:
                self._condition.notify_all()

        self._disconnect_all(removed)
        if removed:
            self.logger.info("Removed idle connections", count=len(removed))
            self._update_gauges()
        return len(removed)

    def shutdown(self) -> None:
        """Disconnect every tracked connection; later checkouts start afresh."""
        self._stop_reaper.set()
        reaper, self._reaper = self._reaper, None
        if reaper is not None and reaper is not threading.current_thread():
            reaper.join(timeout=5)

        with self._condition:
            connections = list(self._all)
            self._available.clear()
            self._in_use.clear()
            self._all.clear()
            self._condition.notify_all()

        self._disconnect_all(connections)
        self._update_gauges()
        self.logger.info("Connection pool shut down", closed=len(connections))

    def health_check(self) -> Dict[str, Any]:
        """Ping idle connections, evicting any that are not usable."""
        with self._condition:
            connections = list(self._available)
            self._available.clear()
            self._in_use.update(connections)

        healthy = 0
        for connection in connections:
            # ping reconnects closed connections, so state is checked first
            if connection.healthy and not connection.stale(self.max_idle) and connection.ping():
                healthy += 1
            else:
                self._safe_disconnect(connection)
            self.checkin(connection)

        return {
            "healthy": healthy,
            "unhealthy": len(connections) - healthy,
            "stats": self.stats(),
        }

    # Introspection

    def stats(self) -> Dict[str, Any]:
        with self._condition:
            return {
                "size": self.size,
                "available": len(self._available),
                "in_use": len(self._in_use),
                "total_connections": self._total_locked(),
                "total_checkouts": self._total_checkouts,
                "total_timeouts": self._total_timeouts,
                "uptime_seconds": round(time.monotonic() - self._created_at, 3),
            }

    @property
    def available_count(self) -> int:
        with self._condition:
            return len(self._available)

    @property
    def in_use_count(self) -> int:
        with self._condition:
            return len(self._in_use)

    @property
    def total_count(self) -> int:
        with self._condition:
            return self._total_locked()

    @property
    def exhausted(self) -> bool:
        with self._condition:
            return not self._available and self._total_locked() >= self.size

    # Internals; names ending in _locked expect the condition to be held

    def _total_locked(self) -> int:
        return len(self._all) + self._connecting

    def _pop_usable(self, discarded: List[Connection]) -> Optional[Connection]:
        while self._available:
            connection = self._available.pop()
            if connection.healthy and not connection.stale(self.max_idle):
                return connection
            self._forget(connection)
            discarded.append(connection)
        return None

    def _forget(self, connection: Connection) -> None:
        try:
            self._all.remove(connection)
        except ValueError:
            pass

    def _create_connection(self) -> Connection:
        try:
            connection = self._connection_factory()
            connection.connect()
        except BaseException:
            with self._condition:
                self._connecting -= 1
                self._condition.notify()
            raise

        with self._condition:
            self._connecting -= 1
            self._all.append(connection)
            self._in_use.add(connection)
        self.logger.debug("Created pooled connection", connection=repr(connection))
        return connection

    def _safe_disconnect(self, connection: Connection) -> None:
        try:
            connection.disconnect()
        except Exception as exc:
            self.logger.warning("Error disconnecting connection", error=str(exc))

    def _disconnect_all(self, connections: List[Connection]) -> None:
        for connection in connections:
            self._safe_disconnect(connection)

    def _event_payload(self, wait_ms: float) -> Dict[str, Any]:
        with self._condition:
            return {
                "in_use": len(self._in_use),
                "available": len(self._available),
                "wait_ms": round(wait_ms, 3),
            }

    def _publish_state(self, event: str, wait_ms: float) -> None:
        payload = self._event_payload(wait_ms)
        if self.metrics is not None:
            self.metrics.set_pool_state(payload["available"], payload["in_use"])
        self.instrumentation.publish(event, payload)

    def _update_gauges(self) -> None:
        if self.metrics is not None:
            payload = self._event_payload(0.0)
            self.metrics.set_pool_state(payload["available"], payload["in_use"])

    def _start_reaper(self, interval: float) -> None:
        def reap():
            while not self._stop_reaper.wait(interval):
                try:
                    self.cleanup()
                except Exception as exc:
                    self.logger.error("Pool reaper failed", error=str(exc))

        self._reaper = threading.Thread(target=reap, name="clickhouse-pool-reaper", daemon=True)
        self._reaper.start()

    def __repr__(self) -> str:
        stats = self.stats()
        return f"<ConnectionPool size={stats['size']} available={stats['available']} in_use={stats['in_use']}>"
