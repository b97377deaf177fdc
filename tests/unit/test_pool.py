"""
Unit tests for ConnectionPool.
"""

import threading
import time

import pytest

from clickhouse_http.errors import ConnectionNotEstablished, PoolExhausted, PoolTimeout
from clickhouse_http.instrumentation import POOL_CHECKIN, POOL_CHECKOUT, POOL_TIMEOUT, Instrumentation
from clickhouse_http.metrics import ClientMetrics
from clickhouse_http.pool import ConnectionPool


class FakeConnection:
    """Connection double tracking how many instances are alive."""

    live = 0
    peak = 0
    lock = threading.Lock()

    def __init__(self, fail_connect=False):
        self.fail_connect = fail_connect
        self.healthy = False
        self.is_stale = False
        self.disconnects = 0
        self.pings = True
        self.ping_calls = 0

    def connect(self):
        if self.fail_connect:
            raise ConnectionNotEstablished("refused")
        self.healthy = True
        with FakeConnection.lock:
            FakeConnection.live += 1
            FakeConnection.peak = max(FakeConnection.peak, FakeConnection.live)
        return self

    def disconnect(self):
        if self.healthy:
            with FakeConnection.lock:
                FakeConnection.live -= 1
        self.healthy = False
        self.disconnects += 1
        return self

    def stale(self, max_idle):
        return self.is_stale

    def ping(self):
        self.ping_calls += 1
        return self.pings


@pytest.fixture(autouse=True)
def reset_counters():
    """Reset live connection counters between tests."""
    FakeConnection.live = 0
    FakeConnection.peak = 0


@pytest.fixture
def created():
    """Connections created by the pool, in order."""
    return []


@pytest.fixture
def factory(created):
    """Connection factory recording every connection."""
    def make():
        connection = FakeConnection()
        created.append(connection)
        return connection
    return make


@pytest.fixture
def events():
    """Pool events captured by the hook."""
    return []


@pytest.fixture
def pool(settings, factory, events):
    """Create a pool of two fake connections."""
    pool = ConnectionPool(
        settings,
        size=2,
        timeout=0.2,
        instrumentation=Instrumentation(lambda name, payload: events.append((name, payload))),
        connection_factory=factory,
    )
    yield pool
    pool.shutdown()


class TestConnectionPool:
    """Test cases for ConnectionPool."""

    def test_checkout_creates_connection(self, pool, created):
        """Test the first checkout creates and connects a connection."""
        connection = pool.checkout()

        assert connection is created[0]
        assert connection.healthy is True
        assert pool.in_use_count == 1
        assert pool.available_count == 0

    def test_checkin_reuses_connection(self, pool, created):
        """Test a healthy connection is reused after checkin."""
        first = pool.checkout()
        pool.checkin(first)
        second = pool.checkout()

        assert second is first
        assert len(created) == 1

    def test_with_connection_checks_in_on_error(self, pool):
        """Test the scoped form checks in even when the block raises."""
        with pytest.raises(RuntimeError):
            with pool.with_connection():
                raise RuntimeError("boom")

        assert pool.in_use_count == 0
        assert pool.available_count == 1

    def test_timeout_when_full(self, pool, events):
        """Test checkout waits, then raises PoolTimeout naming timeout and in-use count."""
        pool.checkout()
        pool.checkout()

        started = time.monotonic()
        with pytest.raises(PoolTimeout) as exc_info:
            pool.checkout()

        assert time.monotonic() - started >= 0.2
        assert "0.2 seconds" in str(exc_info.value)
        assert "in use: 2" in str(exc_info.value)
        assert POOL_TIMEOUT in [name for name, _ in events]
        assert pool.stats()["total_timeouts"] == 1

    def test_exhausted_without_waiting(self, pool):
        """Test a non-positive timeout raises PoolExhausted immediately."""
        pool.checkout()
        pool.checkout()

        assert pool.exhausted is True
        with pytest.raises(PoolExhausted):
            pool.checkout(timeout=0)

    def test_waiter_receives_checked_in_connection(self, pool):
        """Test a blocked checkout wakes up when a connection is returned."""
        first = pool.checkout()
        pool.checkout()
        result = {}

        def wait_for_connection():
            result["connection"] = pool.checkout(timeout=2)

        waiter = threading.Thread(target=wait_for_connection)
        waiter.start()
        time.sleep(0.05)
        pool.checkin(first)
        waiter.join(timeout=2)

        assert result["connection"] is first

    def test_never_exceeds_size_under_contention(self, settings, factory):
        """Test N+5 concurrent callers never see more than N connections."""
        size = 3
        pool = ConnectionPool(settings, size=size, timeout=2.0, connection_factory=factory)
        barrier = threading.Barrier(size + 5)
        outcomes = []
        outcomes_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                with pool.with_connection():
                    assert pool.total_count <= size
                    time.sleep(0.02)
                outcome = "ok"
            except PoolTimeout:
                outcome = "timeout"
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(size + 5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        pool.shutdown()
        assert len(outcomes) == size + 5
        assert set(outcomes) <= {"ok", "timeout"}
        assert FakeConnection.peak <= size

    def test_unhealthy_connection_is_not_returned(self, pool, created):
        """Test checkin destroys unhealthy connections."""
        connection = pool.checkout()
        connection.healthy = False

        pool.checkin(connection)
        replacement = pool.checkout()

        assert replacement is not connection
        assert connection.disconnects == 1
        assert len(created) == 2
        assert pool.total_count == 1

    def test_stale_connection_is_not_returned(self, pool):
        """Test checkin destroys stale connections."""
        connection = pool.checkout()
        connection.is_stale = True

        pool.checkin(connection)

        assert pool.available_count == 0
        assert pool.total_count == 0

    def test_checkout_discards_dead_idle_connections(self, pool, created):
        """Test checkout skips idle connections that died while pooled."""
        connection = pool.checkout()
        pool.checkin(connection)
        connection.healthy = False

        replacement = pool.checkout()

        assert replacement is not connection
        assert len(created) == 2

    def test_failed_connect_releases_capacity(self, settings):
        """Test a failed connect does not leak a pool slot."""
        pool = ConnectionPool(settings, size=1, timeout=0.1,
                              connection_factory=lambda: FakeConnection(fail_connect=True))

        for _ in range(3):
            with pytest.raises(ConnectionNotEstablished):
                pool.checkout()

        assert pool.total_count == 0

    def test_checkin_never_raises(self, pool):
        """Test disconnect failures during checkin are swallowed."""
        connection = pool.checkout()
        connection.healthy = False

        def broken_disconnect():
            raise OSError("socket already closed")

        connection.disconnect = broken_disconnect
        pool.checkin(connection)

        assert pool.total_count == 0

    def test_cleanup(self, pool):
        """Test cleanup removes stale idle connections only."""
        idle = pool.checkout()
        busy = pool.checkout()
        pool.checkin(idle)
        idle.is_stale = True
        busy.is_stale = True

        removed = pool.cleanup(max_idle=1)

        assert removed == 1
        assert pool.in_use_count == 1
        assert idle.healthy is False
        assert busy.healthy is True

    def test_shutdown(self, pool):
        """Test shutdown disconnects everything and the pool stays usable."""
        idle = pool.checkout()
        busy = pool.checkout()
        pool.checkin(idle)

        pool.shutdown()

        assert idle.healthy is False
        assert busy.healthy is False
        assert pool.total_count == 0
        assert pool.checkout() is not None

    def test_stats(self, pool):
        """Test stats report counts and checkouts."""
        connection = pool.checkout()
        pool.checkin(connection)
        pool.checkout()

        stats = pool.stats()

        assert stats["size"] == 2
        assert stats["available"] == 0
        assert stats["in_use"] == 1
        assert stats["total_connections"] == 1
        assert stats["total_checkouts"] == 2
        assert stats["uptime_seconds"] >= 0

    def test_health_check(self, pool):
        """Test health_check evicts idle connections that fail to ping."""
        good = pool.checkout()
        bad = pool.checkout()
        pool.checkin(good)
        pool.checkin(bad)
        bad.pings = False

        report = pool.health_check()

        assert report["healthy"] == 1
        assert report["unhealthy"] == 1
        assert report["stats"]["available"] == 1

    def test_health_check_evicts_stale_without_ping(self, pool):
        """Test stale idle connections are evicted before any ping refreshes them."""
        fresh = pool.checkout()
        stale = pool.checkout()
        pool.checkin(fresh)
        pool.checkin(stale)
        stale.is_stale = True

        report = pool.health_check()

        assert report["healthy"] == 1
        assert report["unhealthy"] == 1
        assert stale.ping_calls == 0
        assert stale.healthy is False
        assert fresh.ping_calls == 1
        assert pool.total_count == 1

    def test_health_check_evicts_closed_without_ping(self, pool):
        """Test closed idle connections are not revived by the health check."""
        connection = pool.checkout()
        pool.checkin(connection)
        connection.healthy = False

        report = pool.health_check()

        assert report["unhealthy"] == 1
        assert connection.ping_calls == 0
        assert pool.total_count == 0

    def test_failing_factory_releases_capacity(self, settings):
        """Test a connection factory that raises does not leak a pool slot."""
        calls = []

        def broken_factory():
            calls.append(1)
            raise ConnectionNotEstablished("cannot resolve host")

        pool = ConnectionPool(settings, size=1, timeout=0.1, connection_factory=broken_factory)

        for _ in range(3):
            with pytest.raises(ConnectionNotEstablished):
                pool.checkout()

        assert len(calls) == 3
        assert pool.total_count == 0
        assert pool.exhausted is False

    def test_events_and_metrics(self, settings, factory, events):
        """Test checkout and checkin publish events and update gauges."""
        metrics = ClientMetrics()
        pool = ConnectionPool(
            settings,
            size=2,
            instrumentation=Instrumentation(lambda name, payload: events.append((name, payload)), metrics),
            metrics=metrics,
            connection_factory=factory,
        )

        with pool.with_connection():
            assert metrics.sample("clickhouse_pool_connections", {"state": "in_use"}) == 1

        names = [name for name, _ in events]
        assert names == [POOL_CHECKOUT, POOL_CHECKIN]
        assert set(events[0][1]) == {"in_use", "available", "wait_ms"}
        assert metrics.sample("clickhouse_pool_connections", {"state": "available"}) == 1

    def test_reaper_thread(self, settings, factory):
        """Test the background reaper removes stale idle connections."""
        settings = settings.model_copy(update={"pool_reap_interval": 0.02})
        pool = ConnectionPool(settings, size=2, connection_factory=factory)
        connection = pool.checkout()
        pool.checkin(connection)
        connection.is_stale = True

        deadline = time.monotonic() + 2
        while pool.total_count and time.monotonic() < deadline:
            time.sleep(0.01)
        pool.shutdown()

        assert connection.healthy is False
