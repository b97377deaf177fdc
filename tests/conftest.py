"""
Shared fixtures for the ClickHouse HTTP client tests.
"""

import json
from collections import deque
from typing import Any, Dict, List, Optional

import httpx
import pytest

from clickhouse_http.client import Client
from clickhouse_http.config import ClickHouseSettings


class FakeClickHouse:
    """In-process stand-in for the ClickHouse HTTP interface.

    ``/ping`` always answers ``Ok.``; every other request is recorded and
    answered from the queue (responses, or exceptions to raise), falling
    back to an empty 200.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: deque = deque()
        self.ping_error: Optional[Exception] = None
        self.ping_count = 0

    def queue(self, *responses: Any) -> "FakeClickHouse":
        self.responses.extend(responses)
        return self

    def queue_json(self, payload: Dict[str, Any], status_code: int = 200) -> "FakeClickHouse":
        return self.queue(httpx.Response(status_code, text=json.dumps(payload)))

    def queue_error(self, status_code: int, body: str) -> "FakeClickHouse":
        return self.queue(httpx.Response(status_code, text=body))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ping":
            self.ping_count += 1
            if self.ping_error is not None:
                raise self.ping_error
            return httpx.Response(200, text="Ok.\n")

        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, text="")
        response = self.responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def params(self, index: int = -1) -> Dict[str, str]:
        return dict(self.requests[index].url.params)

    def body(self, index: int = -1) -> str:
        return self.requests[index].content.decode("utf-8")


@pytest.fixture
def fake_server():
    """Fake ClickHouse server answering queued responses."""
    return FakeClickHouse()


@pytest.fixture
def settings():
    """Client settings with fast, deterministic retries."""
    return ClickHouseSettings(
        host="clickhouse.test",
        port=8123,
        database="analytics",
        pool_size=2,
        pool_timeout=1.0,
        max_attempts=3,
        initial_backoff=0.01,
        max_backoff=0.05,
        retry_jitter="none",
    )


@pytest.fixture
def events():
    """Events captured by the instrumentation hook."""
    return []


@pytest.fixture
def client(settings, fake_server, events):
    """Client wired to the fake server, with sleeping disabled."""
    client = Client(
        settings=settings,
        transport=fake_server.transport,
        hook=lambda name, payload: events.append((name, payload)),
        sleep=lambda seconds: None,
    )
    yield client
    client.close()
