"""
A single keep-alive HTTP channel to a ClickHouse server.
"""

import ssl
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import httpx

from clickhouse_http.config import ClickHouseSettings
from clickhouse_http.errors import (
    ConnectionError,
    ConnectionNotEstablished,
    ConnectionTimeout,
    SSLError,
)
from clickhouse_http.logging import get_logger
from clickhouse_http.version import __version__

USER_AGENT = f"clickhouse-http/{__version__}"
KEEPALIVE_EXPIRY = 30.0


def _is_ssl_failure(exc: BaseException) -> bool:
    cause = exc.__cause__ or exc.__context__
    while cause is not None:
        if isinstance(cause, ssl.SSLError):
            return True
        cause = cause.__cause__ or cause.__context__
    return "SSL" in str(exc) or "CERTIFICATE" in str(exc).upper()


def translate_transport_error(exc: httpx.TransportError, target: str) -> ConnectionError:
    """Map an httpx transport failure onto the connection error hierarchy."""
    if isinstance(exc, httpx.ConnectTimeout):
        return ConnectionTimeout(f"Connection timeout to {target}", original_error=exc)
    if isinstance(exc, httpx.TimeoutException):
        return ConnectionTimeout(f"{type(exc).__name__} talking to {target}: {exc}", original_error=exc)
    if isinstance(exc, httpx.ConnectError):
        if _is_ssl_failure(exc):
            return SSLError(f"SSL connection to {target} failed: {exc}", original_error=exc)
        return ConnectionNotEstablished(f"Failed to connect to {target}: {exc}", original_error=exc)
    return ConnectionError(f"Connection to {target} lost: {exc}", original_error=exc)


class Connection:
    """One HTTP keep-alive channel.

    A connection is used by one caller at a time; the pool guarantees that.
    Application-level failures (4xx/5xx) come back as ordinary responses;
    transport failures raise ``ConnectionError`` subclasses.
    """

    def __init__(self, settings: ClickHouseSettings, transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.transport = transport
        self.target = f"{settings.host}:{settings.port}"
        self.logger = get_logger("connection")

        self._client: Optional[httpx.Client] = None
        self._connected = False
        self._lock = threading.Lock()
        self.created_at = time.monotonic()
        self.last_used_at: Optional[float] = None

    # Lifecycle

    def connect(self) -> "Connection":
        """Open the channel, verifying it with a ping round-trip."""
        with self._lock:
            if self.healthy:
                return self

            client = self._build_client()
            try:
                client.get("/ping")
            except httpx.TransportError as exc:
                client.close()
                self._connected = False
                raise translate_transport_error(exc, self.target) from exc

            self._client = client
            self._connected = True
            self.last_used_at = time.monotonic()
            self.logger.debug("Connection established", target=self.target)
        return self

    def disconnect(self) -> "Connection":
        """Close the channel; calling it again is a no-op."""
        with self._lock:
            client, self._client = self._client, None
            self._connected = False
        if client is not None:
            client.close()
            self.logger.debug("Connection closed", target=self.target)
        return self

    def reconnect(self) -> "Connection":
        self.disconnect()
        return self.connect()

    def _build_client(self) -> httpx.Client:
        settings = self.settings
        timeout = httpx.Timeout(
            connect=settings.connect_timeout,
            read=settings.read_timeout,
            write=settings.write_timeout,
            pool=settings.connect_timeout,
        )
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if settings.compression_enabled:
            headers["Accept-Encoding"] = "gzip"

        auth = None
        if settings.username:
            auth = httpx.BasicAuth(settings.username, settings.password or "")

        kwargs: Dict[str, Any] = {
            "base_url": settings.base_url,
            "timeout": timeout,
            "headers": headers,
            "auth": auth,
            "limits": httpx.Limits(max_connections=1, max_keepalive_connections=1, keepalive_expiry=KEEPALIVE_EXPIRY),
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        elif settings.use_ssl:
            kwargs["verify"] = self._ssl_context()
        return httpx.Client(**kwargs)

    def _ssl_context(self):
        if not self.settings.verify:
            self.logger.warning("SSL verification disabled; insecure outside development", target=self.target)
            return False
        context = ssl.create_default_context(cafile=self.settings.ca_cert)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        return context

    # State

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def healthy(self) -> bool:
        """Connected and the underlying client is still open."""
        return self._connected and self._client is not None and not self._client.is_closed

    def stale(self, max_idle_seconds: float = 300.0) -> bool:
        """True when unused for longer than ``max_idle_seconds``."""
        if self.last_used_at is None:
            return True
        return time.monotonic() - self.last_used_at > max_idle_seconds

    # Requests

    def _ensure_connected(self) -> httpx.Client:
        if not self.healthy:
            self.connect()
        return self._client

    def request(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
                content: Optional[Any] = None, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        client = self._ensure_connected()
        try:
            response = client.request(method, path, params=params, content=content, headers=headers)
        except httpx.TransportError as exc:
            self._connected = False
            raise translate_transport_error(exc, self.target) from exc
        self.last_used_at = time.monotonic()
        return response

    def post(self, path: str, body: Any = None, headers: Optional[Dict[str, str]] = None,
             params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Send one POST and return the response, whatever its status."""
        return self.request("POST", path, params=params, content=body, headers=headers)

    def get(self, path: str, headers: Optional[Dict[str, str]] = None,
            params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return self.request("GET", path, params=params, headers=headers)

    @contextmanager
    def stream(self, method: str, path: str, *, params: Optional[Dict[str, Any]] = None,
               content: Optional[Any] = None, headers: Optional[Dict[str, str]] = None) -> Iterator[httpx.Response]:
        """Open a streaming request; the body is read lazily by the caller."""
        client = self._ensure_connected()
        try:
            with client.stream(method, path, params=params, content=content, headers=headers) as response:
                self.last_used_at = time.monotonic()
                yield response
        except httpx.TransportError as exc:
            self._connected = False
            raise translate_transport_error(exc, self.target) from exc

    def ping(self) -> bool:
        """Liveness probe against /ping; never raises."""
        try:
            response = self.get("/ping")
        except Exception as exc:
            self.logger.debug("Ping failed", target=self.target, error=str(exc))
            return False
        return response.status_code == 200 and response.text.strip() == "Ok."

    def __repr__(self) -> str:
        scheme = "https" if self.settings.use_ssl else "http"
        status = "connected" if self._connected else "disconnected"
        return f"<Connection {scheme}://{self.target} {status}>"
