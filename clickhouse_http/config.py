"""
Client configuration for the ClickHouse HTTP client.
"""

from typing import Any, Dict, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clickhouse_http.errors import ConfigurationError

JITTER_STRATEGIES = ("none", "full", "equal")
COMPRESSION_ALGORITHMS = ("gzip",)
SECURE_PORTS = (443, 8443)


class ClickHouseSettings(BaseSettings):
    """Connection, pool and retry settings.

    Values come from keyword arguments, then ``CLICKHOUSE_*`` environment
    variables, then a ``.env`` file. Instances are immutable.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLICKHOUSE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Server
    host: str = "localhost"
    port: int = 8123
    database: str = "default"
    username: Optional[str] = None
    password: Optional[str] = None

    # TLS
    secure: Optional[bool] = None
    verify: bool = True
    ca_cert: Optional[str] = None

    # Timeouts (seconds)
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 60.0

    # Pool
    pool_size: int = 5
    pool_timeout: float = 5.0
    pool_max_idle: float = 300.0
    pool_reap_interval: Optional[float] = None

    # Queries
    default_settings: Dict[str, Any] = Field(default_factory=dict)
    compression: Optional[str] = None
    strict_types: bool = False
    log_sql: bool = False

    # Retry
    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 120.0
    backoff_multiplier: float = 1.6
    retry_jitter: str = "equal"

    def __init__(self, **values: Any):
        try:
            super().__init__(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid ClickHouse settings: {exc}", original_error=exc) from exc

    @model_validator(mode="after")
    def _validate(self) -> "ClickHouseSettings":
        if not self.host:
            raise ConfigurationError("host is required")
        if self.port <= 0:
            raise ConfigurationError("port must be a positive integer")
        if not self.database:
            raise ConfigurationError("database is required")
        if self.pool_size < 1:
            raise ConfigurationError("pool_size must be at least 1")
        for name in ("connect_timeout", "read_timeout", "write_timeout", "pool_timeout", "pool_max_idle"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")
        if self.pool_reap_interval is not None and self.pool_reap_interval <= 0:
            raise ConfigurationError("pool_reap_interval must be positive when set")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.initial_backoff < 0:
            raise ConfigurationError("initial_backoff must not be negative")
        if self.max_backoff < self.initial_backoff:
            raise ConfigurationError("max_backoff must be >= initial_backoff")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier must be >= 1")
        if self.retry_jitter not in JITTER_STRATEGIES:
            raise ConfigurationError(
                f"retry_jitter must be one of {', '.join(JITTER_STRATEGIES)}, got '{self.retry_jitter}'"
            )
        if self.compression is not None and self.compression not in COMPRESSION_ALGORITHMS:
            raise ConfigurationError(f"Unsupported compression '{self.compression}'")
        return self

    @classmethod
    def load(cls, **overrides: Any) -> "ClickHouseSettings":
        """Build settings; every problem is reported as ConfigurationError."""
        return cls(**overrides)

    @property
    def use_ssl(self) -> bool:
        if self.secure is not None:
            return self.secure
        return self.port in SECURE_PORTS

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def compression_enabled(self) -> bool:
        return self.compression == "gzip"


def get_settings(**overrides: Any) -> ClickHouseSettings:
    """Get client settings from the environment plus overrides."""
    return ClickHouseSettings.load(**overrides)
