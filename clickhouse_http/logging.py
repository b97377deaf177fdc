"""
Structured logging for the ClickHouse HTTP client.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Query id of the attempt currently running on this thread/task
query_id_var: ContextVar[Optional[str]] = ContextVar("clickhouse_query_id", default=None)


def configure_logging(log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structlog and stdlib logging for applications using the client."""

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_query_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_query_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the current query id to log events."""
    query_id = query_id_var.get()
    if query_id and "query_id" not in event_dict:
        event_dict["query_id"] = query_id
    return event_dict


def new_query_id() -> str:
    """Generate a query id usable for server-side deduplication."""
    return str(uuid.uuid4())


def set_query_id(query_id: Optional[str]):
    """Set the query id in context, returning the token for reset."""
    return query_id_var.set(query_id)


def reset_query_id(token) -> None:
    query_id_var.reset(token)


def truncate_sql(sql: str, max_length: int = 1000) -> str:
    """Bound SQL text used in error messages and logs."""
    if len(sql) <= max_length:
        return sql
    return f"{sql[:max_length]}... (truncated)"


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(f"clickhouse_http.{name}")
