"""Shared core utilities for microservices.

Provides common health check and logging functionality across all services.
"""

from .health import (
    ServiceHealth,
    HealthStatus,
    database_check,
    redis_check,
    worker_check,
)
from .logging_config import (
    setup_logging,
    get_logger,
    RequestLoggingMiddleware,
    set_request_context,
    clear_request_context,
    get_trace_context,
    generate_request_id,
    LoggerAdapter,
)

__all__ = [
    # Health checks
    "ServiceHealth",
    "HealthStatus",
    "database_check",
    "redis_check",
    "worker_check",
    # Logging
    "setup_logging",
    "get_logger",
    "RequestLoggingMiddleware",
    "set_request_context",
    "clear_request_context",
    "get_trace_context",
    "generate_request_id",
    "LoggerAdapter",
]
