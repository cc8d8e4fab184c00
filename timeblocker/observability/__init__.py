"""
Observability: structured logging and per-request log context.
"""

from .context import bind, current_context, generate_request_id, get_request_id, get_user_id
from .logging import (
    CorrelationIdMiddleware,
    HumanFormatter,
    JSONFormatter,
    configure_log_rotation,
    configure_logging,
)

__all__ = [
    "CorrelationIdMiddleware",
    "HumanFormatter",
    "JSONFormatter",
    "bind",
    "configure_log_rotation",
    "configure_logging",
    "current_context",
    "generate_request_id",
    "get_request_id",
    "get_user_id",
]
