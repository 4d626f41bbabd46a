"""
panlink utilities module.
"""

from panlink.utils.backoff import BackoffConfig, calculate_backoff, calculate_total_delay
from panlink.utils.config import get_project_root, get_settings, reset_settings
from panlink.utils.errors import (
    BatchFailedError,
    ErrorCode,
    FetchError,
    PanlinkError,
    ParseError,
)
from panlink.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    # Config
    "get_settings",
    "reset_settings",
    "get_project_root",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "unbind_context",
    "LogContext",
    # Backoff
    "BackoffConfig",
    "calculate_backoff",
    "calculate_total_delay",
    # Errors
    "ErrorCode",
    "PanlinkError",
    "FetchError",
    "ParseError",
    "BatchFailedError",
]
