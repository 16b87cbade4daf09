"""Common utilities and shared functionality."""

from .exceptions import (
    BindFailure,
    ForwardingFailure,
    PreconditionFailure,
    RelayFailure,
    TeardownFailure,
    TunnelProxyError,
)
from .logging import get_logger, setup_logging
from .utils import (
    LOOPBACK_HOST,
    MAX_PORT,
    MIN_PORT,
    format_host_port,
    mask_sensitive_data,
    validate_port,
)

__all__ = [
    # Exceptions
    "TunnelProxyError",
    "PreconditionFailure",
    "BindFailure",
    "RelayFailure",
    "ForwardingFailure",
    "TeardownFailure",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "mask_sensitive_data",
    "format_host_port",
    "LOOPBACK_HOST",
    "MIN_PORT",
    "MAX_PORT",
]
