"""Rolling fetch: run many HTTP requests with a fixed number in flight.

This package provides:
- Request: One HTTP exchange with its response and timing
- RollingScheduler: Bounded-concurrency run loop with completion/idle callbacks
- Transport / HttpxTransport: The multiplexed session the scheduler drives
"""

from .exceptions import (
    FatalTransportError,
    InvalidArgumentError,
    InvalidStateError,
    RollingFetchError,
)
from .options import DEFAULT_OPTIONS, Option, SessionOption
from .request import Request
from .scheduler import ProgressTracker, ProgressUpdate, RollingScheduler
from .transport import ErrorCode, HttpxTransport, MultiStatus, Transport

__version__ = "0.1.0"

__all__ = [
    # Core
    "Request",
    "RollingScheduler",
    # Options
    "DEFAULT_OPTIONS",
    "Option",
    "SessionOption",
    # Transport
    "ErrorCode",
    "HttpxTransport",
    "MultiStatus",
    "Transport",
    # Progress
    "ProgressTracker",
    "ProgressUpdate",
    # Exceptions
    "FatalTransportError",
    "InvalidArgumentError",
    "InvalidStateError",
    "RollingFetchError",
]
