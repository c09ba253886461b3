"""Transport layer for the rolling scheduler.

Components:
- Transport: Abstract multiplexed transport session
- HttpxTransport: Default session backed by httpx.AsyncClient
- MultiStatus / ErrorCode: Session and per-request status codes
"""

from .base import (
    Completion,
    ErrorCode,
    MultiStatus,
    Transport,
    TransportHandle,
    TransportResult,
)
from .httpx_transport import HttpxTransport, error_code_for, httpx_transport_factory

__all__ = [
    # Capability
    "Completion",
    "Transport",
    "TransportHandle",
    "TransportResult",
    # Status codes
    "ErrorCode",
    "MultiStatus",
    # httpx
    "HttpxTransport",
    "error_code_for",
    "httpx_transport_factory",
]
