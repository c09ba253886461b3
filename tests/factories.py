"""Factory functions for creating test data.

Design principles:
- Factories provide sensible defaults that can be overridden
- make_scheduler() wires a FakeTransport; mock_scheduler() wires an
  HttpxTransport over httpx.MockTransport
"""

from collections.abc import Callable
from typing import Any

import httpx

from rolling_fetch.request import Request
from rolling_fetch.scheduler import RollingScheduler
from rolling_fetch.transport import httpx_transport_factory
from rolling_fetch.transport.base import ErrorCode, TransportResult
from tests.fixtures.transport import FakeTransport


def make_urls(count: int, host: str = "example.test") -> list[str]:
    """Distinct URLs: https://example.test/0, /1, ..."""
    return [f"https://{host}/{i}" for i in range(count)]


def make_request(url: str = "https://example.test/", **kwargs: Any) -> Request:
    """Create a Request with a default URL."""
    return Request(url, **kwargs)


def make_scheduler(
    transport: FakeTransport,
    *,
    urls: list[str] | None = None,
    simultaneous_limit: int = 3,
    **kwargs: Any,
) -> RollingScheduler:
    """Create a scheduler that runs on ``transport`` with ``urls`` queued."""
    scheduler = RollingScheduler(
        simultaneous_limit,
        transport_factory=lambda: transport,
        **kwargs,
    )
    for url in urls or []:
        scheduler.get(url)
    return scheduler


def make_result(
    *,
    body: str = "",
    http_code: int = 200,
    url: str = "https://example.test/",
    error_code: int = ErrorCode.OK,
    error_message: str = "",
) -> TransportResult:
    """Transport result with a minimal info block."""
    return TransportResult(
        body=body,
        info={"url": url, "http_code": http_code},
        error_code=error_code,
        error_message=error_message,
    )


def mock_scheduler(
    handler: Callable[[httpx.Request], Any],
    *,
    urls: list[str] | None = None,
    simultaneous_limit: int = 3,
    **kwargs: Any,
) -> RollingScheduler:
    """Create a scheduler whose HttpxTransport answers through ``handler``."""
    scheduler = RollingScheduler(
        simultaneous_limit,
        transport_factory=httpx_transport_factory(httpx.MockTransport(handler)),
        **kwargs,
    )
    for url in urls or []:
        scheduler.get(url)
    return scheduler
