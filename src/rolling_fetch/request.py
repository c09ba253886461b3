"""A single HTTP exchange handled by the rolling scheduler.

A Request carries its input (URL, method, body, headers, transport options)
and, once the scheduler has run it, its output (body, metadata, error fields)
plus start/end timing.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from rolling_fetch.exceptions import InvalidArgumentError, InvalidStateError
from rolling_fetch.options import merge_under

if TYPE_CHECKING:
    from rolling_fetch.transport.base import TransportResult

PostData = str | bytes | Mapping[str, Any]


class Request:
    """One HTTP request and, after completion, its response.

    Usage:
        request = Request("https://example.com/search", "POST")
        request.post_data = {"q": "rolling"}
        request.headers = {"Accept": "text/html"}
        request.extra_info = {"row": 42}
        scheduler.add(request)

    Timing uses wall-clock timestamps for display (``started_at``,
    ``ended_at``) and a monotonic clock for the duration.
    """

    def __init__(
        self,
        url: str,
        method: str = "GET",
        *,
        post_data: PostData | None = None,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
        extra_info: Any = None,
    ) -> None:
        """Initialize the request.

        Args:
            url: Target URL (must be non-empty)
            method: HTTP method (default GET)
            post_data: Raw body (str/bytes) or form fields (mapping)
            headers: Request headers; None falls back to scheduler headers
            options: Transport options overriding scheduler options per key
            extra_info: Anything the caller wants carried along

        Raises:
            InvalidArgumentError: If url is empty
        """
        self.url = url
        self.method = method
        self.post_data = post_data
        self.headers = headers
        self.options = options or {}
        self.extra_info = extra_info

        self._response_text: str | None = None
        self._response_info: dict[str, Any] | None = None
        self._response_errno: int | None = None
        self._response_error: str | None = None

        self._started_at: datetime | None = None
        self._ended_at: datetime | None = None
        self._start_clock: float | None = None
        self._end_clock: float | None = None
        self._execution_time: float | None = None

    def __repr__(self) -> str:
        return f"Request({self.method} {self.url})"

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------
    @property
    def url(self) -> str:
        return self._url

    @url.setter
    def url(self, value: str) -> None:
        if not value:
            raise InvalidArgumentError("Request url must be a non-empty string")
        self._url = value

    @property
    def headers(self) -> dict[str, str] | None:
        """Request headers, or None to use the scheduler's."""
        return self._headers

    @headers.setter
    def headers(self, value: Mapping[str, str] | None) -> None:
        self._headers = dict(value) if value is not None else None

    def add_headers(self, headers: Mapping[str, str]) -> None:
        """Add headers without overriding ones already set."""
        self._headers = merge_under(self._headers or {}, headers)

    @property
    def options(self) -> dict[str, Any]:
        """Per-request transport options."""
        return self._options

    @options.setter
    def options(self, value: Mapping[str, Any]) -> None:
        self._options = dict(value)

    def add_options(self, options: Mapping[str, Any]) -> None:
        """Add options without overriding ones already set."""
        self._options = merge_under(self._options, options)

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------
    @property
    def response_text(self) -> str | None:
        return self._response_text

    @property
    def response_info(self) -> dict[str, Any] | None:
        return self._response_info

    @property
    def response_errno(self) -> int | None:
        """Transport error code; 0 on success, None before completion."""
        return self._response_errno

    @property
    def response_error(self) -> str | None:
        return self._response_error

    @property
    def status_code(self) -> int | None:
        """HTTP status from the response info, if the transport reported one."""
        if self._response_info is None:
            return None
        return self._response_info.get("http_code")

    @property
    def is_finished(self) -> bool:
        return self._ended_at is not None

    @property
    def has_error(self) -> bool:
        """True once finished with a non-zero transport error code."""
        return bool(self._response_errno)

    def finish(self, result: TransportResult, at: datetime | None = None) -> None:
        """Record the transport result and mark the request ended.

        Raises:
            InvalidStateError: If the request already finished or never started
        """
        if self._started_at is None:
            raise InvalidStateError(f"{self!r} has not started")
        if self._ended_at is not None:
            raise InvalidStateError(f"{self!r} already finished")
        self._response_text = result.body
        self._response_info = result.info
        self._response_errno = int(result.error_code)
        self._response_error = result.error_message
        self.end(at)

    # -------------------------------------------------------------------------
    # Timing
    # -------------------------------------------------------------------------
    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def ended_at(self) -> datetime | None:
        return self._ended_at

    def start(self, at: datetime | None = None) -> None:
        """Mark the start of execution.

        Args:
            at: Explicit timestamp; defaults to now (UTC, microseconds)

        Raises:
            InvalidStateError: If already started
        """
        if self._started_at is not None:
            raise InvalidStateError(f"{self!r} already started")
        if at is None:
            self._start_clock = time.perf_counter()
            at = datetime.now(UTC)
        self._started_at = at

    def end(self, at: datetime | None = None) -> None:
        """Mark the end of execution.

        Raises:
            InvalidStateError: If not started yet, or already ended
        """
        if self._started_at is None:
            raise InvalidStateError(f"{self!r} has not started")
        if self._ended_at is not None:
            raise InvalidStateError(f"{self!r} already ended")
        if at is None:
            self._end_clock = time.perf_counter()
            at = datetime.now(UTC)
        self._ended_at = at

    @property
    def execution_time(self) -> float | None:
        """Seconds between start and end; None until both are set."""
        if self._started_at is None or self._ended_at is None:
            return None
        if self._execution_time is None:
            if self._start_clock is not None and self._end_clock is not None:
                self._execution_time = self._end_clock - self._start_clock
            else:
                # Explicit timestamps were supplied
                self._execution_time = (self._ended_at - self._started_at).total_seconds()
        return self._execution_time

    @property
    def execution_time_us(self) -> int | None:
        """Execution time in whole microseconds."""
        seconds = self.execution_time
        if seconds is None:
            return None
        return round(seconds * 1_000_000)

    @property
    def actual_execution_time(self) -> float | None:
        """Seconds elapsed so far for an in-flight request.

        None if the request has not started or has already ended.
        """
        if self._started_at is None or self._ended_at is not None:
            return None
        if self._start_clock is not None:
            return time.perf_counter() - self._start_clock
        return (datetime.now(UTC) - self._started_at).total_seconds()

    def reset(self) -> None:
        """Clear output and timing so the same object can be queued again."""
        self._response_text = None
        self._response_info = None
        self._response_errno = None
        self._response_error = None
        self._started_at = None
        self._ended_at = None
        self._start_clock = None
        self._end_clock = None
        self._execution_time = None
