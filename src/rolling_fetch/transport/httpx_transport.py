"""Multiplexed transport backed by httpx.

One ``httpx.AsyncClient`` (and its connection pool) is the session. Every
registered operation is a task on a private asyncio event loop owned by the
transport; ``perform()`` and ``wait()`` step that loop, so callers stay
synchronous while many requests are in flight.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

import httpx

from rolling_fetch.logging import get_logger
from rolling_fetch.options import Option, SessionOption

from .base import (
    Completion,
    ErrorCode,
    MultiStatus,
    Transport,
    TransportHandle,
    TransportResult,
)

logger = get_logger(__name__)

_KNOWN_OPTIONS = frozenset(Option)

# Checked in order, first match wins
_ERROR_CODES: tuple[tuple[type[BaseException], ErrorCode], ...] = (
    (httpx.UnsupportedProtocol, ErrorCode.UNSUPPORTED_PROTOCOL),
    (httpx.InvalidURL, ErrorCode.URL_MALFORMAT),
    (httpx.TooManyRedirects, ErrorCode.TOO_MANY_REDIRECTS),
    (httpx.TimeoutException, ErrorCode.OPERATION_TIMEDOUT),
    (TimeoutError, ErrorCode.OPERATION_TIMEDOUT),
    (httpx.ConnectError, ErrorCode.COULDNT_CONNECT),
    (httpx.WriteError, ErrorCode.SEND_ERROR),
    (httpx.LocalProtocolError, ErrorCode.SEND_ERROR),
    (httpx.ReadError, ErrorCode.RECV_ERROR),
    (httpx.RemoteProtocolError, ErrorCode.RECV_ERROR),
    (httpx.DecodingError, ErrorCode.BAD_CONTENT_ENCODING),
)

_RESOLVE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
)


def error_code_for(exc: BaseException) -> ErrorCode:
    """Map an httpx failure onto a curl-style error code."""
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            if code is ErrorCode.COULDNT_CONNECT:
                message = str(exc).lower()
                if any(marker in message for marker in _RESOLVE_MARKERS):
                    return ErrorCode.COULDNT_RESOLVE_HOST
                if "ssl" in message or "certificate" in message:
                    return ErrorCode.SSL_CONNECT_ERROR
            return code
    return ErrorCode.UNKNOWN


def _normalize_headers(headers: Any) -> dict[str, str] | None:
    """Accept a mapping or a list of ``"Name: value"`` lines."""
    if headers is None or isinstance(headers, Mapping):
        return headers
    normalized: dict[str, str] = {}
    for line in headers:
        name, _, value = str(line).partition(":")
        normalized[name.strip()] = value.strip()
    return normalized


def _body_kwargs(body: Any) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, Mapping):
        return {"data": dict(body)}
    return {"content": body}


def _timeout_for(spec: Mapping[str, Any]) -> httpx.Timeout | Any:
    if Option.TIMEOUT not in spec and Option.CONNECT_TIMEOUT not in spec:
        return httpx.USE_CLIENT_DEFAULT
    total = spec.get(Option.TIMEOUT)
    return httpx.Timeout(total, connect=spec.get(Option.CONNECT_TIMEOUT, total))


class HttpxTransport(Transport):
    """Transport session driving an ``httpx.AsyncClient`` on a private loop.

    Usage:
        scheduler = RollingScheduler(transport_factory=HttpxTransport)

    Tests (or callers needing a custom network layer) can inject any
    ``httpx.AsyncBaseTransport``, e.g. ``httpx.MockTransport``.
    """

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the session.

        Args:
            transport: Optional httpx transport used by the client
        """
        self._loop = asyncio.new_event_loop()
        self._httpx_transport = transport
        self._client: httpx.AsyncClient | None = None
        self._session_options: dict[str, Any] = {}
        self._handles = itertools.count(1)
        self._tasks: dict[TransportHandle, asyncio.Task[TransportResult]] = {}
        self._ready: deque[Completion] = deque()
        self._orphans: list[asyncio.Task[TransportResult]] = []
        self._closed = False

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------
    def configure(self, options: Mapping[str, Any]) -> None:
        if self._client is not None:
            logger.warning("Session options ignored, client already created")
            return
        self._session_options = dict(options)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            options = self._session_options
            limits: dict[str, Any] = {}
            if SessionOption.MAX_CONNECTIONS in options:
                limits["max_connections"] = options[SessionOption.MAX_CONNECTIONS]
            if SessionOption.MAX_KEEPALIVE_CONNECTIONS in options:
                limits["max_keepalive_connections"] = options[
                    SessionOption.MAX_KEEPALIVE_CONNECTIONS
                ]
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(**limits) if limits else httpx.Limits(),
                http2=bool(options.get(SessionOption.HTTP2, False)),
                verify=options.get(SessionOption.VERIFY, True),
                transport=self._httpx_transport,
            )
        return self._client

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        unfinished = [task for task in self._tasks.values() if not task.done()]
        unfinished.extend(task for task in self._orphans if not task.done())
        for task in unfinished:
            task.cancel()
        if unfinished:
            self._loop.run_until_complete(asyncio.gather(*unfinished, return_exceptions=True))

        if self._client is not None:
            self._loop.run_until_complete(self._client.aclose())
            self._client = None
        self._loop.run_until_complete(self._loop.shutdown_asyncgens())
        self._loop.close()
        self._tasks.clear()
        self._ready.clear()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    def register(self, spec: Mapping[str, Any]) -> TransportHandle:
        handle = TransportHandle(next(self._handles))
        unknown = set(spec) - _KNOWN_OPTIONS
        if unknown:
            logger.debug("Ignoring unsupported options: {}", sorted(unknown))
        self._tasks[handle] = self._loop.create_task(self._run_operation(handle, dict(spec)))
        return handle

    def perform(self) -> tuple[MultiStatus, int]:
        if self._closed:
            return MultiStatus.BAD_HANDLE, 0

        self._loop.run_until_complete(asyncio.sleep(0))

        running = 0
        for task in self._tasks.values():
            if not task.done():
                running += 1
            elif not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                logger.opt(exception=exc).error("Operation crashed inside the transport")
                if isinstance(exc, MemoryError):
                    return MultiStatus.OUT_OF_MEMORY, running
                return MultiStatus.INTERNAL_ERROR, running
        return MultiStatus.OK, running

    def read_completions(self) -> list[Completion]:
        completions = list(self._ready)
        self._ready.clear()
        return completions

    def wait(self, timeout: float) -> int:
        if self._ready:
            return len(self._ready)
        pending = [task for task in self._tasks.values() if not task.done()]
        if not pending:
            return 0
        done, _ = self._loop.run_until_complete(
            asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        )
        return len(done)

    def remove(self, handle: TransportHandle) -> None:
        task = self._tasks.pop(handle, None)
        if task is not None and not task.done():
            task.cancel()
            self._orphans.append(task)

    def dispose(self, handle: TransportHandle) -> None:
        # Drop a completion nobody read
        for completion in list(self._ready):
            if completion.handle == handle:
                self._ready.remove(completion)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------
    async def _run_operation(
        self, handle: TransportHandle, spec: dict[str, Any]
    ) -> TransportResult:
        result = await self._execute(spec)
        self._ready.append(Completion(handle, result))
        return result

    async def _execute(self, spec: dict[str, Any]) -> TransportResult:
        client = self._get_client()
        url = spec[Option.URL]
        follow = bool(spec.get(Option.FOLLOW_REDIRECTS, False))
        max_redirects = int(spec.get(Option.MAX_REDIRECTS, 20))
        total_timeout = spec.get(Option.TIMEOUT)

        info: dict[str, Any] = {"url": url, "http_code": 0, "redirect_count": 0}
        started = time.perf_counter()
        redirects = 0

        try:
            request = client.build_request(
                spec.get(Option.METHOD, "GET"),
                url,
                headers=_normalize_headers(spec.get(Option.HEADERS)),
                timeout=_timeout_for(spec),
                **_body_kwargs(spec.get(Option.BODY)),
            )
        except httpx.InvalidURL as exc:
            return _failure(exc, error_code_for(exc), info, started)
        except (TypeError, ValueError) as exc:
            # Unusable headers, body or timeouts fail this request only
            return _failure(exc, ErrorCode.BAD_FUNCTION_ARGUMENT, info, started)

        try:
            async with asyncio.timeout(total_timeout):
                response = await client.send(request, follow_redirects=False)
                while follow and response.next_request is not None:
                    if redirects >= max_redirects:
                        raise httpx.TooManyRedirects(
                            "Exceeded maximum allowed redirects.",
                            request=response.next_request,
                        )
                    await response.aclose()
                    response = await client.send(response.next_request, follow_redirects=False)
                    redirects += 1
        except (httpx.HTTPError, httpx.InvalidURL, TimeoutError) as exc:
            info["redirect_count"] = redirects
            return _failure(exc, error_code_for(exc), info, started)

        info.update(
            {
                "url": str(response.url),
                "http_code": response.status_code,
                "content_type": response.headers.get("content-type"),
                "http_version": response.http_version,
                "redirect_count": redirects,
                "total_time": time.perf_counter() - started,
                "size_download": len(response.content),
                "headers": dict(response.headers),
            }
        )
        return TransportResult(body=response.text, info=info)


def _failure(
    exc: BaseException, code: ErrorCode, info: dict[str, Any], started: float
) -> TransportResult:
    info["total_time"] = time.perf_counter() - started
    return TransportResult(
        body="", info=info, error_code=code, error_message=str(exc) or type(exc).__name__
    )


def httpx_transport_factory(
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[], HttpxTransport]:
    """Return a zero-argument factory building sessions on ``transport``."""
    return lambda: HttpxTransport(transport=transport)
