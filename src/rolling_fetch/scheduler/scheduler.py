"""Rolling request scheduler.

Keeps a fixed number of requests in flight on one multiplexed transport
session. Whenever a request completes, a replacement is admitted from the
pending queue before the completion callback runs, so the active set stays
full for as long as there is pending work.

Features:
- Fixed concurrency ceiling (``simultaneous_limit``)
- Completion callback may enqueue more work within the same run
- Idle callback polled while waiting for the transport
- Pending queue pruning and completed-list clearing for very large batches
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from rolling_fetch.exceptions import FatalTransportError, InvalidArgumentError
from rolling_fetch.logging import get_logger, log_admission, log_completion
from rolling_fetch.options import (
    DEFAULT_OPTIONS,
    SessionOption,
    build_operation_spec,
    merge_under,
)
from rolling_fetch.request import PostData, Request
from rolling_fetch.transport.base import MultiStatus, Transport, TransportHandle

if TYPE_CHECKING:
    from rolling_fetch.config import Settings

logger = get_logger(__name__)

CompletionCallback = Callable[[Request, "RollingScheduler"], None]
IdleCallback = Callable[["RollingScheduler"], None]
TransportFactory = Callable[[], Transport]


def _default_transport() -> Transport:
    from rolling_fetch.transport.httpx_transport import HttpxTransport

    return HttpxTransport()


class RollingScheduler:
    """Run many HTTP requests with at most ``simultaneous_limit`` in flight.

    Usage:
        scheduler = RollingScheduler(simultaneous_limit=10)
        scheduler.get("https://example.com")
        scheduler.post("https://example.com/form", {"q": "x"})

        def on_complete(request, scheduler):
            if request.has_error:
                print(request.url, request.response_error)
            scheduler.clear_completed()

        scheduler.callback = on_complete
        scheduler.run()

    The callback runs synchronously on the driving thread; it may enqueue
    new requests, which are picked up within the same run.
    """

    def __init__(
        self,
        simultaneous_limit: int = 5,
        *,
        transport_factory: TransportFactory | None = None,
        options: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        session_options: Mapping[str, Any] | None = None,
        callback: CompletionCallback | None = None,
        idle_callback: IdleCallback | None = None,
        select_timeout: float = 1.0,
        idle_select_timeout: float = 0.1,
    ) -> None:
        """Initialize the scheduler.

        Args:
            simultaneous_limit: Maximum requests in flight (>= 2)
            transport_factory: Creates one transport session per run
                (default: HttpxTransport)
            options: Default transport options for every request
            headers: Default headers for requests without their own
            session_options: Options applied to the transport session
            callback: Called with (request, scheduler) on each completion
            idle_callback: Called with (scheduler) while waiting idle
            select_timeout: Wait timeout without an idle callback
            idle_select_timeout: Wait timeout with an idle callback

        Raises:
            InvalidArgumentError: If simultaneous_limit is invalid
        """
        self.simultaneous_limit = simultaneous_limit
        self._transport_factory = transport_factory or _default_transport
        self._options: dict[str, Any] = (
            dict(options) if options is not None else dict(DEFAULT_OPTIONS)
        )
        self._headers: dict[str, str] = dict(headers or {})
        self._session_options: dict[str, Any] = dict(session_options or {})
        self.callback = callback
        self.idle_callback = idle_callback
        self._select_timeout = select_timeout
        self._idle_select_timeout = idle_select_timeout
        self._idle_callback_called = False

        # Pending requests are traversed by cursor, not popped
        self._pending: list[Request] = []
        self._pending_position = 0
        self._active: dict[TransportHandle, Request] = {}
        self._completed: list[Request] = []
        self._completed_count = 0

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> RollingScheduler:
        """Build a scheduler from application settings.

        Keyword arguments override the values taken from settings. Without
        a configured ``max_connections`` the connection pool is sized to the
        simultaneous limit.
        """
        params: dict[str, Any] = {
            "simultaneous_limit": settings.scheduler.simultaneous_limit,
            "options": settings.transport.request_options(),
            "session_options": settings.transport.session_options(),
            "select_timeout": settings.scheduler.select_timeout,
            "idle_select_timeout": settings.scheduler.idle_select_timeout,
        }
        params.update(kwargs)
        if settings.transport.max_connections is None:
            params["session_options"] = merge_under(
                params["session_options"] or {},
                {SessionOption.MAX_CONNECTIONS: params["simultaneous_limit"]},
            )
        return cls(**params)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------
    @property
    def simultaneous_limit(self) -> int:
        return self._simultaneous_limit

    @simultaneous_limit.setter
    def simultaneous_limit(self, count: int) -> None:
        """Set how many requests may run at once.

        Setting this too high makes failures more likely and may look like
        a denial-of-service attempt to the remote side.
        """
        if not isinstance(count, int) or isinstance(count, bool) or count < 2:
            raise InvalidArgumentError("simultaneous_limit must be an int >= 2")
        self._simultaneous_limit = count

    @property
    def headers(self) -> dict[str, str]:
        return self._headers

    @headers.setter
    def headers(self, headers: Mapping[str, str]) -> None:
        self._headers = dict(headers)

    def add_headers(self, headers: Mapping[str, str]) -> None:
        """Add default headers; headers already set keep their values."""
        self._headers = merge_under(self._headers, headers)

    @property
    def options(self) -> dict[str, Any]:
        return self._options

    @options.setter
    def options(self, options: Mapping[str, Any]) -> None:
        self._options = dict(options)

    def add_options(self, options: Mapping[str, Any]) -> None:
        """Add default options; options already set keep their values."""
        self._options = merge_under(self._options, options)

    @property
    def session_options(self) -> dict[str, Any]:
        return self._session_options

    @session_options.setter
    def session_options(self, options: Mapping[str, Any]) -> None:
        self._session_options = dict(options)

    def add_session_options(self, options: Mapping[str, Any]) -> None:
        """Add session options; options already set keep their values."""
        self._session_options = merge_under(self._session_options, options)

    def was_idle_callback_called(self) -> bool:
        """Whether the idle callback fired at least once.

        Fast batches may finish before a wait ever times out.
        """
        return self._idle_callback_called

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------
    def add(self, request: Request) -> Request:
        """Append a request to the pending queue."""
        self._pending.append(request)
        return request

    def request(
        self,
        url: str,
        method: str = "GET",
        post_data: PostData | None = None,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Request:
        """Create a Request and append it to the pending queue."""
        return self.add(
            Request(url, method, post_data=post_data, headers=headers, options=options)
        )

    def get(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Request:
        return self.request(url, "GET", None, headers, options)

    def post(
        self,
        url: str,
        post_data: PostData | None = None,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Request:
        return self.request(url, "POST", post_data, headers, options)

    def put(
        self,
        url: str,
        put_data: PostData | None = None,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Request:
        return self.request(url, "PUT", put_data, headers, options)

    def delete(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> Request:
        return self.request(url, "DELETE", None, headers, options)

    # -------------------------------------------------------------------------
    # Run Loop
    # -------------------------------------------------------------------------
    def run(self) -> None:
        """Run every queued request to completion.

        Returns when pending and active are both empty. An empty queue is
        not an error.

        Raises:
            FatalTransportError: If the transport session itself fails
        """
        with self._transport_factory() as transport:
            try:
                self._run(transport)
            finally:
                self._release_active(transport)

    def _run(self, transport: Transport) -> None:
        transport.configure(self._session_options)

        first_batch = self._next_pending_requests(self._simultaneous_limit)
        if not first_batch:
            logger.debug("Nothing pending, run finished immediately")
            return

        logger.info(
            "Run started (limit={}, pending={})",
            self._simultaneous_limit,
            self.count_pending() + len(first_batch),
        )
        for request in first_batch:
            self._admit(transport, request)

        idle_callback = self.idle_callback
        timeout = self._idle_select_timeout if idle_callback else self._select_timeout
        completed_before = self._completed_count

        while True:
            status, running = transport.perform()
            drained = 0

            for completion in transport.read_completions():
                drained += 1
                request = self._active.pop(completion.handle)
                # Popped from _active, so _release_active no longer covers this handle
                removed = False
                try:
                    request.finish(completion.result)
                    self._completed.append(request)
                    self._completed_count += 1
                    log_completion(request, __name__)

                    # Refill the freed slot before the callback gets a chance to block
                    next_request = self._next_pending_request()
                    if next_request is not None:
                        self._admit(transport, next_request)

                    transport.remove(completion.handle)
                    removed = True
                    if self.callback is not None:
                        self.callback(request, self)
                finally:
                    if not removed:
                        transport.remove(completion.handle)
                    transport.dispose(completion.handle)

                # Callback may have queued more work
                self._fill_free_slots(transport)
                status, running = transport.perform()

            if status.is_fatal:
                logger.error("Transport failed with {}, aborting run", status.name)
                raise FatalTransportError(status, list(self._active.values()))

            # Block until something happens to avoid spinning
            if not drained and (running or self._active):
                while transport.wait(timeout) == 0 and idle_callback is not None:
                    idle_callback(self)
                    self._idle_callback_called = True

            if not (status is MultiStatus.CALL_MULTI_PERFORM or running or self._active):
                break

        logger.info(
            "Run finished ({} completed, {} still pending)",
            self._completed_count - completed_before,
            self.count_pending(),
        )

    def _admit(self, transport: Transport, request: Request) -> None:
        """Register a request with the transport and mark it active."""
        spec = build_operation_spec(request, self._options, self._headers)
        request.start()
        try:
            handle = transport.register(spec)
        except Exception:
            # Never sent, so the request goes back to its unstarted state
            request.reset()
            raise
        self._active[handle] = request
        log_admission(request, len(self._active), __name__)

    def _fill_free_slots(self, transport: Transport) -> None:
        while len(self._active) < self._simultaneous_limit:
            request = self._next_pending_request()
            if request is None:
                return
            self._admit(transport, request)

    def _release_active(self, transport: Transport) -> None:
        """Detach and dispose every handle still registered."""
        if not self._active:
            return
        logger.warning("Releasing {} in-flight request(s) unfinished", len(self._active))
        for handle in list(self._active):
            transport.remove(handle)
            transport.dispose(handle)
        self._active.clear()

    # -------------------------------------------------------------------------
    # Queue Management
    # -------------------------------------------------------------------------
    def _next_pending_requests(self, limit: int = 1) -> list[Request]:
        """Take the next ``limit`` pending requests (all of them if limit <= 0)."""
        if limit <= 0:
            requests = self._pending[self._pending_position :]
        else:
            requests = self._pending[self._pending_position : self._pending_position + limit]
        self._pending_position += len(requests)
        return requests

    def _next_pending_request(self) -> Request | None:
        requests = self._next_pending_requests(1)
        return requests[0] if requests else None

    def prune_pending_queue(self) -> None:
        """Drop already-admitted requests from the pending queue.

        The queue is traversed rather than shrunk, so long runs that keep
        enqueueing should prune it now and then.
        """
        if self._pending_position:
            self._pending = self._pending[self._pending_position :]
            self._pending_position = 0

    def clear_completed(self) -> None:
        """Forget completed requests; count_completed() keeps counting."""
        self._completed = []

    @property
    def completed_requests(self) -> list[Request]:
        return list(self._completed)

    @property
    def active_requests(self) -> list[Request]:
        return list(self._active.values())

    def count_pending(self) -> int:
        return len(self._pending) - self._pending_position

    def count_active(self) -> int:
        return len(self._active)

    def count_completed(self, use_collection: bool = False) -> int:
        """Completed requests.

        Args:
            use_collection: Count the completed list instead of the running
                total; the two differ once clear_completed() was called
        """
        return len(self._completed) if use_collection else self._completed_count
