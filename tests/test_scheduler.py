"""Unit tests for RollingScheduler.

These tests drive the scheduler with FakeTransport and verify admission
order, the concurrency ceiling, callbacks, queue maintenance and failure
cleanup.
"""

from typing import Any

import pytest

from rolling_fetch.config import SchedulerConfig, Settings, TransportConfig
from rolling_fetch.exceptions import FatalTransportError, InvalidArgumentError, InvalidStateError
from rolling_fetch.options import DEFAULT_OPTIONS, Option, SessionOption
from rolling_fetch.request import Request
from rolling_fetch.scheduler import RollingScheduler
from rolling_fetch.transport.base import ErrorCode, MultiStatus
from tests.factories import make_request, make_result, make_scheduler, make_urls
from tests.fixtures.transport import FakeTransport


class TestSchedulerInit:
    """Tests for construction and configuration."""

    def test_defaults(self) -> None:
        """Defaults match the built-in option set."""
        scheduler = RollingScheduler()

        assert scheduler.simultaneous_limit == 5
        assert scheduler.options == DEFAULT_OPTIONS
        assert scheduler.options is not DEFAULT_OPTIONS
        assert scheduler.headers == {}
        assert scheduler.session_options == {}
        assert scheduler.callback is None
        assert scheduler.idle_callback is None
        assert scheduler.was_idle_callback_called() is False

    def test_minimum_limit_accepted(self) -> None:
        """A limit of 2 is allowed."""
        assert RollingScheduler(2).simultaneous_limit == 2

    @pytest.mark.parametrize("limit", [1, 0, -3, "3", 2.5, True])
    def test_invalid_limit_rejected(self, limit: Any) -> None:
        """Limits must be ints of at least 2."""
        with pytest.raises(InvalidArgumentError):
            RollingScheduler(limit)

    def test_invalid_limit_on_assignment(self) -> None:
        """The setter validates and keeps the old value."""
        scheduler = RollingScheduler(4)
        with pytest.raises(ValueError):
            scheduler.simultaneous_limit = 1
        assert scheduler.simultaneous_limit == 4

    def test_add_options_keeps_existing(self) -> None:
        """add_options does not override options already set."""
        scheduler = RollingScheduler(options={Option.TIMEOUT: 10})
        scheduler.add_options({Option.TIMEOUT: 99, Option.MAX_REDIRECTS: 1})

        assert scheduler.options == {Option.TIMEOUT: 10, Option.MAX_REDIRECTS: 1}

    def test_add_headers_and_session_options(self) -> None:
        """Headers and session options follow the same add rule."""
        scheduler = RollingScheduler(
            headers={"Accept": "text/html"},
            session_options={SessionOption.HTTP2: True},
        )
        scheduler.add_headers({"Accept": "*/*", "X-Trace": "1"})
        scheduler.add_session_options({SessionOption.HTTP2: False, SessionOption.VERIFY: False})

        assert scheduler.headers == {"Accept": "text/html", "X-Trace": "1"}
        assert scheduler.session_options == {"http2": True, "verify": False}

    def test_from_settings(self) -> None:
        """Settings supply the limit, options and session options."""
        settings = Settings(
            scheduler=SchedulerConfig(simultaneous_limit=7),
            transport=TransportConfig(timeout=12.0, max_connections=20),
        )
        scheduler = RollingScheduler.from_settings(settings)

        assert scheduler.simultaneous_limit == 7
        assert scheduler.options[Option.TIMEOUT] == 12.0
        assert scheduler.session_options[SessionOption.MAX_CONNECTIONS] == 20

    def test_from_settings_overrides(self) -> None:
        """Keyword arguments beat settings values."""
        scheduler = RollingScheduler.from_settings(Settings(), simultaneous_limit=3)
        assert scheduler.simultaneous_limit == 3

    def test_from_settings_sizes_pool_to_limit(self) -> None:
        """Without max_connections the pool follows the effective limit."""
        settings = Settings(scheduler=SchedulerConfig(simultaneous_limit=7))

        assert (
            RollingScheduler.from_settings(settings).session_options[
                SessionOption.MAX_CONNECTIONS
            ]
            == 7
        )
        assert (
            RollingScheduler.from_settings(settings, simultaneous_limit=12).session_options[
                SessionOption.MAX_CONNECTIONS
            ]
            == 12
        )


class TestEnqueue:
    """Tests for adding requests."""

    def test_helpers_set_method(self) -> None:
        """Each helper queues a request with its method."""
        scheduler = RollingScheduler()
        get = scheduler.get("https://example.test/g")
        post = scheduler.post("https://example.test/p", {"a": "1"})
        put = scheduler.put("https://example.test/u", "raw")
        delete = scheduler.delete("https://example.test/d", headers={"X": "1"})

        assert [get.method, post.method, put.method, delete.method] == [
            "GET",
            "POST",
            "PUT",
            "DELETE",
        ]
        assert post.post_data == {"a": "1"}
        assert put.post_data == "raw"
        assert delete.headers == {"X": "1"}
        assert scheduler.count_pending() == 4

    def test_add_returns_same_request(self) -> None:
        """add() queues the given object."""
        scheduler = RollingScheduler()
        request = make_request()

        assert scheduler.add(request) is request
        assert scheduler.count_pending() == 1

    def test_empty_url_rejected(self) -> None:
        """Building a request with no URL fails before queueing."""
        scheduler = RollingScheduler()
        with pytest.raises(InvalidArgumentError):
            scheduler.get("")
        assert scheduler.count_pending() == 0


class TestRunBasics:
    """Tests for complete runs."""

    def test_all_requests_complete_within_limit(self) -> None:
        """Seven requests with a limit of three all complete."""
        transport = FakeTransport(batch=None, order="lifo")
        seen: list[str] = []
        active_counts: list[int] = []

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            seen.append(request.url)
            active_counts.append(scheduler.count_active())

        scheduler = make_scheduler(transport, urls=make_urls(7), callback=on_complete)
        scheduler.run()

        assert sorted(seen) == sorted(make_urls(7))
        assert transport.peak_in_flight <= 3
        assert max(active_counts) <= 3
        assert scheduler.count_completed() == 7
        assert scheduler.count_pending() == 0
        assert scheduler.count_active() == 0
        assert transport.closed

    def test_empty_run_returns_immediately(self, fake_transport: FakeTransport) -> None:
        """An empty queue registers nothing."""
        scheduler = make_scheduler(fake_transport)
        scheduler.run()

        assert fake_transport.events == [("configure", {}), ("close", None)]
        assert scheduler.count_completed() == 0

    def test_session_options_configured(self, fake_transport: FakeTransport) -> None:
        """Session options reach the transport before any registration."""
        scheduler = make_scheduler(
            fake_transport,
            urls=make_urls(1),
            session_options={SessionOption.MAX_CONNECTIONS: 4},
        )
        scheduler.run()

        assert fake_transport.events[0] == ("configure", {"max_connections": 4})

    def test_each_request_reported_once(self) -> None:
        """Every request reaches the callback exactly once."""
        transport = FakeTransport(batch=3, order="lifo")
        reported: list[Request] = []
        scheduler = make_scheduler(
            transport,
            urls=make_urls(20),
            simultaneous_limit=4,
            callback=lambda request, _: reported.append(request),
        )
        scheduler.run()

        assert len(reported) == 20
        assert len({id(r) for r in reported}) == 20
        assert all(r.is_finished for r in reported)
        assert scheduler.completed_requests == reported

    def test_responses_recorded(self) -> None:
        """Transport results land on the request."""
        url = "https://example.test/broken"
        transport = FakeTransport(
            results={
                url: make_result(
                    url=url,
                    http_code=0,
                    error_code=ErrorCode.COULDNT_CONNECT,
                    error_message="refused",
                )
            }
        )
        scheduler = make_scheduler(transport, urls=[url, "https://example.test/ok"])
        scheduler.run()

        broken, ok = sorted(scheduler.completed_requests, key=lambda r: r.url)
        assert broken.response_errno == 7
        assert broken.response_error == "refused"
        assert ok.response_errno == 0
        assert ok.response_text == "<title>https://example.test/ok</title>"
        assert ok.execution_time is not None

    def test_request_option_overrides_scheduler_option(self) -> None:
        """Per-request options reach the transport over scheduler defaults."""
        transport = FakeTransport()
        scheduler = make_scheduler(transport, options={Option.TIMEOUT: 30})
        scheduler.get("https://example.test/", options={Option.TIMEOUT: 2})
        scheduler.run()

        assert transport.specs[1][Option.TIMEOUT] == 2

    def test_scheduler_headers_applied(self) -> None:
        """Scheduler headers fill in for requests without their own."""
        transport = FakeTransport()
        scheduler = make_scheduler(transport, headers={"Accept": "text/html"})
        scheduler.get("https://example.test/a")
        scheduler.get("https://example.test/b", headers={"X-Trace": "1"})
        scheduler.run()

        assert transport.specs[1][Option.HEADERS] == {"Accept": "text/html"}
        assert transport.specs[2][Option.HEADERS] == {"X-Trace": "1"}


class TestAdmissionOrder:
    """Tests for the order of admission, removal and callbacks."""

    def test_replacement_admitted_before_callback(self) -> None:
        """The freed slot is refilled before the callback runs."""
        transport = FakeTransport()
        urls = make_urls(3)

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            transport.events.append(("callback", request.url))

        scheduler = make_scheduler(
            transport, urls=urls, simultaneous_limit=2, callback=on_complete
        )
        scheduler.run()

        start = transport.events.index(("complete", urls[0]))
        assert transport.events[start + 1 : start + 5] == [
            ("register", urls[2]),
            ("remove", 1),
            ("callback", urls[0]),
            ("dispose", 1),
        ]

    def test_first_batch_is_queue_prefix(self, fake_transport: FakeTransport) -> None:
        """The first limit-sized prefix of the queue is admitted first."""
        urls = make_urls(5)
        scheduler = make_scheduler(fake_transport, urls=urls, simultaneous_limit=3)
        scheduler.run()

        registered = [value for kind, value in fake_transport.events if kind == "register"]
        assert registered[:3] == urls[:3]
        assert sorted(registered) == sorted(urls)


class TestCallbackEnqueue:
    """Tests for requests added from the completion callback."""

    def test_enqueue_from_last_callback_runs(self, fake_transport: FakeTransport) -> None:
        """Work added by the final callback runs in the same run."""
        follow_up = "https://example.test/follow-up"

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            if request.url != follow_up:
                scheduler.get(follow_up)

        scheduler = make_scheduler(
            fake_transport, urls=make_urls(1), simultaneous_limit=2, callback=on_complete
        )
        scheduler.run()

        assert scheduler.count_completed() == 2
        assert scheduler.completed_requests[-1].url == follow_up

    def test_chained_enqueue(self) -> None:
        """Callbacks may keep enqueueing while the run is active."""
        transport = FakeTransport(batch=2)

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            depth = request.extra_info or 0
            if depth < 4:
                scheduler.add(Request(f"{request.url}/next", extra_info=depth + 1))

        scheduler = make_scheduler(transport, simultaneous_limit=2, callback=on_complete)
        scheduler.add(Request("https://example.test/a", extra_info=0))
        scheduler.add(Request("https://example.test/b", extra_info=0))
        scheduler.run()

        assert scheduler.count_completed() == 10
        assert transport.peak_in_flight <= 2


class TestIdleCallback:
    """Tests for idle polling."""

    def test_idle_callback_per_empty_wait(self) -> None:
        """The idle callback fires once per wait that times out."""
        transport = FakeTransport(idle_polls=3)
        idle_calls: list[int] = []
        scheduler = make_scheduler(
            transport,
            urls=make_urls(2),
            simultaneous_limit=2,
            idle_callback=lambda s: idle_calls.append(s.count_active()),
        )
        scheduler.run()

        assert idle_calls == [2, 2, 2]
        assert scheduler.was_idle_callback_called()
        assert set(transport.wait_timeouts) == {0.1}

    def test_without_idle_callback_uses_long_timeout(self) -> None:
        """Waits use the longer timeout when nobody is polling."""
        transport = FakeTransport(idle_polls=2)
        scheduler = make_scheduler(transport, urls=make_urls(2))
        scheduler.run()

        assert scheduler.count_completed() == 2
        assert set(transport.wait_timeouts) == {1.0}
        assert scheduler.was_idle_callback_called() is False

    def test_fast_run_never_idles(self, fake_transport: FakeTransport) -> None:
        """A run with no empty waits leaves the flag unset."""
        scheduler = make_scheduler(
            fake_transport, urls=make_urls(3), idle_callback=lambda s: None
        )
        scheduler.run()

        assert scheduler.was_idle_callback_called() is False


class TestQueueMaintenance:
    """Tests for pruning and clearing."""

    def test_prune_is_idempotent(self) -> None:
        """Pruning twice leaves the same queue."""
        scheduler = RollingScheduler()
        for url in make_urls(5):
            scheduler.get(url)
        scheduler._next_pending_requests(2)

        scheduler.prune_pending_queue()
        first = list(scheduler._pending)
        scheduler.prune_pending_queue()

        assert scheduler._pending == first
        assert [r.url for r in first] == make_urls(5)[2:]
        assert scheduler.count_pending() == 3

    def test_next_pending_non_positive_takes_all(self) -> None:
        """A limit of zero or less takes everything left."""
        scheduler = RollingScheduler()
        for url in make_urls(4):
            scheduler.get(url)

        assert len(scheduler._next_pending_requests(0)) == 4
        assert scheduler.count_pending() == 0

    def test_clear_completed_keeps_counter(self, fake_transport: FakeTransport) -> None:
        """The running total survives clearing the list."""
        scheduler = make_scheduler(fake_transport, urls=make_urls(4))
        scheduler.run()
        scheduler.clear_completed()

        assert scheduler.count_completed() == 4
        assert scheduler.count_completed(use_collection=True) == 0
        assert scheduler.completed_requests == []

    def test_low_memory_callback(self) -> None:
        """Clearing and pruning from the callback does not lose work."""
        transport = FakeTransport(batch=2)
        seen: list[str] = []

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            seen.append(request.url)
            scheduler.clear_completed()
            scheduler.prune_pending_queue()
            assert len(scheduler._pending) == scheduler.count_pending()

        scheduler = make_scheduler(transport, urls=make_urls(10), callback=on_complete)
        scheduler.run()

        assert sorted(seen) == sorted(make_urls(10))
        assert scheduler.count_completed() == 10
        assert scheduler.completed_requests == []
        assert scheduler.count_pending() == 0


class TestFailures:
    """Tests for fatal errors and cleanup."""

    def test_fatal_status_aborts_run(self) -> None:
        """A fatal perform status raises with the in-flight requests."""
        transport = FakeTransport(fatal_status=MultiStatus.INTERNAL_ERROR)
        scheduler = make_scheduler(transport, urls=make_urls(5), simultaneous_limit=2)

        with pytest.raises(FatalTransportError) as exc_info:
            scheduler.run()

        error = exc_info.value
        assert error.status is MultiStatus.INTERNAL_ERROR
        assert [r.url for r in error.abandoned] == make_urls(2)
        assert "INTERNAL_ERROR" in str(error)
        assert transport.removed == [1, 2]
        assert transport.disposed == [1, 2]
        assert transport.closed
        assert scheduler.count_active() == 0
        assert scheduler.count_pending() == 3

    @pytest.mark.parametrize(
        ("status", "fatal"),
        [
            (MultiStatus.OK, False),
            (MultiStatus.CALL_MULTI_PERFORM, False),
            (MultiStatus.BAD_HANDLE, True),
            (MultiStatus.OUT_OF_MEMORY, True),
        ],
    )
    def test_fatal_statuses(self, status: MultiStatus, fatal: bool) -> None:
        """Only OK and CALL_MULTI_PERFORM let a run continue."""
        assert status.is_fatal is fatal

    def test_callback_error_releases_handles(self) -> None:
        """An exception from the callback propagates after cleanup."""
        transport = FakeTransport()

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            raise RuntimeError("boom")

        scheduler = make_scheduler(
            transport, urls=make_urls(3), simultaneous_limit=2, callback=on_complete
        )
        with pytest.raises(RuntimeError, match="boom"):
            scheduler.run()

        assert sorted(transport.disposed) == [1, 2, 3]
        assert transport.closed
        assert scheduler.count_active() == 0

    def test_failed_replacement_releases_finished_handle(self) -> None:
        """A replacement that cannot be admitted still releases the finished handle."""
        transport = FakeTransport()
        readded: list[Request] = []

        def on_complete(request: Request, scheduler: RollingScheduler) -> None:
            if not readded:
                readded.append(request)
                scheduler.add(request)

        scheduler = make_scheduler(
            transport, urls=make_urls(3), simultaneous_limit=2, callback=on_complete
        )
        with pytest.raises(InvalidStateError):
            scheduler.run()

        assert sorted(transport.specs) == [1, 2, 3]
        assert sorted(transport.removed) == [1, 2, 3]
        assert sorted(transport.disposed) == [1, 2, 3]
        assert transport.closed
        assert scheduler.count_active() == 0

    def test_register_failure_leaves_request_unstarted(self) -> None:
        """A request the transport refused is not left half-started."""

        class RefusingTransport(FakeTransport):
            def register(self, spec: dict[str, Any]) -> Any:
                if len(self.specs) == 1:
                    raise RuntimeError("no more handles")
                return super().register(spec)

        transport = RefusingTransport()
        scheduler = make_scheduler(transport, simultaneous_limit=2)
        first, refused = (scheduler.get(url) for url in make_urls(2))

        with pytest.raises(RuntimeError, match="no more handles"):
            scheduler.run()

        assert first.started_at is not None
        assert refused.started_at is None
        assert not refused.is_finished
        assert transport.removed == [1]
        assert transport.disposed == [1]
        assert transport.closed

    def test_requeue_without_reset_fails(self, fake_transport: FakeTransport) -> None:
        """A finished request cannot be run again as-is."""
        request = make_request()
        request.start()
        request.finish(make_result())
        scheduler = make_scheduler(fake_transport)
        scheduler.add(request)

        with pytest.raises(InvalidStateError):
            scheduler.run()

        assert fake_transport.specs == {}
        assert fake_transport.closed

    def test_requeue_after_reset(self, fake_transport: FakeTransport) -> None:
        """reset() makes a request runnable again."""
        scheduler = make_scheduler(fake_transport, urls=make_urls(1))
        scheduler.run()
        request = scheduler.completed_requests[0]

        request.reset()
        scheduler.add(request)
        scheduler.run()

        assert scheduler.count_completed() == 2
        assert request.is_finished
