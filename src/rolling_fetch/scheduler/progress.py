"""Progress tracking for rolling scheduler runs.

The tracker plugs into a scheduler's completion and idle callbacks and turns
them into ``ProgressUpdate`` events for observers such as a CLI status line.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rolling_fetch.logging import get_logger

if TYPE_CHECKING:
    from rolling_fetch.request import Request

    from .scheduler import CompletionCallback, IdleCallback, RollingScheduler

logger = get_logger(__name__)


@dataclass
class ProgressUpdate:
    """A progress snapshot."""

    succeeded: int
    failed: int
    pending: int
    active: int
    elapsed_seconds: float = 0.0
    longest_active_seconds: float | None = None
    last_url: str | None = None
    idle: bool = False

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    @property
    def total(self) -> int:
        """Requests known so far (completed, in flight and queued)."""
        return self.completed + self.active + self.pending

    @property
    def progress_percent(self) -> float:
        """Completion percentage (0-100)."""
        if self.total == 0:
            return 100.0
        return (self.completed / self.total) * 100

    @property
    def success_rate(self) -> float:
        """Success rate percentage (0-100)."""
        if self.completed == 0:
            return 100.0
        return (self.succeeded / self.completed) * 100


ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressTracker:
    """Observable progress for a scheduler run.

    Usage:
        tracker = ProgressTracker()
        tracker.on_progress(lambda update: print(f"{update.progress_percent:.0f}%"))
        tracker.attach(scheduler)  # keeps any callback already set
        scheduler.run()

    A request counts as failed when the transport reported an error code;
    HTTP status codes are not judged.
    """

    def __init__(self, name: str = "fetch") -> None:
        self._name = name
        self._succeeded = 0
        self._failed = 0
        self._last_url: str | None = None
        self._start_time: float | None = None
        self._forward: CompletionCallback | None = None
        self._forward_idle: IdleCallback | None = None
        self._callbacks: list[ProgressCallback] = []

    @property
    def succeeded(self) -> int:
        return self._succeeded

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def elapsed_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.monotonic() - self._start_time

    def on_progress(self, callback: ProgressCallback) -> None:
        """Register a progress callback."""
        self._callbacks.append(callback)

    def attach(self, scheduler: RollingScheduler) -> None:
        """Install this tracker as the scheduler's completion and idle callbacks.

        Completion and idle callbacks already set on the scheduler keep
        running, before observers are notified.
        """
        self._forward = scheduler.callback
        scheduler.callback = self.on_complete
        self._forward_idle = scheduler.idle_callback
        scheduler.idle_callback = self.on_idle
        self._start_time = time.monotonic()

    # -------------------------------------------------------------------------
    # Scheduler hooks
    # -------------------------------------------------------------------------
    def on_complete(self, request: Request, scheduler: RollingScheduler) -> None:
        if self._start_time is None:
            self._start_time = time.monotonic()
        if request.has_error:
            self._failed += 1
        else:
            self._succeeded += 1
        self._last_url = request.url

        if self._forward is not None:
            self._forward(request, scheduler)
        self._notify(self.snapshot(scheduler))

    def on_idle(self, scheduler: RollingScheduler) -> None:
        if self._forward_idle is not None:
            self._forward_idle(scheduler)
        self._notify(self.snapshot(scheduler, idle=True))

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------
    def snapshot(self, scheduler: RollingScheduler, idle: bool = False) -> ProgressUpdate:
        """Current progress, including the longest-running in-flight request."""
        in_flight = [
            elapsed
            for elapsed in (r.actual_execution_time for r in scheduler.active_requests)
            if elapsed is not None
        ]
        return ProgressUpdate(
            succeeded=self._succeeded,
            failed=self._failed,
            pending=scheduler.count_pending(),
            active=scheduler.count_active(),
            elapsed_seconds=self.elapsed_seconds,
            longest_active_seconds=max(in_flight) if in_flight else None,
            last_url=self._last_url,
            idle=idle,
        )

    def _notify(self, update: ProgressUpdate) -> None:
        for callback in self._callbacks:
            try:
                callback(update)
            except Exception as e:
                logger.warning("{} progress callback error: {}", self._name, e)
