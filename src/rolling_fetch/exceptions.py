"""Rolling fetch exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rolling_fetch.request import Request
    from rolling_fetch.transport.base import MultiStatus


class RollingFetchError(Exception):
    """Base exception for rolling fetch errors."""

    pass


class InvalidArgumentError(RollingFetchError, ValueError):
    """Raised when a setter or constructor receives an unusable value."""

    pass


class InvalidStateError(RollingFetchError):
    """Raised when a Request lifecycle step is repeated or out of order."""

    pass


class FatalTransportError(RollingFetchError):
    """Raised when the multiplexing layer itself fails during a run.

    Distinct from per-request transport errors, which are recorded on the
    Request. The run is aborted; requests that were in flight are listed
    in ``abandoned`` and requests still pending stay queued on the scheduler.
    """

    def __init__(
        self,
        status: MultiStatus,
        abandoned: list[Request] | None = None,
    ) -> None:
        super().__init__(
            f"transport perform failed with status ({status.value}) const ({status.name})"
        )
        self.status = status
        self.abandoned = abandoned or []
