"""Multiplexed transport capability consumed by the scheduler.

A transport is one session able to keep many operations in flight and report
their completions as they happen. The scheduler drives it synchronously:

    with transport:
        transport.configure(session_options)
        handle = transport.register(spec)
        status, running = transport.perform()
        for completion in transport.read_completions():
            ...
            transport.remove(completion.handle)
            transport.dispose(completion.handle)
        transport.wait(timeout)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, NewType

TransportHandle = NewType("TransportHandle", int)
"""Opaque token issued by a transport for one registered operation."""


class MultiStatus(IntEnum):
    """Status of a transport progress step.

    Values follow libcurl's CURLM codes.
    """

    CALL_MULTI_PERFORM = -1
    OK = 0
    BAD_HANDLE = 1
    BAD_EASY_HANDLE = 2
    OUT_OF_MEMORY = 3
    INTERNAL_ERROR = 4

    @property
    def is_fatal(self) -> bool:
        """True when the session itself is broken and the run must abort."""
        return self not in (MultiStatus.OK, MultiStatus.CALL_MULTI_PERFORM)


class ErrorCode(IntEnum):
    """Per-request transport error codes.

    Numbering follows libcurl's CURLE codes where one exists.
    """

    OK = 0
    UNSUPPORTED_PROTOCOL = 1
    URL_MALFORMAT = 3
    COULDNT_RESOLVE_HOST = 6
    COULDNT_CONNECT = 7
    OPERATION_TIMEDOUT = 28
    SSL_CONNECT_ERROR = 35
    BAD_FUNCTION_ARGUMENT = 43
    TOO_MANY_REDIRECTS = 47
    SEND_ERROR = 55
    RECV_ERROR = 56
    BAD_CONTENT_ENCODING = 61
    UNKNOWN = 99


@dataclass
class TransportResult:
    """Outcome of one operation as reported by the transport."""

    body: str = ""
    """Response body (possibly partial on error)."""

    info: dict[str, Any] = field(default_factory=dict)
    """Transport metadata: status code, effective URL, timing, ..."""

    error_code: int = ErrorCode.OK
    """0 on success, otherwise an ErrorCode value."""

    error_message: str = ""
    """Empty on success."""


@dataclass(frozen=True)
class Completion:
    """A finished operation, identified by its handle."""

    handle: TransportHandle
    result: TransportResult


class Transport(ABC):
    """Abstract multiplexed transport session."""

    @abstractmethod
    def configure(self, options: Mapping[str, Any]) -> None:
        """Apply session-level options. Called once, before any register()."""

    @abstractmethod
    def register(self, spec: Mapping[str, Any]) -> TransportHandle:
        """Start a new operation described by ``spec`` on a fresh handle."""

    @abstractmethod
    def perform(self) -> tuple[MultiStatus, int]:
        """Make non-blocking progress.

        Returns:
            Tuple of (status, number of operations still running)
        """

    @abstractmethod
    def read_completions(self) -> list[Completion]:
        """Return completions that are ready and not yet read, in completion order."""

    @abstractmethod
    def wait(self, timeout: float) -> int:
        """Block up to ``timeout`` seconds for activity.

        Returns:
            Number of operations with activity; 0 when the wait timed out
        """

    @abstractmethod
    def remove(self, handle: TransportHandle) -> None:
        """Detach a handle from the session."""

    @abstractmethod
    def dispose(self, handle: TransportHandle) -> None:
        """Release whatever the handle still holds."""

    def close(self) -> None:
        """Release the session."""

    def __enter__(self) -> Transport:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()
