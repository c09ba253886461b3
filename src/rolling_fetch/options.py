"""Transport option names and the layering rules for combining them.

Options are plain mappings keyed by option name. The enums below name the
options every transport understands; members compare equal to their string
values, so ``{"timeout": 5}`` and ``{Option.TIMEOUT: 5}`` are the same map.

Layering at admission, highest precedence first:

1. request options
2. request headers
3. scheduler default headers
4. scheduler default options
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rolling_fetch.request import Request


class Option(StrEnum):
    """Per-request operation options."""

    URL = "url"
    METHOD = "method"
    BODY = "body"
    HEADERS = "headers"
    FOLLOW_REDIRECTS = "follow_redirects"
    MAX_REDIRECTS = "max_redirects"
    CONNECT_TIMEOUT = "connect_timeout"
    TIMEOUT = "timeout"


class SessionOption(StrEnum):
    """Options applied once to the multiplexed transport session."""

    MAX_CONNECTIONS = "max_connections"
    MAX_KEEPALIVE_CONNECTIONS = "max_keepalive_connections"
    HTTP2 = "http2"
    VERIFY = "verify"


# Base options used with every request unless overridden
DEFAULT_OPTIONS: dict[str, Any] = {
    Option.FOLLOW_REDIRECTS: True,
    Option.MAX_REDIRECTS: 5,
    Option.CONNECT_TIMEOUT: 30.0,
    Option.TIMEOUT: 30.0,
}


def merge_under(current: Mapping[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``extra`` beneath ``current``: keys already in ``current`` win.

    Args:
        current: Entries that keep precedence
        extra: Entries added only where ``current`` has no value

    Returns:
        New merged dict
    """
    merged = dict(extra)
    merged.update(current)
    return merged


def build_operation_spec(
    request: Request,
    options: Mapping[str, Any],
    headers: Mapping[str, str],
) -> dict[str, Any]:
    """Gather scheduler, inferred and per-request options for one operation.

    Request headers, when set and non-empty, replace the scheduler headers
    wholesale. Request options override scheduler options key by key.

    Args:
        request: Request being admitted
        options: Scheduler default options
        headers: Scheduler default headers

    Returns:
        Operation spec to register with the transport
    """
    spec = dict(options)
    spec[Option.URL] = request.url
    spec[Option.METHOD] = request.method

    if request.post_data:
        spec[Option.BODY] = request.post_data

    if request.headers:
        spec[Option.HEADERS] = dict(request.headers)
    elif headers:
        spec[Option.HEADERS] = dict(headers)

    if request.options:
        spec.update(request.options)

    return spec
