"""Loguru sinks and request-tagged records for rollfetch.

Records about a single request are bound with ``method`` and ``url`` extras
(see bind_request). Both sinks render those as a trailing
``[GET https://...]`` tag, so a DEBUG run reads as one line per admission
and one per completion. Intercepted httpx output stays untagged.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from types import FrameType
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

    from rolling_fetch.config import LoggingConfig
    from rolling_fetch.request import Request

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Standard library loggers underneath HttpxTransport that log once per request
_PER_REQUEST_LOGGERS = ("httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """Route standard library records (httpx, httpcore, asyncio) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


# -----------------------------------------------------------------------------
# Formats
# -----------------------------------------------------------------------------
def _source(record: Record) -> str:
    return "{extra[name]}" if "name" in record["extra"] else "{name}"


def _request_tag(record: Record) -> str:
    if "url" not in record["extra"]:
        return ""
    return " [{extra[method]} {extra[url]}]"


def _console_format(record: Record) -> str:
    return (
        "<dim>{time:HH:mm:ss.SSS}</dim> | <level>{level: <8}</level> | "
        "<cyan>" + _source(record) + "</cyan> - <level>{message}</level>"
        "<dim>" + _request_tag(record) + "</dim>\n{exception}"
    )


def _file_format(record: Record) -> str:
    return (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
        + _source(record)
        + ":{function}:{line} | {message}"
        + _request_tag(record)
        + "\n{exception}"
    )


# -----------------------------------------------------------------------------
# Setup
# -----------------------------------------------------------------------------
def resolve_level(level: LogLevel, *, verbose: bool = False, quiet: bool = False) -> LogLevel:
    """--verbose wins over --quiet, and either wins over the configured level."""
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    config: LoggingConfig | None = None,
) -> None:
    """Install the stderr sink, the optional rotating file sink and stdlib interception.

    Args:
        level: Configured level, overridden by verbose/quiet
        verbose: Log at DEBUG, including httpx's own request lines
        quiet: Log at WARNING
        config: File sink settings; no file sink without ``log_file``
    """
    effective_level = resolve_level(level, verbose=verbose, quiet=quiet)

    logger.remove()
    logger.add(
        sys.stderr,
        level=effective_level,
        format=_console_format,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if config is not None and config.log_file:
        logger.add(
            Path(config.log_file),
            level="DEBUG",
            format=_file_format,
            rotation=config.rotation,
            retention=config.retention,
            compression="gz",
            serialize=config.serialize,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # The scheduler already logs every admission and completion
    per_request_level = (
        logging.DEBUG if effective_level in ("TRACE", "DEBUG") else logging.WARNING
    )
    for name in _PER_REQUEST_LOGGERS:
        logging.getLogger(name).setLevel(per_request_level)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Loggers
# -----------------------------------------------------------------------------
def get_logger(name: str) -> Logger:
    """Logger with the module name bound; used as ``logger = get_logger(__name__)``."""
    return logger.bind(name=name)


def bind_request(request: Request, name: str = "rolling_fetch") -> Logger:
    """Logger whose records are tagged with the request's method and URL."""
    return logger.bind(name=name, method=request.method, url=request.url)


def log_admission(request: Request, active: int, name: str = "rolling_fetch") -> None:
    bind_request(request, name).bind(active=active).opt(depth=1).debug(
        "Admitted (active={})", active
    )


def log_completion(request: Request, name: str = "rolling_fetch") -> None:
    """Record the outcome of a finished request.

    The error number, status code and elapsed seconds are bound as extras
    as well, so serialized file logs can be filtered on them.
    """
    record = (
        bind_request(request, name)
        .bind(
            errno=request.response_errno,
            status=request.status_code,
            elapsed=request.execution_time,
        )
        .opt(depth=1)
    )
    if request.has_error:
        record.debug(
            "Failed with error {}: {}", request.response_errno, request.response_error
        )
    else:
        record.debug(
            "Completed with HTTP {} in {:.3f}s", request.status_code, request.execution_time
        )
