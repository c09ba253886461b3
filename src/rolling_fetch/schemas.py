"""Serializable summaries of completed requests."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from rolling_fetch.request import Request

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


def extract_title(html: str | None) -> str | None:
    """Return the text of the first ``<title>`` tag, if any."""
    if not html:
        return None
    match = _TITLE_RE.search(html)
    if match is None:
        return None
    return " ".join(match.group(1).split())


class FetchRecord(BaseModel):
    """Outcome of one completed request, ready for JSON output."""

    model_config = ConfigDict(str_strip_whitespace=True)

    url: str
    method: str
    effective_url: str | None = None
    status_code: int | None = None
    error_code: int = 0
    error: str = ""
    duration_ms: float | None = Field(default=None, ge=0)
    size: int = 0
    started_at: datetime | None = None
    title: str | None = None

    @property
    def success(self) -> bool:
        return self.error_code == 0

    @classmethod
    def from_request(cls, request: Request, *, with_title: bool = False) -> Self:
        """Build a record from a finished Request.

        Args:
            request: Request the scheduler reported as completed
            with_title: Also extract the HTML page title from the body
        """
        info = request.response_info or {}
        duration = request.execution_time
        return cls(
            url=request.url,
            method=request.method,
            effective_url=info.get("url"),
            status_code=request.status_code or None,
            error_code=request.response_errno or 0,
            error=request.response_error or "",
            duration_ms=round(duration * 1000, 3) if duration is not None else None,
            size=len(request.response_text or ""),
            started_at=request.started_at,
            title=extract_title(request.response_text) if with_title else None,
        )
