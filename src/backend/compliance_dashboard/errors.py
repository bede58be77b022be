"""Exceptions raised while building the compliance dashboard."""

from __future__ import annotations

from typing import Optional

MAX_LOGGED_BODY_CHARS = 500


def truncate_body(body: Optional[str], limit: int = MAX_LOGGED_BODY_CHARS) -> str:
    if not body:
        return ""
    if len(body) <= limit:
        return body
    return body[:limit] + "...[truncated]"


class DashboardError(RuntimeError):
    """Base error for every failure inside the export pipeline."""


class ConfigurationError(DashboardError):
    """Raised when a required setting or input (token, group, orgs) is missing."""


class UpstreamError(DashboardError):
    """
    Raised when the export API answers with a non-success status or a body
    that cannot be decoded.

    ``body`` is truncated so it can be logged without flooding the output.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = truncate_body(body)
        detail = message
        if status_code is not None:
            detail = f"{detail} (status {status_code})"
        if self.body:
            detail = f"{detail}: {self.body}"
        super().__init__(detail)


class ExportFailedError(DashboardError):
    """Raised when the export job reports the ERROR status."""


class PollTimeoutError(DashboardError):
    """Raised when the export job does not finish before the polling deadline."""


class RequestCancelledError(DashboardError):
    """Raised when the inbound request went away while the export was running."""


class SchemaError(DashboardError):
    """Raised when the exported CSV lacks a required column."""
