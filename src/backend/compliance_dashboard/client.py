"""Snyk export API client: organization discovery, export start, and polling."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .configuration import DashboardSettings
from .errors import (
    ConfigurationError,
    ExportFailedError,
    PollTimeoutError,
    RequestCancelledError,
    UpstreamError,
)
from .models import ExportFilters, ExportJob, ExportJobState
from .providers import ExportApi, build_export_api

logger = logging.getLogger(__name__)

JSON_API_CONTENT_TYPE = "application/vnd.api+json"
DEFAULT_USER_AGENT = "compliance-dashboard"


class ExportClient:
    """
    Drives the three-step export lifecycle against the Snyk REST API.

    A client belongs to a single inbound request: ``cancel_event`` is set by
    the HTTP layer when the caller disconnects, which stops polling and any
    further outbound calls.
    """

    def __init__(
        self,
        settings: DashboardSettings,
        session: Optional[requests.Session] = None,
        api: Optional[ExportApi] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.settings = settings
        self.user_agent = user_agent
        self.api = api or build_export_api(settings.export_scope, settings.api_base_url, settings.group_id)
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a session carrying the token and JSON:API headers."""
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"token {self.settings.require_token()}",
                "Accept": JSON_API_CONTENT_TYPE,
                "User-Agent": self.user_agent,
            }
        )
        return session

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "ExportClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RequestCancelledError("Request was cancelled by the caller.")

    def _request_json(self, method: str, url: str, what: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform one request and decode its JSON body, raising ``UpstreamError`` on any failure."""
        self._check_cancelled()
        kwargs.setdefault("timeout", self.settings.http_timeout_seconds)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise UpstreamError(f"Request to {what} failed: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise UpstreamError(f"Snyk API rejected {what}", status_code=response.status_code, body=response.text)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Could not decode {what} response", status_code=response.status_code, body=response.text
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"Unexpected {what} response shape", status_code=response.status_code)
        return payload

    def list_organizations(self, group_id: Optional[str] = None) -> List[str]:
        """Return every organization ID in the group, following ``links.next`` pages."""
        url: Optional[str] = self.api.orgs_url(group_id)
        org_ids: List[str] = []
        page = 0

        while url:
            page += 1
            payload = self._request_json("GET", url, what="organization listing")
            data = payload.get("data") or []
            if not isinstance(data, list):
                raise UpstreamError("Organization listing returned a non-list 'data' field")
            org_ids.extend(str(item["id"]) for item in data if isinstance(item, dict) and item.get("id"))
            logger.debug("Fetched organization page %d (%d orgs so far)", page, len(org_ids))
            url = self.api.next_page_url(payload)

        logger.info("Resolved %d organizations for group", len(org_ids))
        return org_ids

    def initiate_export(self, filters: ExportFilters) -> ExportJob:
        if not filters.orgs:
            raise ConfigurationError("No organizations specified for export.")

        url, scope_id, body = self.api.export_request(filters)
        payload = self._request_json(
            "POST",
            url,
            what="export initiation",
            json=body,
            headers={"Content-Type": JSON_API_CONTENT_TYPE},
        )
        data = payload.get("data")
        export_id = data.get("id") if isinstance(data, dict) else None
        if not export_id:
            raise UpstreamError("Export initiation response did not contain an export id")

        job = ExportJob(export_id=str(export_id), scope_id=scope_id)
        logger.info("Export initiated: export_id=%s scope=%s orgs=%d", job.export_id, scope_id, len(filters.orgs))
        return job

    def poll_status(self, job: ExportJob) -> str:
        """
        Wait for ``job`` to finish and return the URL of its first file.

        The status endpoint is queried every ``poll_interval_seconds`` until
        the job is FINISHED, reports ERROR, or ``poll_timeout_seconds`` have
        elapsed. Failed or undecodable status calls only mean "not ready yet".
        """

        interval = self.settings.poll_interval_seconds
        deadline = self._clock() + self.settings.poll_timeout_seconds
        logger.info("Polling for export completion: export_id=%s", job.export_id)

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            if self.cancel_event.wait(min(interval, remaining)):
                raise RequestCancelledError(f"Polling of export {job.export_id} cancelled by the caller.")
            now = self._clock()
            if now >= deadline:
                break

            timeout = min(self.settings.http_timeout_seconds, deadline - now)
            file_url = self._poll_once(job, deadline, timeout)
            if file_url:
                return file_url

        logger.warning("Export %s is %s", job.export_id, ExportJobState.TIMED_OUT.value)
        raise PollTimeoutError(
            f"Export {job.export_id} did not finish within {self.settings.poll_timeout_seconds:g} seconds"
        )

    def _poll_once(self, job: ExportJob, deadline: float, timeout: float) -> Optional[str]:
        """Check the job once; requests never outlive the polling deadline."""
        try:
            payload = self._request_json("GET", self.api.status_url(job), what="export status", timeout=timeout)
        except UpstreamError as exc:
            logger.warning("Export status check failed, will retry: %s", exc)
            return None

        status = self.api.status_of(payload)
        state = ExportJobState.from_status(status)
        logger.info("Export %s status: %s", job.export_id, status or "<missing>")

        if state is ExportJobState.ERROR:
            raise ExportFailedError(f"Export {job.export_id} failed with ERROR status")
        if state is not ExportJobState.FINISHED:
            return None

        results_url = self.api.results_url(job)
        if results_url:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            try:
                payload = self._request_json(
                    "GET",
                    results_url,
                    what="export results",
                    timeout=min(self.settings.http_timeout_seconds, remaining),
                )
            except UpstreamError as exc:
                logger.warning("Export results fetch failed, will retry: %s", exc)
                return None

        file_urls = self.api.file_urls(payload)
        if not file_urls:
            raise UpstreamError(f"Export {job.export_id} finished but no file URL was provided")
        return file_urls[0]

    def run_export(self, filters: ExportFilters) -> str:
        job = self.initiate_export(filters)
        return self.poll_status(job)
