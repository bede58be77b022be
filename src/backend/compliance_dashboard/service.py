from __future__ import annotations

import logging
import threading
from typing import Optional

import requests

from .aggregator import fetch_and_aggregate
from .client import ExportClient
from .configuration import DashboardSettings
from .errors import ConfigurationError, RequestCancelledError
from .models import DashboardData, ExportFilters

logger = logging.getLogger(__name__)


class ComplianceDashboardService:
    """
    Builds the compliance dashboard for a single request.

    Stages run strictly in sequence: resolve organizations, start the
    export, wait for it, then download and fold the CSV. Any stage failure
    aborts the whole request; there is no partial result.
    """

    def __init__(
        self,
        settings: DashboardSettings,
        client: Optional[ExportClient] = None,
        download_session: Optional[requests.Session] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self._client = client
        self._download_session = download_session

    @property
    def client(self) -> ExportClient:
        if self._client is None:
            self._client = ExportClient(self.settings, cancel_event=self.cancel_event)
        return self._client

    def build(self, filters: ExportFilters) -> DashboardData:
        if not filters.orgs:
            logger.info("No orgs specified, fetching all orgs in the group")
            orgs = self.client.list_organizations(self.settings.require_group_id())
            if not orgs:
                raise ConfigurationError("The configured group has no organizations to export.")
            filters = filters.with_orgs(orgs)

        file_url = self.client.run_export(filters)
        logger.info("Export finished, CSV ready for download")

        if self.cancel_event.is_set():
            raise RequestCancelledError("Request was cancelled before the export was downloaded.")

        session = self._download_session or requests.Session()
        try:
            return fetch_and_aggregate(file_url, session=session, timeout=self.settings.http_timeout_seconds)
        finally:
            if self._download_session is None:
                session.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
