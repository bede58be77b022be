"""
Export API flavours.

Snyk has shipped the issues export both as an organization-scoped endpoint
(status and results live on separate URLs) and as a group-scoped endpoint
(results embedded in the status document). Everything that differs between
the two is kept behind ``ExportApi`` so ``ExportClient`` only deals with
HTTP, polling and error handling.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .models import ExportFilters, ExportJob

ORGS_API_VERSION = "2024-07-29"
EXPORT_API_VERSION = "2024-10-15"
ORGS_PAGE_LIMIT = 100

EXPORT_COLUMNS: Tuple[str, ...] = (
    "ISSUE_SEVERITY",
    "SCORE",
    "CVE",
    "CWE",
    "ORG_DISPLAY_NAME",
    "PROJECT_NAME",
    "PROJECT_URL",
    "EXPLOIT_MATURITY",
    "COMPUTED_FIXABILITY",
    "FIRST_INTRODUCED",
    "PRODUCT_NAME",
    "ISSUE_URL",
    "ISSUE_STATUS_INDICATOR",
    "ISSUE_TYPE",
    "PROJECT_ENVIRONMENTS",
)


class ExportApi:
    """
    Interface for one version of the export API.

    Implementations only build URLs/bodies and read payloads; they never
    perform requests themselves.
    """

    resource_type = "resource"
    environment_filter_key = "environment"
    lifecycle_filter_key = "lifecycle"

    def __init__(self, base_url: str, group_id: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.group_id = group_id

    def orgs_url(self, group_id: Optional[str] = None) -> str:
        group = group_id or self.group_id
        if not group:
            raise ConfigurationError("SNYK_GROUP_ID is required to list organizations.")
        return (
            f"{self.base_url}/rest/groups/{group}/orgs"
            f"?version={ORGS_API_VERSION}&limit={ORGS_PAGE_LIMIT}"
        )

    def next_page_url(self, payload: Dict[str, Any]) -> Optional[str]:
        next_link = (payload.get("links") or {}).get("next")
        if not next_link:
            return None
        if next_link.startswith(("http://", "https://")):
            return next_link
        return f"{self.base_url}/{next_link.lstrip('/')}"

    def export_request(self, filters: ExportFilters) -> Tuple[str, str, Dict[str, Any]]:
        """Return ``(url, scope_id, body)`` for starting an export."""
        raise NotImplementedError

    def status_url(self, job: ExportJob) -> str:
        raise NotImplementedError

    def results_url(self, job: ExportJob) -> Optional[str]:
        """URL holding the file list, or ``None`` when the status embeds it."""
        raise NotImplementedError

    def file_urls(self, payload: Dict[str, Any]) -> List[str]:
        raise NotImplementedError

    @staticmethod
    def status_of(payload: Dict[str, Any]) -> str:
        return str(_attributes(payload).get("status") or "")

    def _body(self, filters: ExportFilters, **extra_attributes: Any) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {
            "formats": ["csv"],
            "columns": list(EXPORT_COLUMNS),
            "dataset": "issues",
            "filters": filters.as_request_filters(
                environment_key=self.environment_filter_key,
                lifecycle_key=self.lifecycle_filter_key,
            ),
        }
        attributes.update(extra_attributes)
        return {"data": {"type": self.resource_type, "attributes": attributes}}


class OrgExportApi(ExportApi):
    """Organization-scoped export; the job belongs to the first requested org."""

    def export_request(self, filters: ExportFilters) -> Tuple[str, str, Dict[str, Any]]:
        if not filters.orgs:
            raise ConfigurationError("No organizations specified for export.")
        org_id = filters.orgs[0]
        url = f"{self.base_url}/rest/orgs/{org_id}/export?version={EXPORT_API_VERSION}"
        return url, org_id, self._body(filters)

    def status_url(self, job: ExportJob) -> str:
        return (
            f"{self.base_url}/rest/orgs/{job.scope_id}/jobs/export/{job.export_id}"
            f"?version={EXPORT_API_VERSION}"
        )

    def results_url(self, job: ExportJob) -> Optional[str]:
        return (
            f"{self.base_url}/rest/orgs/{job.scope_id}/export/{job.export_id}"
            f"?version={EXPORT_API_VERSION}"
        )

    def file_urls(self, payload: Dict[str, Any]) -> List[str]:
        results = _attributes(payload).get("results") or []
        if not isinstance(results, list):
            return []
        return [item["url"] for item in results if isinstance(item, dict) and item.get("url")]


class GroupExportApi(ExportApi):
    """Group-scoped export; finished jobs carry ``results.files`` inline."""

    resource_type = "export"
    environment_filter_key = "project_environment"
    lifecycle_filter_key = "project_lifecycle"

    def export_request(self, filters: ExportFilters) -> Tuple[str, str, Dict[str, Any]]:
        if not filters.orgs:
            raise ConfigurationError("No organizations specified for export.")
        if not self.group_id:
            raise ConfigurationError("SNYK_GROUP_ID is required for group-scoped exports.")
        url = f"{self.base_url}/rest/groups/{self.group_id}/exports?version={EXPORT_API_VERSION}"
        return url, self.group_id, self._body(filters, destination={"type": "snyk"})

    def status_url(self, job: ExportJob) -> str:
        return (
            f"{self.base_url}/rest/groups/{job.scope_id}/exports/{job.export_id}"
            f"?version={EXPORT_API_VERSION}"
        )

    def results_url(self, job: ExportJob) -> Optional[str]:
        return None

    def file_urls(self, payload: Dict[str, Any]) -> List[str]:
        results = _attributes(payload).get("results") or {}
        files = results.get("files") if isinstance(results, dict) else None
        if not isinstance(files, list):
            return []
        return [item["url"] for item in files if isinstance(item, dict) and item.get("url")]


def _attributes(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return {}
    attributes = data.get("attributes")
    return attributes if isinstance(attributes, dict) else {}


def build_export_api(scope: str, base_url: str, group_id: Optional[str] = None) -> ExportApi:
    if scope == "group":
        return GroupExportApi(base_url, group_id)
    return OrgExportApi(base_url, group_id)
