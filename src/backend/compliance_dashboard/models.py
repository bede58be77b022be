from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ExportFilters:
    """
    Filters forwarded to the export API for one dashboard request.

    Date bounds are already resolved: relative day offsets coming from the
    query string have been turned into absolute UTC timestamps by
    ``filters.build_filters`` and every other value passes through untouched.
    Empty strings/tuples mean "no filter".
    """

    orgs: Tuple[str, ...] = ()
    introduced_from: str = ""
    introduced_to: str = ""
    updated_from: str = ""
    updated_to: str = ""
    environments: Tuple[str, ...] = ()
    lifecycles: Tuple[str, ...] = ()
    severities: Tuple[str, ...] = ()

    def with_orgs(self, orgs: Sequence[str]) -> "ExportFilters":
        return replace(self, orgs=tuple(orgs))

    def as_request_filters(
        self,
        environment_key: str = "environment",
        lifecycle_key: str = "lifecycle",
    ) -> Dict[str, Any]:
        """
        Translate into the ``filters`` object of the export request body.

        Empty ranges and lists are left out so the provider applies no
        restriction for them. The environment and lifecycle keys differ
        between export endpoints.
        """

        payload: Dict[str, Any] = {"orgs": list(self.orgs)}
        introduced = _date_range(self.introduced_from, self.introduced_to)
        if introduced:
            payload["introduced"] = introduced
        updated = _date_range(self.updated_from, self.updated_to)
        if updated:
            payload["updated"] = updated
        if self.environments:
            payload[environment_key] = list(self.environments)
        if self.lifecycles:
            payload[lifecycle_key] = list(self.lifecycles)
        if self.severities:
            payload["severities"] = list(self.severities)
        return payload


def _date_range(start: str, end: str) -> Dict[str, str]:
    bounds = {}
    if start:
        bounds["from"] = start
    if end:
        bounds["to"] = end
    return bounds


class ExportJobState(str, Enum):
    PENDING = "PENDING"
    FINISHED = "FINISHED"
    ERROR = "ERROR"
    TIMED_OUT = "TIMED_OUT"

    @classmethod
    def from_status(cls, status: Optional[str]) -> "ExportJobState":
        """Map a provider status string; anything non-terminal counts as pending."""
        normalized = (status or "").strip().upper()
        if normalized == cls.FINISHED.value:
            return cls.FINISHED
        if normalized == cls.ERROR.value:
            return cls.ERROR
        return cls.PENDING


@dataclass(frozen=True)
class ExportJob:
    """
    Handle on an asynchronous export.

    ``scope_id`` is the organization (org-scoped API) or group (group-scoped
    API) that owns the job; status and result URLs are built from it.
    """

    export_id: str
    scope_id: str


@dataclass
class ProjectInfo:
    name: str
    critical_issue_count: int = 0
    high_issue_count: int = 0

    @property
    def risk_key(self) -> Tuple[int, int]:
        return (self.critical_issue_count, self.high_issue_count)


@dataclass(frozen=True)
class DashboardData:
    issues_by_severity: Dict[str, int] = field(default_factory=dict)
    issues_by_environment: Dict[str, int] = field(default_factory=dict)
    fixable_critical_issues: int = 0
    top5_riskiest_projects: Sequence[ProjectInfo] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert into the JSON document consumed by the dashboard frontend.
        """

        return {
            "issuesBySeverity": dict(self.issues_by_severity),
            "issuesByEnvironment": dict(self.issues_by_environment),
            "fixableCriticalIssues": self.fixable_critical_issues,
            "top5RiskiestProjects": [
                {
                    "name": project.name,
                    "criticalIssueCount": project.critical_issue_count,
                    "highIssueCount": project.high_issue_count,
                }
                for project in self.top5_riskiest_projects
            ],
        }
