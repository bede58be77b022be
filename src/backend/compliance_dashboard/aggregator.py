from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, TextIO

import requests

from .errors import SchemaError, UpstreamError
from .models import DashboardData, ProjectInfo

logger = logging.getLogger(__name__)

SEVERITY_COLUMN = "ISSUE_SEVERITY"
PROJECT_COLUMN = "PROJECT_NAME"
ENVIRONMENTS_COLUMN = "PROJECT_ENVIRONMENTS"
FIXABILITY_COLUMN = "COMPUTED_FIXABILITY"

MISSING_ENVIRONMENT_COLUMN_BUCKET = "N/A"
EMPTY_ENVIRONMENT_BUCKET = "undefined"
TOP_PROJECTS_LIMIT = 5


@dataclass(frozen=True)
class ColumnMap:
    """Positions of the columns the fold reads, resolved once from the header."""

    width: int
    severity: int
    project: int
    environments: Optional[int] = None
    fixability: Optional[int] = None

    @classmethod
    def from_header(cls, header: Sequence[str]) -> "ColumnMap":
        index: Dict[str, int] = {}
        for position, name in enumerate(header):
            index.setdefault(name, position)

        missing = [name for name in (SEVERITY_COLUMN, PROJECT_COLUMN) if name not in index]
        if missing:
            raise SchemaError(f"CSV export is missing required column(s): {', '.join(missing)}")

        columns = cls(
            width=len(header),
            severity=index[SEVERITY_COLUMN],
            project=index[PROJECT_COLUMN],
            environments=index.get(ENVIRONMENTS_COLUMN),
            fixability=index.get(FIXABILITY_COLUMN),
        )
        if columns.environments is None:
            logger.warning("CSV has no %s column; all issues count as %s", ENVIRONMENTS_COLUMN, MISSING_ENVIRONMENT_COLUMN_BUCKET)
        if columns.fixability is None:
            logger.warning("CSV has no %s column; fixable critical issues are not counted", FIXABILITY_COLUMN)
        return columns


@dataclass
class DashboardAccumulator:
    """
    Running totals threaded through ``fold_row``.

    ``projects`` keeps insertion order, which is the order in which each
    project first appeared in the export; ranking ties fall back to it.
    """

    issues_by_severity: Dict[str, int] = field(default_factory=dict)
    issues_by_environment: Dict[str, int] = field(default_factory=dict)
    fixable_critical_issues: int = 0
    projects: Dict[str, ProjectInfo] = field(default_factory=dict)
    rows_folded: int = 0
    rows_skipped: int = 0

    def finalize(self, limit: int = TOP_PROJECTS_LIMIT) -> DashboardData:
        ranked = sorted(self.projects.values(), key=lambda project: project.risk_key, reverse=True)
        return DashboardData(
            issues_by_severity=dict(self.issues_by_severity),
            issues_by_environment=dict(self.issues_by_environment),
            fixable_critical_issues=self.fixable_critical_issues,
            top5_riskiest_projects=tuple(
                ProjectInfo(p.name, p.critical_issue_count, p.high_issue_count) for p in ranked[:limit]
            ),
        )


def split_environments(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _bump(counter: Dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


def fold_row(acc: DashboardAccumulator, row: Sequence[str], columns: ColumnMap) -> DashboardAccumulator:
    """
    Fold one data row into ``acc``.

    Rows with fewer fields than the header are skipped as a whole so they can
    never contribute to some counters and not others.
    """

    if len(row) < columns.width:
        acc.rows_skipped += 1
        logger.warning("Skipping malformed CSV row with %d of %d fields", len(row), columns.width)
        return acc

    severity = row[columns.severity].strip().lower()
    project_name = row[columns.project]

    if severity:
        _bump(acc.issues_by_severity, severity)

    if columns.environments is None:
        _bump(acc.issues_by_environment, MISSING_ENVIRONMENT_COLUMN_BUCKET)
    else:
        environments = split_environments(row[columns.environments])
        for environment in environments:
            _bump(acc.issues_by_environment, environment)
        if not environments:
            _bump(acc.issues_by_environment, EMPTY_ENVIRONMENT_BUCKET)

    if columns.fixability is not None and severity == "critical":
        if row[columns.fixability].strip().lower() == "fixable":
            acc.fixable_critical_issues += 1

    project = acc.projects.get(project_name)
    if project is None:
        project = acc.projects[project_name] = ProjectInfo(name=project_name)
    if severity == "critical":
        project.critical_issue_count += 1
    elif severity == "high":
        project.high_issue_count += 1

    acc.rows_folded += 1
    return acc


def _iter_records(reader: Iterator[List[str]]) -> Iterator[Optional[List[str]]]:
    """Yield parsed rows, or ``None`` for a row the CSV reader rejected."""
    while True:
        try:
            yield next(reader)
        except StopIteration:
            return
        except csv.Error as exc:
            logger.warning("Skipping unparsable CSV row: %s", exc)
            yield None


def aggregate_rows(rows: Iterable[Sequence[str]]) -> DashboardData:
    """Aggregate an iterable of rows whose first element is the header."""
    iterator = iter(rows)
    header = next(iterator, None)
    if not header:
        raise SchemaError("CSV export is empty; no header row found")

    columns = ColumnMap.from_header(header)
    acc = DashboardAccumulator()
    for row in iterator:
        if row is None:
            acc.rows_skipped += 1
            continue
        if not row:
            continue
        fold_row(acc, row, columns)

    logger.info("Aggregated %d CSV rows (%d skipped, %d projects)", acc.rows_folded, acc.rows_skipped, len(acc.projects))
    return acc.finalize()


def aggregate_csv(stream: TextIO) -> DashboardData:
    reader = csv.reader(stream)
    try:
        header = next(reader, None)
    except csv.Error as exc:
        raise SchemaError(f"CSV header could not be parsed: {exc}") from exc
    if header is None:
        return aggregate_rows(())

    def _rows() -> Iterator[Optional[Sequence[str]]]:
        yield header
        yield from _iter_records(reader)

    return aggregate_rows(_rows())


def fetch_and_aggregate(
    file_url: str,
    session: Optional[requests.Session] = None,
    timeout: float = 60.0,
) -> DashboardData:
    """
    Download the exported CSV and aggregate it while streaming.

    The file URL is pre-signed, so the request goes out without the API
    token; pass a plain session (not the API client's).
    """

    http = session or requests.Session()
    try:
        response = http.get(file_url, stream=True, timeout=timeout)
    except requests.RequestException as exc:
        raise UpstreamError(f"Downloading the export file failed: {exc}") from exc

    with response:
        if not 200 <= response.status_code < 300:
            raise UpstreamError("Export file download was rejected", status_code=response.status_code, body=response.text)
        response.raw.decode_content = True
        # Undecodable bytes only affect their own row.
        stream = io.TextIOWrapper(response.raw, encoding="utf-8-sig", errors="replace", newline="")
        try:
            return aggregate_csv(stream)
        except (requests.RequestException, OSError) as exc:
            raise UpstreamError(f"Reading the export file failed: {exc}") from exc
