from __future__ import annotations

import io

import pytest

from backend.compliance_dashboard.aggregator import (
    ColumnMap,
    DashboardAccumulator,
    aggregate_csv,
    fetch_and_aggregate,
    fold_row,
)
from backend.compliance_dashboard.errors import SchemaError, UpstreamError
from conftest import SAMPLE_CSV, FakeSession, make_response

HEADER = "ISSUE_SEVERITY,PROJECT_NAME,PROJECT_ENVIRONMENTS,COMPUTED_FIXABILITY\n"


def _aggregate(text: str):
    return aggregate_csv(io.StringIO(text))


def test_sample_export_is_aggregated():
    data = _aggregate(SAMPLE_CSV)

    assert data.issues_by_severity == {"critical": 2, "high": 1}
    assert data.issues_by_environment == {"env1": 2, "env2": 1}
    assert data.fixable_critical_issues == 2
    assert data.as_dict()["top5RiskiestProjects"] == [
        {"name": "proj1", "criticalIssueCount": 1, "highIssueCount": 1},
        {"name": "proj2", "criticalIssueCount": 1, "highIssueCount": 0},
    ]


def test_severity_counts_cover_every_row_with_a_severity():
    text = HEADER + "critical,a,prod,\n,b,prod,\nlow,c,prod,\nmedium,a,,\n,a,prod,\n"
    data = _aggregate(text)

    assert sum(data.issues_by_severity.values()) == 3
    assert "" not in data.issues_by_severity


def test_short_row_is_the_same_as_a_missing_row():
    full = HEADER + "critical,proj1,env1,fixable\nhigh,proj2,env2,\n"
    truncated = full + "critical,proj3\n"

    assert _aggregate(truncated) == _aggregate(full)


def test_row_with_extra_fields_is_kept():
    data = _aggregate(HEADER + "high,proj1,env1,,unexpected\n")
    assert data.issues_by_severity == {"high": 1}


def test_fixable_critical_requires_both_conditions():
    text = HEADER + (
        "critical,a,prod,fixable\n"
        "critical,a,prod,not-fixable\n"
        "high,a,prod,fixable\n"
        "Critical,b,prod,Fixable\n"
    )
    assert _aggregate(text).fixable_critical_issues == 2


def test_severity_labels_are_normalized_to_lowercase():
    data = _aggregate(HEADER + "Critical,a,prod,\nCRITICAL,b,prod,\n high ,b,prod,\n")

    assert data.issues_by_severity == {"critical": 2, "high": 1}
    assert [p.name for p in data.top5_riskiest_projects] == ["b", "a"]


def test_environment_lists_are_split_and_trimmed():
    text = HEADER + 'low,a,"prod, staging",\nlow,b,prod,\n'
    data = _aggregate(text)
    assert data.issues_by_environment == {"prod": 2, "staging": 1}


def test_empty_environment_counts_as_undefined():
    data = _aggregate(HEADER + "low,a,,\nlow,b,\" , \",\n")
    assert data.issues_by_environment == {"undefined": 2}


def test_missing_environment_column_uses_single_bucket():
    text = "ISSUE_SEVERITY,PROJECT_NAME\ncritical,a\nhigh,b\nlow,c\n"
    data = _aggregate(text)

    assert data.issues_by_environment == {"N/A": 3}
    assert len(data.issues_by_environment) == 1


def test_missing_fixability_column_skips_fixable_counting():
    text = "ISSUE_SEVERITY,PROJECT_NAME,PROJECT_ENVIRONMENTS\ncritical,a,prod\n"
    data = _aggregate(text)

    assert data.fixable_critical_issues == 0
    assert data.issues_by_severity == {"critical": 1}


def test_missing_severity_column_fails_fast():
    with pytest.raises(SchemaError, match="ISSUE_SEVERITY"):
        _aggregate("PROJECT_NAME,PROJECT_ENVIRONMENTS\nproj1,env1\n")


def test_missing_project_column_fails_fast():
    with pytest.raises(SchemaError, match="PROJECT_NAME"):
        _aggregate("ISSUE_SEVERITY\ncritical\n")


def test_empty_file_is_a_schema_error():
    with pytest.raises(SchemaError):
        _aggregate("")


def test_header_only_file_has_empty_aggregates():
    data = _aggregate(HEADER)

    assert data.issues_by_severity == {}
    assert data.issues_by_environment == {}
    assert data.fixable_critical_issues == 0
    assert list(data.top5_riskiest_projects) == []


def test_top_projects_are_ranked_and_truncated():
    rows = []
    counts = {"p1": (0, 3), "p2": (2, 0), "p3": (2, 5), "p4": (1, 1), "p5": (0, 0), "p6": (4, 0), "p7": (1, 2)}
    for name, (critical, high) in counts.items():
        rows += [f"critical,{name},prod,\n"] * critical
        rows += [f"high,{name},prod,\n"] * high
        rows.append(f"low,{name},prod,\n")
    data = _aggregate(HEADER + "".join(rows))

    top = data.top5_riskiest_projects
    assert len(top) == 5
    assert [p.name for p in top] == ["p6", "p3", "p2", "p7", "p4"]
    for first, second in zip(top, top[1:]):
        assert first.critical_issue_count > second.critical_issue_count or (
            first.critical_issue_count == second.critical_issue_count
            and first.high_issue_count >= second.high_issue_count
        )


def test_top_projects_length_matches_distinct_projects_below_limit():
    data = _aggregate(HEADER + "low,a,prod,\nlow,b,prod,\n")
    assert len(data.top5_riskiest_projects) == 2


def test_ties_keep_order_of_first_appearance():
    text = HEADER + "high,zeta,prod,\nhigh,alpha,prod,\ncritical,mid,prod,\nhigh,beta,prod,\n"
    data = _aggregate(text)

    assert [p.name for p in data.top5_riskiest_projects] == ["mid", "zeta", "alpha", "beta"]


def test_fold_row_threads_an_explicit_accumulator():
    columns = ColumnMap.from_header(["ISSUE_SEVERITY", "PROJECT_NAME", "PROJECT_ENVIRONMENTS", "COMPUTED_FIXABILITY"])
    acc = DashboardAccumulator()
    fold_row(acc, ["critical", "p", "prod", "fixable"], columns)
    fold_row(acc, ["high", "p"], columns)

    assert acc.rows_folded == 1
    assert acc.rows_skipped == 1
    assert acc.projects["p"].critical_issue_count == 1
    assert acc.finalize().fixable_critical_issues == 1


def test_fetch_and_aggregate_streams_the_download():
    session = FakeSession(lambda method, url, kwargs: make_response(text=("\ufeff" + SAMPLE_CSV).encode("utf-8")))

    data = fetch_and_aggregate("https://files.example.test/export.csv", session=session, timeout=3)

    assert data.fixable_critical_issues == 2
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://files.example.test/export.csv")
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == 3


def test_fetch_and_aggregate_rejects_failed_download():
    session = FakeSession(lambda method, url, kwargs: make_response(status=403, text="AccessDenied"))

    with pytest.raises(UpstreamError) as excinfo:
        fetch_and_aggregate("https://files.example.test/export.csv", session=session)
    assert excinfo.value.status_code == 403


def test_fetch_and_aggregate_survives_an_undecodable_row():
    body = (
        b"ISSUE_SEVERITY,PROJECT_NAME,PROJECT_ENVIRONMENTS,COMPUTED_FIXABILITY\n"
        b"critical,proj1,env1,fixable\n"
        b"high,caf\xe9-proj,env1,\n"
        b"critical,proj2,env2,fixable\n"
    )
    session = FakeSession(lambda method, url, kwargs: make_response(text=body))

    data = fetch_and_aggregate("https://files.example.test/export.csv", session=session)

    assert data.issues_by_severity == {"critical": 2, "high": 1}
    assert data.issues_by_environment == {"env1": 2, "env2": 1}
    assert data.fixable_critical_issues == 2
    assert [p.name for p in data.top5_riskiest_projects][:2] == ["proj1", "proj2"]
