"""
NIS2 compliance dashboard backend.

Drives the Snyk issues export (organization discovery, export start, polling)
and folds the exported CSV into the aggregates shown by the dashboard UI.
"""

from .aggregator import (  # noqa: F401
    ColumnMap,
    DashboardAccumulator,
    aggregate_csv,
    aggregate_rows,
    fetch_and_aggregate,
    fold_row,
)
from .client import ExportClient  # noqa: F401
from .configuration import DashboardSettings  # noqa: F401
from .errors import (  # noqa: F401
    ConfigurationError,
    DashboardError,
    ExportFailedError,
    PollTimeoutError,
    RequestCancelledError,
    SchemaError,
    UpstreamError,
)
from .filters import build_filters  # noqa: F401
from .models import (  # noqa: F401
    DashboardData,
    ExportFilters,
    ExportJob,
    ExportJobState,
    ProjectInfo,
)
from .providers import ExportApi, GroupExportApi, OrgExportApi  # noqa: F401
from .service import ComplianceDashboardService  # noqa: F401
