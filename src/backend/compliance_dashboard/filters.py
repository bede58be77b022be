from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from .models import ExportFilters

EXPORT_DATE_FORMAT = "%Y-%m-%dT00:00:00Z"


def split_and_clean(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma separated value, trimming whitespace and dropping empty parts."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def resolve_date_param(raw: Optional[str], now: Optional[datetime] = None) -> str:
    """
    Resolve a date query parameter.

    An integer is a day offset relative to ``now`` (``-30`` is thirty days
    ago) and becomes midnight UTC of that day. Anything else is returned as
    given so callers may pass explicit ISO-8601 dates.
    """

    if raw is None:
        return ""
    value = raw.strip()
    if not value:
        return ""
    try:
        days = int(value)
    except ValueError:
        return value
    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return (reference.astimezone(timezone.utc) + timedelta(days=days)).strftime(EXPORT_DATE_FORMAT)


def build_filters(
    orgs: Optional[str] = None,
    introduced_from: Optional[str] = None,
    introduced_to: Optional[str] = None,
    updated_from: Optional[str] = None,
    updated_to: Optional[str] = None,
    env: Optional[str] = None,
    lifecycle: Optional[str] = None,
    severities: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ExportFilters:
    return ExportFilters(
        orgs=split_and_clean(orgs),
        introduced_from=resolve_date_param(introduced_from, now),
        introduced_to=resolve_date_param(introduced_to, now),
        updated_from=resolve_date_param(updated_from, now),
        updated_to=resolve_date_param(updated_to, now),
        environments=split_and_clean(env),
        lifecycles=split_and_clean(lifecycle),
        severities=split_and_clean(severities),
    )
