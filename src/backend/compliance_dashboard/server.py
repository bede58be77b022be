from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from .configuration import DashboardSettings
from .errors import DashboardError
from .filters import build_filters
from .logging_setup import configure_logging
from .models import DashboardData, ExportFilters
from .service import ComplianceDashboardService

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to build compliance dashboard data from Snyk"
DISCONNECT_CHECK_SECONDS = 0.5

settings = DashboardSettings.from_env()
configure_logging(settings.log_level, settings.log_json)

app = FastAPI(title="NIS2 Compliance Dashboard API", version="0.1.0")

ServiceFactory = Callable[[threading.Event], ComplianceDashboardService]


def get_service_factory() -> ServiceFactory:
    def _factory(cancel_event: threading.Event) -> ComplianceDashboardService:
        return ComplianceDashboardService(settings, cancel_event=cancel_event)

    return _factory


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/data", response_model=None)
async def dashboard_data(
    request: Request,
    orgs: Optional[str] = Query(None, description="Comma separated organization IDs"),
    introduced_from: Optional[str] = Query(None, description="Day offset (e.g. -30) or date"),
    introduced_to: Optional[str] = Query(None),
    updated_from: Optional[str] = Query(None),
    updated_to: Optional[str] = Query(None),
    env: Optional[str] = Query(None, description="Comma separated project environments"),
    lifecycle: Optional[str] = Query(None, description="Comma separated project lifecycles"),
    severities: Optional[str] = Query(None, description="Comma separated severities"),
    service_factory: ServiceFactory = Depends(get_service_factory),
) -> Any:
    filters = build_filters(
        orgs=orgs,
        introduced_from=introduced_from,
        introduced_to=introduced_to,
        updated_from=updated_from,
        updated_to=updated_to,
        env=env,
        lifecycle=lifecycle,
        severities=severities,
    )
    logger.info("Starting Snyk analytics export (orgs=%d)", len(filters.orgs))

    cancel_event = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        data = await run_in_threadpool(_build_dashboard, service_factory, filters, cancel_event)
    except DashboardError as exc:
        logger.error("Dashboard pipeline failed: %s: %s", type(exc).__name__, exc)
        return PlainTextResponse(GENERIC_FAILURE_MESSAGE, status_code=500)
    except Exception:  # pragma: no cover - never leak internals to the client
        logger.exception("Unexpected failure while building dashboard data")
        return PlainTextResponse(GENERIC_FAILURE_MESSAGE, status_code=500)
    finally:
        cancel_event.set()
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    return data.as_dict()


def _build_dashboard(
    service_factory: ServiceFactory,
    filters: ExportFilters,
    cancel_event: threading.Event,
) -> DashboardData:
    service = service_factory(cancel_event)
    try:
        return service.build(filters)
    finally:
        service.close()


async def _watch_disconnect(request: Request, cancel_event: threading.Event) -> None:
    """Set ``cancel_event`` once the caller goes away so polling stops early."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.warning("Client disconnected, cancelling export")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_SECONDS)
