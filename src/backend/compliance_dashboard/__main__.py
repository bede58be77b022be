"""Run the dashboard API: ``python -m backend.compliance_dashboard``."""
from __future__ import annotations

import logging

import uvicorn

from .configuration import DashboardSettings
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = DashboardSettings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    if not settings.api_token or not settings.group_id:
        logger.warning("SNYK_TOKEN and SNYK_GROUP_ID should be set; /api/data will fail without them")
    logger.info("Backend server starting on port %d (snyk_api_url=%s)", settings.port, settings.api_base_url)
    uvicorn.run("backend.compliance_dashboard.server:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
