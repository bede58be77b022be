"""
Environment-sourced settings for the compliance dashboard backend.
"""

from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from .errors import ConfigurationError

DEFAULT_API_BASE_URL = "https://api.snyk.io"


class DashboardSettings(BaseModel):
    api_token: Optional[str] = None
    """Snyk API token sent as ``Authorization: token <value>``"""

    group_id: Optional[str] = None
    """Group whose organizations are exported when a request names none"""

    api_base_url: str = DEFAULT_API_BASE_URL
    """REST base URL; regional tenants use e.g. https://api.eu.snyk.io"""

    port: int = 8080

    export_scope: Literal["org", "group"] = "org"
    """Which export API flavour to drive (see providers.py)"""

    poll_interval_seconds: float = 5.0
    poll_timeout_seconds: float = 300.0
    http_timeout_seconds: float = 60.0

    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def require_token(self) -> str:
        if not self.api_token:
            raise ConfigurationError("SNYK_TOKEN is not configured.")
        return self.api_token

    def require_group_id(self) -> str:
        if not self.group_id:
            raise ConfigurationError("SNYK_GROUP_ID is not configured.")
        return self.group_id

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "DashboardSettings":
        if dotenv:
            load_dotenv()
        defaults = cls()
        scope = os.getenv("SNYK_EXPORT_SCOPE", defaults.export_scope).strip().lower()
        if scope not in ("org", "group"):
            scope = defaults.export_scope
        return cls(
            api_token=os.getenv("SNYK_TOKEN") or None,
            group_id=os.getenv("SNYK_GROUP_ID") or None,
            api_base_url=os.getenv("SNYK_API_BASE_URL", defaults.api_base_url),
            port=_env_int("PORT", defaults.port),
            export_scope=scope,
            poll_interval_seconds=_env_float("SNYK_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds),
            poll_timeout_seconds=_env_float("SNYK_POLL_TIMEOUT_SECONDS", defaults.poll_timeout_seconds),
            http_timeout_seconds=_env_float("SNYK_HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            log_json=_env_bool("LOG_JSON", defaults.log_json),
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default
