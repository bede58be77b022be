from __future__ import annotations

import io
import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import requests

# Ensure src/ is importable without an editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from backend.compliance_dashboard.configuration import DashboardSettings  # noqa: E402

BASE_URL = "https://api.example.test"


class _Raw(io.BytesIO):
    decode_content = False


def make_response(status: int = 200, json_body: Any = None, text: Optional[str] = None) -> requests.Response:
    """Build a real ``requests.Response`` without touching the network."""
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
    elif isinstance(text, bytes):
        content = text
    else:
        content = (text or "").encode("utf-8")
    response = requests.Response()
    response.status_code = status
    response._content = content
    response.raw = _Raw(content)
    response.encoding = "utf-8"
    return response


Handler = Callable[[str, str, Dict[str, Any]], requests.Response]


class FakeSession:
    """Stand-in for ``requests.Session`` that routes every call to ``handler``."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.headers: Dict[str, str] = {}
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def close(self) -> None:
        self.closed = True


def routed(routes: Dict[str, Any]) -> Handler:
    """
    Handler answering by URL substring.

    A route value is either a response or a list of responses served in
    order (the last one repeats).
    """

    def _handler(method: str, url: str, kwargs: Dict[str, Any]) -> requests.Response:
        for fragment, answer in routes.items():
            if fragment in url:
                if isinstance(answer, list):
                    return answer.pop(0) if len(answer) > 1 else answer[0]
                return answer
        raise AssertionError(f"Unexpected request {method} {url}")

    return _handler


@pytest.fixture
def settings() -> DashboardSettings:
    return DashboardSettings(
        api_token="test-token",
        group_id="group-1",
        api_base_url=BASE_URL,
        poll_interval_seconds=0.01,
        poll_timeout_seconds=2.0,
        http_timeout_seconds=5.0,
    )


SAMPLE_CSV = (
    "ISSUE_SEVERITY,PROJECT_NAME,PROJECT_ENVIRONMENTS,COMPUTED_FIXABILITY\n"
    "critical,proj1,env1,fixable\n"
    "high,proj1,env1,\n"
    "critical,proj2,env2,fixable\n"
)
