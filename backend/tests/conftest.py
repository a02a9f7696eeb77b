"""
Pytest configuration and fixtures
"""
import asyncio
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

BASE_URL = "http://cds.test/cds-hooks"

# Settings are cached on first use: pin the environment before anything imports them
os.environ["CDS_BASE_URL"] = BASE_URL
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("CDS_DISABLED", "false")

from cds_hooks.core.cache import TTLCache  # noqa: E402
from cds_hooks.core.cds_client import CDSHooksHttpClient  # noqa: E402
from cds_hooks.services.feedback_reporter import FeedbackReporter  # noqa: E402
from cds_hooks.services.hook_executor import HookExecutor  # noqa: E402
from cds_hooks.services.hook_manager import CDSHookManager  # noqa: E402
from cds_hooks.services.service_catalog import ServiceCatalog  # noqa: E402


class FakeClock:
    """Controllable time source for TTL caches"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_card(summary: str, **fields: Any) -> Dict[str, Any]:
    """Card as a service would return it"""
    card = {"summary": summary, "indicator": "info", "source": {"label": "Test source"}}
    card.update(fields)
    return card


class FakeCDSServer:
    """
    In-memory CDS Hooks server behind httpx.MockTransport

    ``responses[service_id]`` is a JSON body, an httpx.Response, or a
    (possibly async) callable taking the request body and returning either.
    """

    def __init__(self):
        self.services: List[Dict[str, Any]] = []
        self.responses: Dict[str, Any] = {}
        self.discovery_status = 200
        self.feedback_status = 200
        self.requests: List[Tuple[str, str, Any]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add_service(self, service_id: str, hook: str, title: Optional[str] = None, cards: Optional[List[Dict[str, Any]]] = None) -> None:
        self.services.append({
            "id": service_id,
            "hook": hook,
            "title": title or service_id.replace("-", " ").title(),
            "description": f"{service_id} for tests",
        })
        if cards is not None:
            self.responses[service_id] = {"cards": cards}

    def calls(self, method: str, path: str) -> List[Any]:
        """Bodies of recorded requests to ``path`` (relative to /cds-services)"""
        return [body for m, p, body in self.requests if m == method and p == path]

    def hook_calls(self, service_id: str) -> List[Any]:
        return self.calls("POST", f"/{service_id}")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path.split("/cds-services", 1)[1]
        self.requests.append((request.method, path, body))

        if path == "":
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status, json={"error": "unavailable"})
            return httpx.Response(200, json={"services": self.services})

        parts = path.strip("/").split("/")
        service_id = parts[0]
        if len(parts) == 2 and parts[1] == "feedback":
            return httpx.Response(self.feedback_status)

        response = self.responses.get(service_id, {"cards": []})
        if callable(response):
            response = response(body)
            if asyncio.iscoroutine(response):
                response = await response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cds_server() -> FakeCDSServer:
    return FakeCDSServer()


@pytest.fixture
def http_client(cds_server) -> CDSHooksHttpClient:
    return CDSHooksHttpClient(base_url=BASE_URL, transport=cds_server.transport)


@pytest.fixture
def make_manager(http_client, fake_clock) -> Callable[..., CDSHookManager]:
    """Factory for managers wired to the fake server and the fake clock"""

    def _make(timeout: float = 1.0, **kwargs: Any) -> CDSHookManager:
        kwargs.setdefault("user_id", "dr-test")
        kwargs.setdefault("disabled", False)
        kwargs.setdefault("debounce_delay_ms", 20)
        return CDSHookManager(
            http=http_client,
            catalog=ServiceCatalog(http_client, cache=TTLCache(300, clock=fake_clock)),
            executor=HookExecutor(http_client, cache=TTLCache(30, clock=fake_clock), timeout=timeout),
            reporter=FeedbackReporter(http_client),
            **kwargs,
        )

    return _make
