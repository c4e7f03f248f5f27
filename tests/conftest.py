"""Shared fixtures for the Freshdesk MCP tests."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from mcp_freshdesk.client import FreshdeskClient
from mcp_freshdesk.config import FreshdeskConfig


class FakeFreshdesk:
    """In-memory stand-in for the Freshdesk API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, payload: Any = None, status: int = 200) -> None:
        self.routes[path] = (status, payload)

    def fail(self, path: str, error: Exception) -> None:
        self.routes[path] = (0, error)

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if self._path(r) == path)

    def calls_starting_with(self, prefix: str) -> int:
        return sum(1 for r in self.requests if self._path(r).startswith(prefix))

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if self._path(r) == path][-1]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/api/v2")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(self._path(request))
        if route is None:
            return httpx.Response(404, text="Not Found")
        status, payload = route
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config() -> FreshdeskConfig:
    return FreshdeskConfig(domain="acme", api_key="secret-key")


@pytest.fixture
def fake_api() -> FakeFreshdesk:
    return FakeFreshdesk()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(config, fake_api, clock) -> FreshdeskClient:
    """FreshdeskClient wired to the fake API."""
    return FreshdeskClient(config, transport=httpx.MockTransport(fake_api.handler), clock=clock)


@pytest.fixture
def ticket_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture to create ticket payloads with custom values."""

    def _make_ticket(**kwargs: Any) -> dict[str, Any]:
        base_ticket = {
            "id": 123,
            "subject": "Refund not received",
            "description": "<div>I was promised a refund</div>",
            "description_text": "I was promised a refund",
            "status": 2,
            "priority": 3,
            "source": 1,
            "type": "Question",
            "requester_id": 501,
            "responder_id": 11,
            "email": "customer@example.com",
            "tags": ["billing"],
            "is_escalated": False,
            "due_by": "2024-01-03T00:00:00Z",
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-02T00:00:00Z",
            "custom_fields": {"cf_order": "A-1", "cf_empty": None},
            "attachments": [
                {"id": 1, "name": "receipt.pdf", "size": 2048, "attachment_url": "https://files/receipt.pdf"}
            ],
        }
        base_ticket.update(kwargs)
        return base_ticket

    return _make_ticket


@pytest.fixture
def agent_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture to create agent payloads."""

    def _make_agent(agent_id: int, name: str, email: str | None = None) -> dict[str, Any]:
        return {
            "id": agent_id,
            "available": True,
            "occasional": False,
            "group_ids": [],
            "role_ids": [1],
            "contact": {"name": name, "email": email or f"{name.split()[0].lower()}@acme.com", "active": True},
        }

    return _make_agent


@pytest.fixture
def sample_conversations() -> list[dict[str, Any]]:
    return [
        {
            "id": 1,
            "body": "<p>Any update?</p>",
            "body_text": "Any update?",
            "incoming": True,
            "private": False,
            "from_email": "customer@example.com",
            "created_at": "2024-01-01T01:00:00Z",
        },
        {
            "id": 2,
            "body": "<p>Checking with finance</p>",
            "body_text": None,
            "incoming": False,
            "private": True,
            "from_email": "john@acme.com",
            "created_at": "2024-01-01T02:00:00Z",
        },
    ]


@pytest.fixture
def decorator_capturer():
    """Capture functions registered through a FastMCP decorator such as ``mcp.tool``.

    Returns a factory giving ``(captured, replacement_decorator)``; assign the
    replacement to ``server.mcp.tool`` and re-run the setup method.
    """

    def _capture(_original: Callable[..., Any]) -> tuple[dict[str, Callable[..., Any]], Callable[..., Any]]:
        captured: dict[str, Callable[..., Any]] = {}

        def capture(*_args: Any, **_kwargs: Any) -> Callable[..., Any]:
            def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
                captured[func.__name__] = func
                return func

            return decorator

        return captured, capture

    return _capture
