"""Async Freshdesk REST API client."""

import base64
import logging
import re
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from .agents import AgentDirectory
from .config import FreshdeskConfig
from .models import (
    Agent,
    Contact,
    Conversation,
    FreshdeskError,
    InvalidReferenceError,
    Lookup,
    RemoteApiError,
    SatisfactionRating,
    SearchPage,
    Ticket,
    TimeEntry,
    TransportError,
)

logger = logging.getLogger(__name__)

M = TypeVar("M")

MAX_PER_PAGE = 100

# Freshdesk accepts any password with an API key as the username
API_KEY_PASSWORD = "X"  # noqa: S105

TICKET_URL_PATTERNS = (
    re.compile(r"/a/tickets/([0-9]+)"),
    re.compile(r"/helpdesk/tickets/([0-9]+)"),
    re.compile(r"/tickets/([0-9]+)"),
)

_TICKET = TypeAdapter(Ticket)
_TICKETS = TypeAdapter(list[Ticket])
_SEARCH_PAGE = TypeAdapter(SearchPage)
_CONVERSATIONS = TypeAdapter(list[Conversation])
_TIME_ENTRIES = TypeAdapter(list[TimeEntry])
_RATINGS = TypeAdapter(list[SatisfactionRating])
_CONTACT = TypeAdapter(Contact)
_AGENT = TypeAdapter(Agent)
_AGENTS = TypeAdapter(list[Agent])


def parse_ticket_id(reference: str) -> int:
    """Extract a ticket ID from a bare ID or a Freshdesk ticket URL.

    Args:
        reference: "12345", "https://acme.freshdesk.com/a/tickets/12345", ...

    Returns:
        The ticket ID

    Raises:
        InvalidReferenceError: If no ID can be found
    """
    stripped = reference.strip()
    if re.fullmatch(r"-?[0-9]+", stripped) and str(int(stripped)) == stripped:
        return int(stripped)

    for pattern in TICKET_URL_PATTERNS:
        if match := pattern.search(reference):
            return int(match.group(1))

    raise InvalidReferenceError(reference)


class FreshdeskClient:
    """Read-only client for the Freshdesk v2 API.

    One ``httpx.AsyncClient`` is shared by all calls. Nothing is retried: every
    failure reaches the caller as a ``FreshdeskError`` subclass.
    """

    def __init__(
        self,
        config: FreshdeskConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            config: Account domain and API key
            transport: Optional httpx transport (tests pass a MockTransport)
            clock: Monotonic clock used by the agent cache
        """
        self.config = config
        token = base64.b64encode(f"{config.api_key}:{API_KEY_PASSWORD}".encode()).decode("ascii")
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"Authorization": f"Basic {token}", "Content-Type": "application/json"},
            transport=transport,
        )
        self.agents = AgentDirectory(self, ttl=config.agent_cache_ttl, clock=clock)

    async def __aenter__(self) -> "FreshdeskClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._http.aclose()

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Issue one authenticated API call and return the decoded JSON.

        Raises:
            RemoteApiError: On a non-2xx response
            TransportError: If the request fails or the body is not JSON
        """
        logger.debug("%s %s %s", method, path, params or "")
        try:
            response = await self._http.request(method, path, json=body, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if not response.is_success:
            raise RemoteApiError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Malformed JSON from {path}: {e}") from e

    async def _get_as(self, adapter: TypeAdapter[M], path: str, **params: Any) -> M:
        """GET a resource and validate it with the given adapter."""
        data = await self.request(path, params=params or None)
        try:
            return adapter.validate_python(data)
        except ValidationError as e:
            raise TransportError(f"Unexpected response shape from {path}: {e}") from e

    # Required resources: failures propagate

    async def get_ticket(self, ticket_id: int) -> Ticket:
        return await self._get_as(_TICKET, f"/tickets/{ticket_id}", include="stats")

    async def get_conversations(self, ticket_id: int) -> list[Conversation]:
        return await self._get_as(_CONVERSATIONS, f"/tickets/{ticket_id}/conversations")

    async def get_agent(self, agent_id: int) -> Agent:
        return await self._get_as(_AGENT, f"/agents/{agent_id}")

    async def list_agents(self) -> list[Agent]:
        return await self._get_as(_AGENTS, "/agents")

    async def search_tickets(self, query: str, page: int = 1) -> list[Ticket]:
        """Run a ticket search and return one page of results.

        Args:
            query: Freshdesk query language, e.g. '("refund") AND status:2'
            page: Result page (1-based)
        """
        result = await self._get_as(_SEARCH_PAGE, "/search/tickets", query=query, page=page)
        return result.results

    async def list_tickets(self, page: int = 1, per_page: int = 30) -> list[Ticket]:
        """List one page of tickets, most recently updated first."""
        return await self._get_as(
            _TICKETS,
            "/tickets",
            order_by="updated_at",
            order_type="desc",
            page=page,
            per_page=min(per_page, MAX_PER_PAGE),
        )

    # Optional resources: some plans lack these features, failures are tolerated

    async def get_time_entries(self, ticket_id: int) -> Lookup[list[TimeEntry]]:
        try:
            entries = await self._get_as(_TIME_ENTRIES, f"/tickets/{ticket_id}/time_entries")
        except FreshdeskError as e:
            logger.warning("Time entries unavailable for ticket %s: %s", ticket_id, e)
            return Lookup.unavailable(str(e))
        return Lookup.found(entries)

    async def get_satisfaction_rating(self, ticket_id: int) -> Lookup[SatisfactionRating]:
        try:
            ratings = await self._get_as(_RATINGS, f"/tickets/{ticket_id}/satisfaction_ratings")
        except FreshdeskError as e:
            logger.warning("Satisfaction rating unavailable for ticket %s: %s", ticket_id, e)
            return Lookup.unavailable(str(e))
        if not ratings:
            return Lookup.unavailable("no survey response")
        return Lookup.found(ratings[0])

    async def get_contact(self, contact_id: int) -> Lookup[Contact]:
        try:
            contact = await self._get_as(_CONTACT, f"/contacts/{contact_id}")
        except FreshdeskError as e:
            logger.warning("Contact %s unavailable: %s", contact_id, e)
            return Lookup.unavailable(str(e))
        return Lookup.found(contact)

