"""Time-bound cache of the Freshdesk agent directory."""

import logging
import time
from collections.abc import Callable
from typing import Protocol

from .config import DEFAULT_AGENT_CACHE_TTL
from .models import Agent, FreshdeskError, Lookup

logger = logging.getLogger(__name__)


class AgentSource(Protocol):
    """Remote side of the directory (implemented by FreshdeskClient)."""

    async def list_agents(self) -> list[Agent]: ...  # codacy: ignore E704

    async def get_agent(self, agent_id: int) -> Agent: ...  # codacy: ignore E704


class AgentDirectory:
    """Agent list cached for ``ttl`` seconds plus a by-id index.

    The by-id index is filled both by single-agent fetches and by list
    refreshes. Entries never expire on their own; a refresh overwrites the
    ones it returns and leaves the rest in place.

    Not safe for concurrent refreshes from several threads. Within one event
    loop every mutation happens between awaits.
    """

    def __init__(
        self,
        source: AgentSource,
        ttl: float = DEFAULT_AGENT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl
        self._clock = clock
        self._agents: list[Agent] | None = None
        self._expires_at = 0.0
        self._by_id: dict[int, Agent] = {}

    def is_expired(self) -> bool:
        """True when the list was never loaded or its TTL has elapsed."""
        return self._agents is None or self._clock() >= self._expires_at

    def get(self, agent_id: int) -> Agent | None:
        """Return an indexed agent without touching the network."""
        return self._by_id.get(agent_id)

    async def refresh(self) -> list[Agent]:
        """Fetch the full agent list and reindex it.

        Errors from the remote API propagate; the previous list stays in place.
        """
        agents = await self._source.list_agents()
        self._agents = agents
        self._expires_at = self._clock() + self._ttl
        for agent in agents:
            self._by_id[agent.id] = agent
        logger.debug("Agent directory refreshed with %d agent(s)", len(agents))
        return agents

    async def get_all_agents(self) -> list[Agent]:
        """Return the cached list, refreshing it first if expired."""
        if self._agents is not None and not self.is_expired():
            return self._agents
        return await self.refresh()

    async def get_agent_by_id(self, agent_id: int) -> Lookup[Agent]:
        """Look up one agent, fetching and indexing it on a miss.

        A failed fetch is reported as unavailable rather than raised.
        """
        cached = self._by_id.get(agent_id)
        if cached is not None:
            return Lookup.found(cached)

        try:
            agent = await self._source.get_agent(agent_id)
        except FreshdeskError as e:
            logger.warning("Could not fetch agent %s: %s", agent_id, e)
            return Lookup.unavailable(str(e))

        self._by_id[agent.id] = agent
        return Lookup.found(agent)

    async def find_agent_by_name(self, query: str) -> Agent | None:
        """Find an agent by name, case-insensitively.

        An exact full-name match wins. Otherwise the first agent whose name
        contains the query is returned, in the order Freshdesk listed them.
        That order is not documented as stable, so ambiguous partial queries
        may resolve differently across refreshes.
        """
        agents = await self.get_all_agents()
        needle = query.strip().lower()
        if not needle:
            return None

        for agent in agents:
            if agent.name.lower() == needle:
                return agent

        return next((agent for agent in agents if needle in agent.name.lower()), None)
