"""Ticket context aggregation and ticket listings."""

import asyncio
import logging
from dataclasses import dataclass, field

from .client import MAX_PER_PAGE, FreshdeskClient, parse_ticket_id
from .models import (
    Agent,
    AttachmentInfo,
    ConversationInfo,
    Lookup,
    PersonInfo,
    PriorityFilter,
    RatingInfo,
    StatusFilter,
    Ticket,
    TicketContext,
    TicketDetails,
    TicketSummary,
    TimeEntryInfo,
    priority_name,
    source_name,
    status_name,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 30


@dataclass
class AgentTickets:
    """Result of an agent ticket listing. ``agent`` is None when no name matched."""

    agent: PersonInfo | None
    tickets: list[TicketSummary] = field(default_factory=list)


def _agent_info(agent: Agent) -> PersonInfo:
    return PersonInfo(id=agent.id, name=agent.contact.name, email=agent.contact.email)


async def _no_assignee() -> Lookup[Agent]:
    return Lookup.unavailable("unassigned")


async def get_ticket_context(client: FreshdeskClient, reference: str) -> TicketContext:
    """Fetch a ticket and everything attached to it.

    Ticket and conversation failures propagate. Time entries, satisfaction
    rating, requester and assignee fall back to empty/None.

    Args:
        client: Freshdesk client
        reference: Ticket ID or ticket URL

    Raises:
        InvalidReferenceError: If the reference cannot be parsed
        RemoteApiError: If the ticket or its conversations cannot be fetched
        TransportError: On network or decoding failures for required resources
    """
    ticket_id = parse_ticket_id(reference)

    ticket, conversations, time_entries, rating = await asyncio.gather(
        client.get_ticket(ticket_id),
        client.get_conversations(ticket_id),
        client.get_time_entries(ticket_id),
        client.get_satisfaction_rating(ticket_id),
    )

    # Second batch needs requester_id/responder_id from the ticket
    assignee_lookup = (
        client.agents.get_agent_by_id(ticket.responder_id) if ticket.responder_id else _no_assignee()
    )
    requester, assignee = await asyncio.gather(client.get_contact(ticket.requester_id), assignee_lookup)

    satisfaction = rating.value if rating.available else None
    logger.info(
        "Assembled context for ticket %s (%d conversation(s), time entries %s, rating %s)",
        ticket.id,
        len(conversations),
        "available" if time_entries.available else "unavailable",
        "present" if satisfaction else "absent",
    )

    return TicketContext(
        ticket=TicketDetails(
            id=ticket.id,
            subject=ticket.subject,
            description=ticket.description_text or ticket.description or "",
            status=status_name(ticket.status),
            priority=priority_name(ticket.priority),
            source=source_name(ticket.source),
            type=ticket.type,
            tags=ticket.tags,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            due_by=ticket.due_by,
            is_escalated=ticket.is_escalated,
            custom_fields=ticket.custom_fields,
        ),
        requester=(
            PersonInfo(id=requester.value.id, name=requester.value.name, email=requester.value.email)
            if requester.available and requester.value
            else None
        ),
        assignee=_agent_info(assignee.value) if assignee.available and assignee.value else None,
        conversations=[
            ConversationInfo(
                id=c.id,
                body=c.body_text or c.body or "",
                from_email=c.from_email,
                is_private=c.private,
                is_incoming=c.incoming,
                created_at=c.created_at,
            )
            for c in conversations
        ],
        attachments=[AttachmentInfo(name=a.name, size=a.size, url=a.attachment_url) for a in ticket.attachments],
        time_entries=[
            TimeEntryInfo(note=t.note, time_spent=t.time_spent, agent_id=t.agent_id, created_at=t.created_at)
            for t in time_entries.value_or([])
        ],
        satisfaction_rating=(
            RatingInfo(feedback=satisfaction.feedback, ratings=satisfaction.ratings) if satisfaction else None
        ),
    )


async def summarize_ticket(client: FreshdeskClient, ticket: Ticket) -> TicketSummary:
    """Project a ticket to a summary, resolving the assignee name."""
    assignee_name = None
    if ticket.responder_id:
        lookup = await client.agents.get_agent_by_id(ticket.responder_id)
        if lookup.available and lookup.value:
            assignee_name = lookup.value.name or None

    return TicketSummary(
        id=ticket.id,
        subject=ticket.subject,
        status=status_name(ticket.status),
        priority=priority_name(ticket.priority),
        requester_email=ticket.email,
        assignee_name=assignee_name,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


async def _summarize_all(client: FreshdeskClient, tickets: list[Ticket]) -> list[TicketSummary]:
    return list(await asyncio.gather(*(summarize_ticket(client, t) for t in tickets)))


def build_search_query(
    text: str, status: StatusFilter | None = None, priority: PriorityFilter | None = None
) -> str:
    """Build a Freshdesk phrase query with optional status/priority clauses.

    >>> build_search_query("refund", StatusFilter.OPEN)
    '("refund") AND status:2'
    """
    query = f'"{text}"'
    conditions = []
    if status:
        conditions.append(f"status:{status.code}")
    if priority:
        conditions.append(f"priority:{priority.code}")
    if conditions:
        query = f"({query}) AND " + " AND ".join(conditions)
    return query


async def search_tickets(
    client: FreshdeskClient,
    text: str,
    status: StatusFilter | None = None,
    priority: PriorityFilter | None = None,
    limit: int = DEFAULT_LIMIT,
    page: int = 1,
) -> list[TicketSummary]:
    """Search tickets and summarize at most ``limit`` of the first page."""
    limit = min(limit, MAX_PER_PAGE)
    query = build_search_query(text, status, priority)
    tickets = await client.search_tickets(query, page=page)
    logger.info("Search %s returned %d ticket(s)", query, len(tickets))
    return await _summarize_all(client, tickets[:limit])


async def get_agent_tickets(
    client: FreshdeskClient,
    agent_name: str,
    status: StatusFilter | None = None,
    limit: int = DEFAULT_LIMIT,
) -> AgentTickets:
    """List recently updated tickets assigned to the agent matching ``agent_name``.

    Freshdesk cannot filter the ticket list by responder, so one page of the
    most recently updated tickets is fetched and filtered here.
    """
    agent = await client.agents.find_agent_by_name(agent_name)
    if agent is None:
        logger.info("No agent matches %r", agent_name)
        return AgentTickets(agent=None)

    limit = min(limit, MAX_PER_PAGE)
    tickets = await client.list_tickets(per_page=limit)
    assigned = [t for t in tickets if t.responder_id == agent.id]
    if status:
        assigned = [t for t in assigned if t.status == status.code]

    return AgentTickets(agent=_agent_info(agent), tickets=await _summarize_all(client, assigned[:limit]))
