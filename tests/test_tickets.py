"""Tests for ticket context aggregation and ticket listings."""

import httpx
import pytest

from mcp_freshdesk.models import (
    InvalidReferenceError,
    PriorityFilter,
    RemoteApiError,
    StatusFilter,
    Ticket,
    TransportError,
    priority_name,
    source_name,
    status_name,
)
from mcp_freshdesk.tickets import (
    build_search_query,
    get_agent_tickets,
    get_ticket_context,
    search_tickets,
    summarize_ticket,
)


@pytest.fixture
def full_ticket_api(fake_api, ticket_factory, agent_factory, sample_conversations):
    """Fake API serving ticket 123 and all of its related resources."""
    fake_api.add("/tickets/123", ticket_factory())
    fake_api.add("/tickets/123/conversations", sample_conversations)
    fake_api.add(
        "/tickets/123/time_entries",
        [{"id": 1, "note": "Called bank", "time_spent": "00:30", "agent_id": 11, "created_at": "2024-01-01T03:00Z"}],
    )
    fake_api.add(
        "/tickets/123/satisfaction_ratings",
        [{"id": 5, "feedback": "Slow", "ratings": {"default_question": -103}}],
    )
    fake_api.add("/contacts/501", {"id": 501, "name": "Carol Customer", "email": "customer@example.com"})
    fake_api.add("/agents/11", agent_factory(11, "John Doe"))
    return fake_api


# ==================== NORMALIZATION ====================


@pytest.mark.parametrize(
    "normalize, code, expected",
    [
        (status_name, 2, "Open"),
        (status_name, 5, "Closed"),
        (status_name, 99, "Unknown (99)"),
        (priority_name, 4, "Urgent"),
        (priority_name, 0, "Unknown (0)"),
        (source_name, 9, "Feedback Widget"),
        (source_name, 10, "Outbound Email"),
        (source_name, 4, "Unknown (4)"),
    ],
)
def test_code_names(normalize, code, expected):
    assert normalize(code) == expected


# ==================== TICKET CONTEXT ====================


@pytest.mark.asyncio
async def test_get_ticket_context_assembles_everything(client, full_ticket_api):
    ctx = await get_ticket_context(client, "https://acme.freshdesk.com/a/tickets/123")

    assert ctx.ticket.id == 123
    assert ctx.ticket.status == "Open"
    assert ctx.ticket.priority == "High"
    assert ctx.ticket.source == "Email"
    assert ctx.ticket.description == "I was promised a refund"
    assert ctx.ticket.custom_fields == {"cf_order": "A-1", "cf_empty": None}
    assert ctx.requester.name == "Carol Customer"
    assert ctx.assignee.name == "John Doe"
    assert ctx.assignee.email == "john@acme.com"
    assert [a.name for a in ctx.attachments] == ["receipt.pdf"]
    assert ctx.attachments[0].url == "https://files/receipt.pdf"
    assert ctx.time_entries[0].time_spent == "00:30"
    assert ctx.satisfaction_rating.ratings == {"default_question": -103}


@pytest.mark.asyncio
async def test_conversations_keep_order_and_prefer_plain_text(client, full_ticket_api):
    ctx = await get_ticket_context(client, "123")

    assert [c.id for c in ctx.conversations] == [1, 2]
    assert ctx.conversations[0].body == "Any update?"
    assert ctx.conversations[0].is_incoming is True
    # No body_text: falls back to the HTML body
    assert ctx.conversations[1].body == "<p>Checking with finance</p>"
    assert ctx.conversations[1].is_private is True


@pytest.mark.asyncio
async def test_description_falls_back_to_html(client, full_ticket_api, ticket_factory):
    full_ticket_api.add("/tickets/123", ticket_factory(description_text=None))

    ctx = await get_ticket_context(client, "123")

    assert ctx.ticket.description == "<div>I was promised a refund</div>"


@pytest.mark.asyncio
async def test_time_entry_failure_gives_empty_list(client, full_ticket_api):
    full_ticket_api.add("/tickets/123/time_entries", "Not available on your plan", status=403)

    ctx = await get_ticket_context(client, "123")

    assert ctx.time_entries == []
    assert ctx.assignee is not None


@pytest.mark.asyncio
async def test_rating_and_requester_failures_give_none(client, full_ticket_api):
    full_ticket_api.fail("/tickets/123/satisfaction_ratings", httpx.ReadTimeout("timed out"))
    full_ticket_api.add("/contacts/501", "gone", status=404)

    ctx = await get_ticket_context(client, "123")

    assert ctx.satisfaction_rating is None
    assert ctx.requester is None
    dumped = ctx.model_dump()
    assert "satisfaction_rating" in dumped
    assert dumped["satisfaction_rating"] is None


@pytest.mark.asyncio
async def test_no_responder_means_no_agent_fetch(client, full_ticket_api, ticket_factory):
    full_ticket_api.add("/tickets/123", ticket_factory(responder_id=None))

    ctx = await get_ticket_context(client, "123")

    assert ctx.assignee is None
    assert "assignee" in ctx.model_dump()
    assert full_ticket_api.calls_starting_with("/agents") == 0


@pytest.mark.asyncio
async def test_assignee_fetch_failure_gives_none(client, full_ticket_api):
    full_ticket_api.add("/agents/11", "server error", status=500)

    ctx = await get_ticket_context(client, "123")

    assert ctx.assignee is None


@pytest.mark.asyncio
async def test_assignee_served_from_directory_cache(client, full_ticket_api, agent_factory):
    full_ticket_api.add("/agents", [agent_factory(11, "John Doe")])
    await client.agents.refresh()

    ctx = await get_ticket_context(client, "123")

    assert ctx.assignee.name == "John Doe"
    assert full_ticket_api.calls("/agents/11") == 0


@pytest.mark.asyncio
async def test_ticket_failure_propagates(client, fake_api):
    fake_api.add("/tickets/123/conversations", [])

    with pytest.raises(RemoteApiError) as exc_info:
        await get_ticket_context(client, "123")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_conversation_failure_propagates(client, full_ticket_api):
    full_ticket_api.fail("/tickets/123/conversations", httpx.ConnectError("reset"))

    with pytest.raises(TransportError):
        await get_ticket_context(client, "123")


@pytest.mark.asyncio
async def test_invalid_reference_makes_no_request(client, fake_api):
    with pytest.raises(InvalidReferenceError):
        await get_ticket_context(client, "not-a-ticket")

    assert fake_api.requests == []


# ==================== SUMMARIES ====================


@pytest.mark.asyncio
async def test_summarize_ticket(client, fake_api, ticket_factory, agent_factory):
    fake_api.add("/agents/11", agent_factory(11, "John Doe"))

    summary = await summarize_ticket(client, Ticket.model_validate(ticket_factory(status=42)))

    assert summary.status == "Unknown (42)"
    assert summary.priority == "High"
    assert summary.requester_email == "customer@example.com"
    assert summary.assignee_name == "John Doe"


@pytest.mark.asyncio
async def test_summarize_unassigned_ticket(client, fake_api, ticket_factory):
    summary = await summarize_ticket(client, Ticket.model_validate(ticket_factory(responder_id=None)))

    assert summary.assignee_name is None
    assert fake_api.requests == []


# ==================== SEARCH ====================


@pytest.mark.parametrize(
    "status, priority, expected",
    [
        (None, None, '"refund"'),
        (StatusFilter.OPEN, None, '("refund") AND status:2'),
        (None, PriorityFilter.URGENT, '("refund") AND priority:4'),
        (StatusFilter.CLOSED, PriorityFilter.LOW, '("refund") AND status:5 AND priority:1'),
    ],
)
def test_build_search_query(status, priority, expected):
    assert build_search_query("refund", status, priority) == expected


@pytest.mark.asyncio
async def test_search_tickets_sends_query_and_limits(client, fake_api, ticket_factory, agent_factory):
    fake_api.add(
        "/search/tickets",
        {"results": [ticket_factory(id=i) for i in range(1, 41)], "total": 40},
    )
    fake_api.add("/agents/11", agent_factory(11, "John Doe"))

    results = await search_tickets(client, "refund", status=StatusFilter.OPEN)

    params = fake_api.last("/search/tickets").url.params
    assert params["query"] == '("refund") AND status:2'
    assert params["page"] == "1"
    assert len(results) == 30
    assert results[0].assignee_name == "John Doe"


@pytest.mark.asyncio
async def test_search_tickets_custom_limit(client, fake_api, ticket_factory):
    fake_api.add(
        "/search/tickets",
        {"results": [ticket_factory(id=i, responder_id=None) for i in range(1, 6)], "total": 5},
    )

    results = await search_tickets(client, "printer", limit=2)

    assert [r.id for r in results] == [1, 2]


@pytest.mark.asyncio
async def test_search_failure_propagates(client, fake_api):
    fake_api.add("/search/tickets", '{"description": "Validation failed"}', status=400)

    with pytest.raises(RemoteApiError):
        await search_tickets(client, "refund")


# ==================== AGENT TICKETS ====================


@pytest.fixture
def agent_ticket_api(fake_api, ticket_factory, agent_factory):
    fake_api.add("/agents", [agent_factory(11, "John Doe"), agent_factory(12, "Jane Roe")])
    fake_api.add(
        "/tickets",
        [
            ticket_factory(id=1, responder_id=11, status=2),
            ticket_factory(id=2, responder_id=12, status=2),
            ticket_factory(id=3, responder_id=11, status=4),
            ticket_factory(id=4, responder_id=None, status=2),
            ticket_factory(id=5, responder_id=11, status=2),
        ],
    )
    return fake_api


@pytest.mark.asyncio
async def test_agent_tickets_filters_by_responder(client, agent_ticket_api):
    result = await get_agent_tickets(client, "john")

    assert result.agent.name == "John Doe"
    assert [t.id for t in result.tickets] == [1, 3, 5]
    assert {t.assignee_name for t in result.tickets} == {"John Doe"}
    # The directory refresh indexed agent 11, so no per-ticket agent fetches
    assert agent_ticket_api.calls("/agents/11") == 0


@pytest.mark.asyncio
async def test_agent_tickets_status_filter_and_limit(client, agent_ticket_api):
    result = await get_agent_tickets(client, "John Doe", status=StatusFilter.OPEN, limit=1)

    assert [t.id for t in result.tickets] == [1]
    params = agent_ticket_api.last("/tickets").url.params
    assert params["per_page"] == "1"
    assert params["order_by"] == "updated_at"


@pytest.mark.asyncio
async def test_agent_tickets_unknown_agent(client, agent_ticket_api):
    result = await get_agent_tickets(client, "Nobody")

    assert result.agent is None
    assert result.tickets == []
    assert agent_ticket_api.calls("/tickets") == 0
