"""Freshdesk MCP Server implementation."""

import json
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, NoReturn

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import tickets
from .client import FreshdeskClient
from .config import FreshdeskConfig
from .models import (
    ConfigurationError,
    FreshdeskError,
    GetAgentTicketsParams,
    GetTicketParams,
    PersonInfo,
    RemoteApiError,
    ResponseFormat,
    SearchTicketsParams,
    TicketContext,
    TicketSummary,
    TransportError,
)

# Configure logging
logger = logging.getLogger(__name__)

# Constants
CHARACTER_LIMIT = 25000  # Maximum response size per MCP best practices

STATUS_HINTS = {
    401: "Authentication failed. Check FRESHDESK_API_KEY is valid.",
    403: "Permission denied. The API key's agent lacks access to this resource.",
    404: "Resource not found. Verify the ticket ID or URL is correct.",
    429: "Freshdesk rate limit reached. Wait before retrying.",
}


def _read_only_annotations(title: str) -> ToolAnnotations:
    """Create read-only tool annotations with title."""
    return ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
        title=title,
    )


def _raise_tool_error(e: Exception, context: str) -> NoReturn:
    """Re-raise a failure as a ToolError the calling model can act on.

    The message keeps the underlying error text and, for well-known HTTP
    statuses or network failures, appends a hint.

    Args:
        e: The exception that occurred
        context: What was being attempted, e.g. "fetching ticket"
    """
    message = f"Error {context}: {e}"
    if isinstance(e, RemoteApiError) and e.status_code in STATUS_HINTS:
        message += f"\n{STATUS_HINTS[e.status_code]}"
    elif isinstance(e, TransportError):
        message += "\nNetwork or decoding issue. Check FRESHDESK_DOMAIN is correct and the server is reachable."
    logger.warning("%s", message)
    raise ToolError(message) from e


def _truncate_json_response(content: str, obj: dict[str, Any], limit: int, list_key: str) -> str:
    """Drop trailing entries of one list in a JSON response until it fits."""
    items = obj.get(list_key)
    obj["_meta"] = {
        "truncated": True,
        "original_size": len(content),
        "limit": limit,
        "note": "Response truncated; lower limit or narrow the query.",
    }
    result = json.dumps(obj, indent=2, default=str)
    while isinstance(items, list) and items and len(result) > limit:
        items.pop()
        result = json.dumps(obj, indent=2, default=str)
    return result


def truncate_response(content: str, limit: int = CHARACTER_LIMIT, list_key: str = "items") -> str:
    """Truncate response with helpful message if over limit.

    JSON objects holding a list under ``list_key`` keep their validity; anything
    else is cut and followed by a warning.

    Args:
        content: The content to potentially truncate
        limit: Maximum character limit (default: CHARACTER_LIMIT)
        list_key: Key of the list to shrink in JSON objects (default: "items")

    Returns:
        Original content if under limit, truncated content otherwise
    """
    if len(content) <= limit:
        return content

    if content.lstrip().startswith("{"):
        try:
            obj = json.loads(content)
        except json.JSONDecodeError as e:
            logger.debug("Failed to parse JSON response for truncation: %s", e)
        else:
            if isinstance(obj, dict) and isinstance(obj.get(list_key), list):
                return _truncate_json_response(content, obj, limit, list_key)

    truncated = content[:limit]
    truncated += "\n\n⚠️ **Response Truncated**\n"
    truncated += f"Response size ({len(content)} chars) exceeds limit ({limit} chars).\n"
    truncated += "Lower the limit or narrow the query to see everything."
    return truncated


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _format_ticket_context_markdown(ctx: TicketContext) -> str:  # noqa: PLR0912
    """Format a full ticket context as markdown.

    Args:
        ctx: Aggregated ticket context

    Returns:
        Markdown-formatted string
    """
    t = ctx.ticket
    lines = ["# Ticket Details", ""]
    lines.append(f"**Ticket ID:** {t.id}")
    lines.append(f"**Subject:** {t.subject}")
    lines.append(f"**Status:** {t.status}")
    lines.append(f"**Priority:** {t.priority}")
    lines.append(f"**Source:** {t.source}")
    if t.type:
        lines.append(f"**Type:** {t.type}")
    lines.append(f"**Created:** {t.created_at}")
    lines.append(f"**Updated:** {t.updated_at}")
    if t.due_by:
        lines.append(f"**Due By:** {t.due_by}")
    if t.is_escalated:
        lines.append("**Escalated:** Yes")
    if t.tags:
        lines.append(f"**Tags:** {', '.join(t.tags)}")
    lines.append("")

    lines.append("## Requester")
    if ctx.requester:
        lines.append(f"- **Name:** {ctx.requester.name}")
        lines.append(f"- **Email:** {ctx.requester.email or 'N/A'}")
    else:
        lines.append("- No requester information available")
    lines.append("")

    lines.append("## Assignee")
    if ctx.assignee:
        lines.append(f"- **Name:** {ctx.assignee.name}")
        lines.append(f"- **Email:** {ctx.assignee.email or 'N/A'}")
    else:
        lines.append("- Unassigned")
    lines.append("")

    lines.append("## Description")
    lines.append(t.description or "(No description)")

    if ctx.conversations:
        lines.extend(["", "## Conversations"])
        for conv in ctx.conversations:
            author = "Customer" if conv.is_incoming else "Agent"
            lines.extend(["", f"### {author} - {conv.created_at}", f"From: {conv.from_email or 'Unknown'}"])
            if conv.is_private:
                lines.append("*(Private note)*")
            lines.extend(["", conv.body])

    if ctx.attachments:
        lines.extend(["", "## Attachments"])
        lines.extend(f"- {a.name} ({_format_bytes(a.size)})" for a in ctx.attachments)

    if ctx.time_entries:
        lines.extend(["", "## Time Entries"])
        for entry in ctx.time_entries:
            lines.append(f"- {entry.time_spent or '?'} - {entry.note or '(No note)'} ({entry.created_at})")

    if ctx.satisfaction_rating:
        lines.extend(["", "## Satisfaction Rating"])
        if ctx.satisfaction_rating.feedback:
            lines.append(f"**Feedback:** {ctx.satisfaction_rating.feedback}")
        lines.extend(f"- {key}: {value}" for key, value in ctx.satisfaction_rating.ratings.items())

    custom = {k: v for k, v in t.custom_fields.items() if v not in (None, "")}
    if custom:
        lines.extend(["", "## Custom Fields"])
        lines.extend(f"- **{key}:** {value}" for key, value in custom.items())

    return "\n".join(lines)


def _format_summary_lines(ticket: TicketSummary, *, show_assignee: bool) -> list[str]:
    lines = [f"## Ticket #{ticket.id}", f"**Subject:** {ticket.subject}"]
    lines.append(f"**Status:** {ticket.status} | **Priority:** {ticket.priority}")
    lines.append(f"**Requester:** {ticket.requester_email or 'Unknown'}")
    if show_assignee and ticket.assignee_name:
        lines.append(f"**Assignee:** {ticket.assignee_name}")
    lines.append(f"**Created:** {ticket.created_at} | **Updated:** {ticket.updated_at}")
    lines.append("")
    return lines


def _format_search_markdown(query: str, results: list[TicketSummary]) -> str:
    """Format search results as markdown for human readability."""
    lines = [f'# Search Results for "{query}"', "", f"Found {len(results)} ticket(s)"]
    if not results:
        lines.extend(["", "No tickets match your search criteria."])
        return "\n".join(lines)

    lines.append("")
    for ticket in results:
        lines.extend(_format_summary_lines(ticket, show_assignee=True))
    return "\n".join(lines)


def _format_agent_tickets_markdown(
    agent: PersonInfo, results: list[TicketSummary], status_filter: str | None = None
) -> str:
    """Format an agent's ticket list as markdown."""
    lines = [f"# Tickets for {agent.name}", f"**Email:** {agent.email or 'N/A'}", f"**Agent ID:** {agent.id}", ""]
    if status_filter:
        lines.extend([f"*Filtered by status: {status_filter}*", ""])

    lines.append(f"Found {len(results)} ticket(s)")
    if not results:
        lines.extend(["", "No tickets assigned to this agent."])
        return "\n".join(lines)

    lines.append("")
    for ticket in results:
        lines.extend(_format_summary_lines(ticket, show_assignee=False))
    return "\n".join(lines)


def _format_summaries_json(results: list[TicketSummary], **extra: Any) -> str:
    response: dict[str, Any] = {
        **extra,
        "items": [ticket.model_dump(mode="json") for ticket in results],
        "count": len(results),
    }
    return json.dumps(response, indent=2, default=str)


def _agent_not_found_message(agent_name: str) -> str:
    return f'No agent found matching "{agent_name}". Please check the agent name and try again.'


class FreshdeskMCPServer:
    """Freshdesk MCP Server with proper client lifecycle management."""

    def __init__(self, config: FreshdeskConfig | None = None, host: str = "127.0.0.1", port: int = 8000) -> None:
        """Initialize the server.

        Args:
            config: Freshdesk settings; read from the environment on start-up when omitted
            host: Host to bind for HTTP transport (default: 127.0.0.1)
            port: Port to bind for HTTP transport (default: 8000)
        """
        self.config = config
        self.client: FreshdeskClient | None = None
        self._sessions = 0
        self.mcp = FastMCP("freshdesk_mcp", host=host, port=port, lifespan=self._create_lifespan())
        self._setup_tools()
        self._setup_resources()
        self._setup_prompts()

    def _create_lifespan(self) -> Any:
        """Create the lifespan context manager for the server."""

        @asynccontextmanager
        async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
            """Initialize resources on startup and cleanup on shutdown."""
            await self.initialize()
            try:
                yield
            finally:
                await self.shutdown()

        return lifespan

    def get_client(self) -> FreshdeskClient:
        """Get the Freshdesk client, ensuring it's initialized."""
        if not self.client:
            raise RuntimeError("Freshdesk client not initialized")
        return self.client

    async def initialize(self) -> None:
        """Create the Freshdesk client on server startup.

        Under HTTP transport every session enters the lifespan, so the client
        is created by the first session and shared by the ones that follow.

        Raises:
            ConfigurationError: If no configuration was given and the environment lacks credentials
        """
        if self.client is None:
            if self.config is None:
                _load_env_files()
                self.config = FreshdeskConfig.from_env()

            self.client = FreshdeskClient(self.config)
            logger.info("Freshdesk client initialized for %s.freshdesk.com", self.config.domain)
        self._sessions += 1

    async def shutdown(self) -> None:
        """Close the client's connection pool once the last session has ended."""
        self._sessions = max(self._sessions - 1, 0)
        if self._sessions == 0 and self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("Freshdesk client cleaned up")

    def _setup_tools(self) -> None:
        """Register all tools with the MCP server."""

        @self.mcp.tool(annotations=_read_only_annotations("Get Ticket Details"))
        async def get_ticket(params: GetTicketParams) -> str:
            """Fetch complete ticket details from Freshdesk including conversations,
            attachments, time entries, and satisfaction ratings. Accepts a ticket URL or ID.

            Args:
                params (GetTicketParams): Validated parameters containing:
                    - ticket (str): Ticket ID ("12345") or URL
                      ("https://company.freshdesk.com/a/tickets/12345")
                    - response_format (ResponseFormat): Output format (default: "markdown")

            Returns:
                str: Markdown with ticket fields, requester, assignee, description,
                conversations (customer vs agent, private notes flagged), attachments,
                time entries, satisfaction rating and custom fields. JSON format returns
                the same context as an object.

            Error Handling:
                - "Error fetching ticket: Invalid ticket input ..." for unparseable input
                - "Error fetching ticket: Freshdesk API error (404) ..." if the ticket does not exist
                - Missing time entries, rating, requester or assignee are not errors
            """
            client = self.get_client()
            try:
                ctx = await tickets.get_ticket_context(client, params.ticket)
            except (FreshdeskError, ValidationError) as e:
                _raise_tool_error(e, "fetching ticket")

            if params.response_format == ResponseFormat.JSON:
                result = json.dumps(ctx.model_dump(mode="json"), indent=2)
                return truncate_response(result, list_key="conversations")
            return truncate_response(_format_ticket_context_markdown(ctx))

        @self.mcp.tool(annotations=_read_only_annotations("Search Tickets"))
        async def search_tickets(params: SearchTicketsParams) -> str:
            """Search Freshdesk tickets by text query. Can filter by status and priority.

            Args:
                params (SearchTicketsParams): Validated search parameters containing:
                    - query (str): Phrase to look for in subject or description
                    - status (str | None): open, pending, resolved or closed
                    - priority (str | None): low, medium, high or urgent
                    - limit (int): Maximum results, 1-100 (default: 30)
                    - response_format (ResponseFormat): Output format (default: "markdown")

            Returns:
                str: One "## Ticket #<id>" section per result with subject, status,
                priority, requester, assignee and timestamps.

            Examples:
                - "Open tickets about refunds" -> query="refund", status="open"
                - Don't use when: You already have the ticket ID (use get_ticket)
            """
            client = self.get_client()
            try:
                results = await tickets.search_tickets(
                    client, params.query, status=params.status, priority=params.priority, limit=params.limit
                )
            except (FreshdeskError, ValidationError) as e:
                _raise_tool_error(e, "searching tickets")

            if params.response_format == ResponseFormat.JSON:
                result = _format_summaries_json(results, query=params.query)
            else:
                result = _format_search_markdown(params.query, results)
            return truncate_response(result)

        @self.mcp.tool(annotations=_read_only_annotations("Get Agent Tickets"))
        async def get_agent_tickets(params: GetAgentTicketsParams) -> str:
            """Get tickets assigned to a specific Freshdesk agent by name. Supports partial name matching.

            Args:
                params (GetAgentTicketsParams): Validated parameters containing:
                    - agent_name (str): Full or partial agent name ("John" matches "John Doe")
                    - status (str | None): open, pending, resolved or closed
                    - limit (int): Maximum results, 1-100 (default: 30)
                    - response_format (ResponseFormat): Output format (default: "markdown")

            Returns:
                str: Agent identity followed by the agent's most recently updated tickets.

            Note:
                Only the latest page of tickets is scanned, so older assignments may be missing.
                An unknown agent name is reported in the text, not as an error.
            """
            client = self.get_client()
            try:
                found = await tickets.get_agent_tickets(
                    client, params.agent_name, status=params.status, limit=params.limit
                )
            except (FreshdeskError, ValidationError) as e:
                _raise_tool_error(e, "fetching agent tickets")

            status_filter = params.status.value if params.status else None
            if params.response_format == ResponseFormat.JSON:
                agent = found.agent.model_dump(mode="json") if found.agent else None
                extra: dict[str, Any] = {"agent": agent, "status": status_filter}
                if found.agent is None:
                    extra["message"] = _agent_not_found_message(params.agent_name)
                return truncate_response(_format_summaries_json(found.tickets, **extra))

            if found.agent is None:
                return _agent_not_found_message(params.agent_name)
            return truncate_response(_format_agent_tickets_markdown(found.agent, found.tickets, status_filter))

    def _setup_resources(self) -> None:
        """Register all resources with the MCP server."""

        @self.mcp.resource("freshdesk://ticket/{ticket}")
        async def get_ticket_resource(ticket: str) -> str:
            """Get a ticket with its full context as a resource."""
            client = self.get_client()
            try:
                ctx = await tickets.get_ticket_context(client, ticket)
            except FreshdeskError as e:
                logger.warning("Ticket resource %s failed: %s", ticket, e)
                return f"Error fetching ticket: {e}"
            return truncate_response(_format_ticket_context_markdown(ctx))

    def _setup_prompts(self) -> None:
        """Register all prompts with the MCP server."""

        @self.mcp.prompt()
        def analyze_ticket(ticket: str) -> str:
            """Generate a prompt to analyze a ticket by ID or URL."""
            return f"""Please analyze Freshdesk ticket {ticket}.
Use the get_ticket tool to retrieve the ticket with its conversations, time entries and satisfaction rating.

After retrieving the ticket, provide:
1. A summary of the customer's issue
2. Current status, priority and assignee
3. Timeline of the conversation, separating customer messages from agent replies and private notes
4. Suggested next steps or resolution"""

        @self.mcp.prompt()
        def agent_workload(agent_name: str) -> str:
            """Generate a prompt to review an agent's current tickets."""
            return f"""Please review the current workload of the Freshdesk agent "{agent_name}".

Use get_agent_tickets with agent_name="{agent_name}" and status="open", then again with status="pending".
For each ticket, note its priority and how long since it was last updated.

Finish with:
1. The number of open and pending tickets
2. Urgent or high priority tickets that need attention first
3. Tickets that look stale and may need follow-up

Use get_ticket for any ticket where more context is needed."""


def _load_env_files() -> None:
    """Load environment variables from .env files."""
    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
        logger.info("Loaded environment from %s", cwd_env)

    # Also support loading from parent directories (for when running from subdirs)
    load_dotenv()


# Create the server instance with host/port from environment
# This allows HTTP transport to bind to the configured address
_host = os.getenv("MCP_HOST", "127.0.0.1")
_port = int(os.getenv("MCP_PORT", "8000"))
server = FreshdeskMCPServer(host=_host, port=_port)

# Export the MCP server instance
mcp = server.mcp


# Health check endpoint for HTTP transport
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:  # noqa: ARG001
    """Health check endpoint for HTTP transport."""
    return JSONResponse({"status": "healthy", "transport": "http"})


def _configure_logging() -> None:
    """Configure logging from LOG_LEVEL environment variable.

    Reads LOG_LEVEL environment variable (default: INFO) and configures
    the root logger. Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL.
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

    if log_level_str not in valid_levels:
        invalid_level = log_level_str
        log_level_str = "INFO"
        logger.warning(
            "Invalid LOG_LEVEL '%s', defaulting to INFO. Valid values: %s",
            invalid_level,
            ", ".join(sorted(valid_levels)),
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level_str))

    # stdio transport owns stdout, so log to stderr
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root_logger.addHandler(handler)


def main() -> None:
    """Main entry point for the server."""
    _configure_logging()
    _load_env_files()
    try:
        server.config = FreshdeskConfig.from_env()
    except ConfigurationError as e:
        logger.error("Failed to initialize Freshdesk client: %s", e)  # noqa: TRY400
        sys.exit(1)

    logger.info("Starting Freshdesk MCP server for %s.freshdesk.com", server.config.domain)
    mcp.run()
