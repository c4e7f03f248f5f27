"""Pydantic models for Freshdesk entities."""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

T = TypeVar("T")


class StrictBaseModel(BaseModel):
    """Base model with strict validation that forbids extra fields.

    Tool parameters are validated against these models, so a typo in a
    parameter name fails loudly instead of being ignored. String fields are
    stripped of leading/trailing whitespace.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ==================== ERRORS ====================


class FreshdeskError(Exception):
    """Base class for every error raised by this package."""


class TransportError(FreshdeskError):
    """Raised when the API could not be reached or its response could not be decoded."""


class RemoteApiError(FreshdeskError):
    """Raised when the Freshdesk API answers with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by Freshdesk
        body: Raw response body, surfaced verbatim
    """

    def __init__(self, status_code: int, body: str) -> None:
        """Initialize the exception with the response status and body."""
        self.status_code = status_code
        self.body = body
        super().__init__(f"Freshdesk API error ({status_code}): {body}")


class InvalidReferenceError(FreshdeskError, ValueError):
    """Raised when a ticket reference is neither an ID nor a ticket URL."""

    def __init__(self, reference: str) -> None:
        """Initialize the exception with the offending input."""
        self.reference = reference
        super().__init__(f'Invalid ticket input: "{reference}". Provide a ticket ID or Freshdesk URL.')


class ConfigurationError(FreshdeskError):
    """Raised at start-up when required credentials are missing."""


# ==================== ENUMERATIONS ====================


class TicketStatus(IntEnum):
    """Freshdesk ticket status codes."""

    OPEN = 2
    PENDING = 3
    RESOLVED = 4
    CLOSED = 5

    @property
    def label(self) -> str:
        return self.name.title()


class TicketPriority(IntEnum):
    """Freshdesk ticket priority codes."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    URGENT = 4

    @property
    def label(self) -> str:
        return self.name.title()


class TicketSource(IntEnum):
    """Channel through which a ticket was created."""

    EMAIL = 1
    PORTAL = 2
    PHONE = 3
    CHAT = 7
    FEEDBACK_WIDGET = 9
    OUTBOUND_EMAIL = 10

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


def _code_name(enum_cls: type[TicketStatus | TicketPriority | TicketSource], code: int) -> str:
    try:
        return enum_cls(code).label
    except ValueError:
        return f"Unknown ({code})"


def status_name(code: int) -> str:
    """Return the display name of a status code, or "Unknown (<code>)"."""
    return _code_name(TicketStatus, code)


def priority_name(code: int) -> str:
    """Return the display name of a priority code, or "Unknown (<code>)"."""
    return _code_name(TicketPriority, code)


def source_name(code: int) -> str:
    """Return the display name of a source code, or "Unknown (<code>)"."""
    return _code_name(TicketSource, code)


def _lower(v: object) -> object:
    """Normalize enum input to lowercase."""
    if isinstance(v, str):
        return v.lower()
    return v


class StatusFilter(str, Enum):
    """Status names accepted by the tools."""

    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def code(self) -> int:
        return TicketStatus[self.name].value


class PriorityFilter(str, Enum):
    """Priority names accepted by the tools."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def code(self) -> int:
        return TicketPriority[self.name].value


class ResponseFormat(str, Enum):
    """Output format for tool responses.

    Attributes:
        MARKDOWN: Human-readable markdown format
        JSON: Machine-readable JSON format
    """

    MARKDOWN = "markdown"
    JSON = "json"


StatusInput = Annotated[StatusFilter, BeforeValidator(_lower)]
PriorityInput = Annotated[PriorityFilter, BeforeValidator(_lower)]
ResponseFormatInput = Annotated[ResponseFormat, BeforeValidator(_lower)]


# ==================== TOLERATED LOOKUPS ====================


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Outcome of a sub-resource fetch whose failure is tolerated.

    Either ``found`` with a value, or ``unavailable`` with a reason. Callers
    decide the fallback explicitly through ``value_or``.
    """

    value: T | None = None
    reason: str | None = None

    @classmethod
    def found(cls, value: T) -> "Lookup[T]":
        return cls(value=value)

    @classmethod
    def unavailable(cls, reason: str) -> "Lookup[T]":
        return cls(reason=reason)

    @property
    def available(self) -> bool:
        return self.reason is None

    def value_or(self, default: T) -> T:
        if self.available and self.value is not None:
            return self.value
        return default


# ==================== REMOTE ENTITIES ====================


class Attachment(BaseModel):
    """File attached to a ticket or conversation."""

    id: int | None = None
    name: str
    content_type: str | None = None
    size: int = 0
    attachment_url: str | None = None
    created_at: str | None = None


class TicketStats(BaseModel):
    """Timestamps returned with ``include=stats``."""

    agent_responded_at: str | None = None
    requester_responded_at: str | None = None
    first_responded_at: str | None = None
    status_updated_at: str | None = None
    reopened_at: str | None = None
    resolved_at: str | None = None
    closed_at: str | None = None
    pending_since: str | None = None


class Ticket(BaseModel):
    """Freshdesk ticket."""

    id: int
    subject: str = ""
    description: str | None = None
    description_text: str | None = None
    status: int
    priority: int
    source: int = 0
    type: str | None = None
    requester_id: int
    responder_id: int | None = None
    group_id: int | None = None
    company_id: int | None = None
    email: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_escalated: bool = False
    due_by: str | None = None
    fr_due_by: str | None = None
    created_at: str
    updated_at: str
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)
    stats: TicketStats | None = None


class Conversation(BaseModel):
    """A reply or note on a ticket."""

    id: int
    body: str | None = None
    body_text: str | None = None
    incoming: bool = False
    private: bool = False
    user_id: int | None = None
    from_email: str | None = None
    to_emails: list[str] | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: str


class TimeEntry(BaseModel):
    """Time logged against a ticket."""

    id: int | None = None
    note: str | None = None
    time_spent: str | None = Field(None, description="Formatted duration, e.g. 01:30")
    agent_id: int | None = None
    billable: bool = False
    created_at: str


class SatisfactionRating(BaseModel):
    """Customer satisfaction survey response."""

    id: int | None = None
    feedback: str | None = None
    ratings: dict[str, int] = Field(default_factory=dict)
    created_at: str | None = None


class Contact(BaseModel):
    """Freshdesk contact (ticket requester)."""

    id: int
    name: str = ""
    email: str | None = None
    phone: str | None = None
    mobile: str | None = None


class AgentContact(BaseModel):
    """Contact details embedded in an agent record."""

    name: str = ""
    email: str | None = None
    active: bool = True
    job_title: str | None = None


class Agent(BaseModel):
    """Freshdesk agent."""

    id: int
    available: bool = False
    occasional: bool = False
    ticket_scope: int | None = None
    group_ids: list[int] = Field(default_factory=list)
    role_ids: list[int] = Field(default_factory=list)
    contact: AgentContact

    @property
    def name(self) -> str:
        return self.contact.name


class SearchPage(BaseModel):
    """One page of ``/search/tickets`` results."""

    results: list[Ticket] = Field(default_factory=list)
    total: int = 0


# ==================== AGGREGATES ====================


class PersonInfo(BaseModel):
    """Identity surfaced for requesters and agents."""

    id: int
    name: str
    email: str | None = None


class TicketDetails(BaseModel):
    """Normalized ticket fields of a context."""

    id: int
    subject: str
    description: str
    status: str
    priority: str
    source: str
    type: str | None = None
    tags: list[str]
    created_at: str
    updated_at: str
    due_by: str | None = None
    is_escalated: bool
    custom_fields: dict[str, Any]


class ConversationInfo(BaseModel):
    id: int
    body: str
    from_email: str | None = None
    is_private: bool
    is_incoming: bool
    created_at: str


class AttachmentInfo(BaseModel):
    name: str
    size: int
    url: str | None = None


class TimeEntryInfo(BaseModel):
    note: str | None = None
    time_spent: str | None = None
    agent_id: int | None = None
    created_at: str


class RatingInfo(BaseModel):
    feedback: str | None = None
    ratings: dict[str, int]


class TicketContext(BaseModel):
    """Everything known about one ticket, assembled from several endpoints."""

    ticket: TicketDetails
    requester: PersonInfo | None
    assignee: PersonInfo | None
    conversations: list[ConversationInfo]
    attachments: list[AttachmentInfo]
    time_entries: list[TimeEntryInfo]
    satisfaction_rating: RatingInfo | None


class TicketSummary(BaseModel):
    """Flattened ticket used by the listing tools."""

    id: int
    subject: str
    status: str
    priority: str
    requester_email: str | None = None
    assignee_name: str | None
    created_at: str
    updated_at: str


# ==================== TOOL PARAMETERS ====================


class GetTicketParams(StrictBaseModel):
    """Get ticket request parameters."""

    ticket: str = Field(
        min_length=1,
        description=(
            "Freshdesk ticket URL or ticket ID. "
            "Examples: 'https://company.freshdesk.com/a/tickets/12345' or '12345'"
        ),
    )
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.MARKDOWN, description="Output format: \"markdown\" (default) or \"json\""
    )


class SearchTicketsParams(StrictBaseModel):
    """Ticket search parameters."""

    query: str = Field(min_length=1, description="Search text to find in ticket subject or description")
    status: StatusInput | None = Field(None, description="Filter by ticket status (optional)")
    priority: PriorityInput | None = Field(None, description="Filter by ticket priority (optional)")
    limit: int = Field(default=30, ge=1, le=100, description="Maximum number of results (default: 30, max: 100)")
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.MARKDOWN, description="Output format: \"markdown\" (default) or \"json\""
    )


class GetAgentTicketsParams(StrictBaseModel):
    """Agent ticket listing parameters."""

    agent_name: str = Field(
        min_length=1,
        description="Name of the agent. Supports partial matching (e.g., 'John' will match 'John Doe').",
    )
    status: StatusInput | None = Field(None, description="Filter by ticket status (optional)")
    limit: int = Field(default=30, ge=1, le=100, description="Maximum number of results (default: 30, max: 100)")
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.MARKDOWN, description="Output format: \"markdown\" (default) or \"json\""
    )
