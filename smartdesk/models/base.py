import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support, so values are stored as naive UTC there
    and re-tagged with UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    agent = "agent"
    customer = "customer"


class TicketStatus(str, enum.Enum):
    new = "new"
    open = "open"
    in_progress = "in_progress"
    pending = "pending"
    resolved = "resolved"
    escalated = "escalated"
    closed = "closed"


class TicketPriority(str, enum.Enum):
    """Priority tiers, declared lowest first."""

    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"
    critical = "critical"

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER[self]

    def next_tier(self) -> "TicketPriority":
        """The tier one step up; critical stays critical."""
        tiers = list(TicketPriority)
        return tiers[min(self.rank + 1, len(tiers) - 1)]


PRIORITY_ORDER = {p: i for i, p in enumerate(TicketPriority)}


class TicketCategory(str, enum.Enum):
    technical_support = "technical_support"
    billing = "billing"
    account_management = "account_management"
    feature_request = "feature_request"
    bug_report = "bug_report"
    general_inquiry = "general_inquiry"
    complaint = "complaint"
    refund_request = "refund_request"


class TicketSource(str, enum.Enum):
    email = "email"
    web_form = "web_form"
    phone = "phone"
    chat = "chat"
    api = "api"
    mobile_app = "mobile_app"


class ApprovalState(str, enum.Enum):
    none = "none"
    pending_manager = "pending_manager"
    pending_admin = "pending_admin"
    approved = "approved"
    rejected = "rejected"


class ChangeType(str, enum.Enum):
    created = "CREATED"
    status_changed = "STATUS_CHANGED"
    assigned = "ASSIGNED"
    escalated = "ESCALATED"
    field_changed = "FIELD_CHANGED"
    approval_requested = "APPROVAL_REQUESTED"
    approved = "APPROVED"
    approval_rejected = "APPROVAL_REJECTED"
    rated = "RATED"


# Shared column types so each named enum is declared once.
TICKET_STATUS_ENUM = Enum(TicketStatus, name="ticketstatus")
TICKET_PRIORITY_ENUM = Enum(TicketPriority, name="ticketpriority")
USER_ROLE_ENUM = Enum(UserRole, name="userrole")

ACTIVE_STATUSES = frozenset(
    {TicketStatus.new, TicketStatus.open, TicketStatus.in_progress, TicketStatus.pending}
)
COMPLETED_STATUSES = frozenset({TicketStatus.resolved, TicketStatus.closed})
