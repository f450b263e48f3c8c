from smartdesk.models.base import (
    ApprovalState,
    Base,
    ChangeType,
    TicketCategory,
    TicketPriority,
    TicketSource,
    TicketStatus,
    TimestampMixin,
    UserRole,
)
from smartdesk.models.history import TicketHistory
from smartdesk.models.sla import SlaPolicy, SlaTracking
from smartdesk.models.tenant import Department, Tenant
from smartdesk.models.ticket import Ticket
from smartdesk.models.user import User

__all__ = [
    "ApprovalState",
    "Base",
    "ChangeType",
    "Department",
    "SlaPolicy",
    "SlaTracking",
    "Tenant",
    "Ticket",
    "TicketCategory",
    "TicketHistory",
    "TicketPriority",
    "TicketSource",
    "TicketStatus",
    "TimestampMixin",
    "User",
    "UserRole",
]
