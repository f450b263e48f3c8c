import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from smartdesk.models.base import (
    ACTIVE_STATUSES,
    TICKET_PRIORITY_ENUM,
    TICKET_STATUS_ENUM,
    ApprovalState,
    Base,
    TicketCategory,
    TicketPriority,
    TicketSource,
    TicketStatus,
    TimestampMixin,
    UTCDateTime,
    utcnow,
)


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"
    __table_args__ = (
        Index("ix_tickets_tenant_id", "tenant_id"),
        Index("ix_tickets_status", "status"),
        Index("ix_tickets_priority", "priority"),
        Index("ix_tickets_department_id", "department_id"),
        Index("ix_tickets_assigned_agent_id", "assigned_agent_id"),
        Index("ix_tickets_created_at", "created_at"),
        Index("ix_tickets_sla_deadline", "sla_deadline"),
    )

    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[TicketPriority] = mapped_column(
        TICKET_PRIORITY_ENUM, default=TicketPriority.normal, nullable=False
    )
    status: Mapped[TicketStatus] = mapped_column(
        TICKET_STATUS_ENUM, default=TicketStatus.new, nullable=False
    )
    category: Mapped[Optional[TicketCategory]] = mapped_column(
        Enum(TicketCategory, name="ticketcategory"), nullable=True
    )
    source: Mapped[TicketSource] = mapped_column(
        Enum(TicketSource, name="ticketsource"), default=TicketSource.web_form, nullable=False
    )
    tags: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Ownership
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tenants.id"), nullable=False)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    creator_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    assigned_agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("departments.id"), nullable=True
    )

    # Lifecycle timestamps
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    # SLA snapshot (resolution deadline) for cheap at-risk/violated queries
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    resolution_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    satisfaction_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    satisfaction_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Approval workflow
    approval_state: Mapped[ApprovalState] = mapped_column(
        Enum(ApprovalState, name="approvalstate"), default=ApprovalState.none, nullable=False
    )
    pre_approval_status: Mapped[Optional[TicketStatus]] = mapped_column(
        TICKET_STATUS_ENUM, nullable=True
    )
    resolution_requested_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    resolution_requested_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    manager_approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    manager_approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    manager_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    admin_approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    admin_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Optimistic concurrency; bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def touch(self) -> None:
        self.last_activity_at = utcnow()
