import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from smartdesk.models.base import TICKET_PRIORITY_ENUM, Base, TicketPriority, TimestampMixin, UTCDateTime


class SlaPolicy(TimestampMixin, Base):
    """Response/resolution budgets for one (tenant, department-or-all, priority)."""

    __tablename__ = "sla_policies"
    __table_args__ = (
        Index("ix_sla_policies_lookup", "tenant_id", "department_id", "priority"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tenants.id"), nullable=False)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("departments.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, default="")
    priority: Mapped[TicketPriority] = mapped_column(TICKET_PRIORITY_ENUM, nullable=False)
    first_response_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stored only; deadlines are continuous wall-clock offsets
    business_hours_only: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class SlaTracking(TimestampMixin, Base):
    __tablename__ = "sla_tracking"

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id"), unique=True, nullable=False
    )
    sla_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("sla_policies.id"), nullable=True
    )
    first_response_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    first_response_violated: Mapped[bool] = mapped_column(Boolean, default=False)
    resolution_violated: Mapped[bool] = mapped_column(Boolean, default=False)
    escalated: Mapped[bool] = mapped_column(Boolean, default=False)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
