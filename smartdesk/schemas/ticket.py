import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from smartdesk.models.base import (
    ApprovalState,
    TicketCategory,
    TicketPriority,
    TicketSource,
    TicketStatus,
)
from smartdesk.schemas.history import HistoryResponse
from smartdesk.schemas.sla import SlaStatus


class TicketCreate(BaseModel):
    tenant_id: uuid.UUID
    title: str = Field(min_length=1, max_length=500)
    description: str = Field(min_length=1)
    priority: TicketPriority = TicketPriority.normal
    category: TicketCategory | None = None
    source: TicketSource = TicketSource.web_form
    department_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    tags: str | None = None


class TicketUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    category: TicketCategory | None = None
    priority: TicketPriority | None = None
    tags: str | None = None
    expected_version: int | None = None

    @model_validator(mode="before")
    @classmethod
    def prevent_null_priority(cls, values):
        if isinstance(values, dict) and "priority" in values and values["priority"] is None:
            raise ValueError("priority cannot be null")
        return values


class VersionedAction(BaseModel):
    expected_version: int | None = None


class StatusChange(VersionedAction):
    status: TicketStatus


class AssignRequest(VersionedAction):
    agent_id: uuid.UUID


class CloseRequest(VersionedAction):
    resolution_summary: str | None = None


class RatingRequest(VersionedAction):
    # Range is checked by the service so the error type stays InvalidRating
    rating: int
    feedback: str | None = None


class ResolveRequest(VersionedAction):
    resolution_summary: str


class ApprovalRequest(VersionedAction):
    comment: str | None = None


class RejectRequest(VersionedAction):
    reason: str


class TicketResponse(BaseModel):
    id: uuid.UUID
    ticket_number: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory | None
    source: TicketSource
    tags: str | None
    escalation_level: int
    tenant_id: uuid.UUID
    customer_id: uuid.UUID | None
    creator_id: uuid.UUID | None
    assigned_agent_id: uuid.UUID | None
    department_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
    first_response_at: datetime | None
    resolved_at: datetime | None
    closed_at: datetime | None
    last_activity_at: datetime
    sla_deadline: datetime | None
    resolution_summary: str | None
    satisfaction_rating: int | None
    satisfaction_feedback: str | None
    approval_state: ApprovalState
    manager_approved_by_id: uuid.UUID | None
    manager_approved_at: datetime | None
    admin_approved_by_id: uuid.UUID | None
    admin_approved_at: datetime | None
    version: int

    model_config = {"from_attributes": True}


class TicketDetailResponse(TicketResponse):
    sla_status: SlaStatus | None = None
    history: list[HistoryResponse] = []


class EscalateRequest(VersionedAction):
    reason: str | None = None
