import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from smartdesk.models.base import TicketPriority


class SlaPolicyCreate(BaseModel):
    tenant_id: uuid.UUID
    department_id: uuid.UUID | None = None
    name: str
    description: str = ""
    priority: TicketPriority
    first_response_time_hours: int = Field(gt=0)
    resolution_time_hours: int = Field(gt=0)
    business_hours_only: bool = False
    is_active: bool = True


NON_NULLABLE_POLICY_FIELDS = frozenset(
    {
        "name",
        "description",
        "priority",
        "first_response_time_hours",
        "resolution_time_hours",
        "business_hours_only",
        "is_active",
    }
)


class SlaPolicyUpdate(BaseModel):
    department_id: uuid.UUID | None = None
    name: str | None = None
    description: str | None = None
    priority: TicketPriority | None = None
    first_response_time_hours: int | None = Field(default=None, gt=0)
    resolution_time_hours: int | None = Field(default=None, gt=0)
    business_hours_only: bool | None = None
    is_active: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def prevent_null_fields(cls, values):
        # department_id may be cleared to make the policy tenant-wide
        if isinstance(values, dict):
            for field, value in values.items():
                if value is None and field in NON_NULLABLE_POLICY_FIELDS:
                    raise ValueError(f"{field} cannot be null")
        return values


class SlaPolicyResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    department_id: uuid.UUID | None
    name: str
    description: str
    priority: TicketPriority
    first_response_time_hours: int
    resolution_time_hours: int
    business_hours_only: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SlaStatus(BaseModel):
    policy_id: uuid.UUID | None = None
    deadline: datetime
    first_response_deadline: datetime | None = None
    elapsed_minutes: int
    remaining_minutes: int
    percentage: float
    is_at_risk: bool
    is_breached: bool
    first_response_violated: bool = False
    resolution_violated: bool = False
    escalated: bool = False


class ComplianceReport(BaseModel):
    tenant_id: uuid.UUID | None
    since: datetime
    until: datetime
    total_tickets: int
    breached_tickets: int
    compliance_rate: float


class SweepSummary(BaseModel):
    scanned: int
    new_violations: int
    at_risk: int
    violated: int
    escalated: int
