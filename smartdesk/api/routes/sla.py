import uuid
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.database import get_db
from smartdesk.models.base import utcnow
from smartdesk.schemas.sla import (
    ComplianceReport,
    SlaPolicyCreate,
    SlaPolicyResponse,
    SlaPolicyUpdate,
    SweepSummary,
)
from smartdesk.schemas.ticket import TicketResponse
from smartdesk.services import sla_policy_service, sla_scanner, sla_service
from smartdesk.tasks.sla_monitor import run_sweep

router = APIRouter()


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@router.get("/policies", response_model=list[SlaPolicyResponse])
async def list_policies(
    tenant_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """List a tenant's SLA policies, tenant-wide ones first."""
    return await sla_policy_service.list_policies(db, tenant_id)


@router.post("/policies", response_model=SlaPolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    data: SlaPolicyCreate,
    db: AsyncSession = Depends(get_db),
):
    policy = await sla_policy_service.create_policy(db, data)
    await db.commit()
    return policy


@router.get("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def get_policy(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await sla_policy_service.get_policy(db, policy_id)


@router.patch("/policies/{policy_id}", response_model=SlaPolicyResponse)
async def update_policy(
    policy_id: uuid.UUID,
    data: SlaPolicyUpdate,
    db: AsyncSession = Depends(get_db),
):
    policy = await sla_policy_service.update_policy(db, policy_id, data)
    await db.commit()
    return policy


@router.post("/policies/{policy_id}/deactivate", response_model=SlaPolicyResponse)
async def deactivate_policy(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    policy = await sla_policy_service.deactivate_policy(db, policy_id)
    await db.commit()
    return policy


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a policy that no ticket is tracked against."""
    await sla_policy_service.delete_policy(db, policy_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@router.get("/at-risk", response_model=list[TicketResponse])
async def list_at_risk(
    tenant_id: uuid.UUID | None = None,
    window_hours: float | None = Query(None, gt=0),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Unfinished tickets due within the risk window."""
    return await sla_scanner.find_at_risk(
        db, tenant_id, window_hours=window_hours, limit=limit, offset=offset
    )


@router.get("/violated", response_model=list[TicketResponse])
async def list_violated(
    tenant_id: uuid.UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Overdue tickets that never received a first response."""
    return await sla_scanner.find_violated(db, tenant_id, limit=limit, offset=offset)


@router.get("/report", response_model=ComplianceReport)
async def compliance_report(
    tenant_id: uuid.UUID | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    db: AsyncSession = Depends(get_db),
):
    """SLA compliance for tickets created in [since, until); defaults to the last day."""
    until = until or utcnow()
    since = since or until - timedelta(days=1)
    return await sla_service.compliance_report(db, tenant_id, since, until)


@router.post("/scan", response_model=SweepSummary)
async def run_scan(db: AsyncSession = Depends(get_db)):
    """Run one monitoring sweep now instead of waiting for the timer."""
    summary = await run_sweep(db)
    await db.commit()
    return summary
