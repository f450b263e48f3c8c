import math
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.api.dependencies import actor_id, get_actor, require_actor
from smartdesk.database import get_db
from smartdesk.models.user import User
from smartdesk.schemas.common import PaginatedResponse
from smartdesk.schemas.history import HistoryResponse
from smartdesk.schemas.ticket import (
    ApprovalRequest,
    AssignRequest,
    CloseRequest,
    EscalateRequest,
    RatingRequest,
    RejectRequest,
    ResolveRequest,
    StatusChange,
    TicketCreate,
    TicketDetailResponse,
    TicketResponse,
    TicketUpdate,
    VersionedAction,
)
from smartdesk.services import (
    approval_service,
    assignment_service,
    directory_service,
    escalation_service,
    history_service,
    sla_service,
    ticket_service,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Ticket CRUD
# ---------------------------------------------------------------------------


@router.post("/", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreate,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    """Create a new ticket."""
    ticket = await ticket_service.create_ticket(db, data, actor_id(actor))
    await db.commit()
    return ticket


@router.get("/", response_model=PaginatedResponse[TicketResponse])
async def list_active_tickets(
    tenant_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List a tenant's active tickets, most urgent first."""
    tickets, total = await ticket_service.find_active(db, tenant_id, page, page_size)
    pages = math.ceil(total / page_size) if total > 0 else 0
    return PaginatedResponse(
        items=tickets,
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/unassigned", response_model=list[TicketResponse])
async def list_unassigned_tickets(
    tenant_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """New tickets nobody has picked up yet."""
    return await ticket_service.find_unassigned(db, tenant_id)


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a single ticket with SLA status and history."""
    ticket = await ticket_service.get_ticket(db, ticket_id)
    tracking = await sla_service.get_tracking(db, ticket.id)
    history = await history_service.get_history(db, ticket.id)

    return TicketDetailResponse(
        **TicketResponse.model_validate(ticket).model_dump(),
        sla_status=sla_service.get_sla_status(ticket, tracking),
        history=[HistoryResponse.model_validate(entry) for entry in history],
    )


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: uuid.UUID,
    data: TicketUpdate,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    """Edit descriptive fields or set priority directly."""
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await ticket_service.update_ticket(db, ticket, data, actor_id(actor))
    await db.commit()
    return ticket


@router.get("/{ticket_id}/history", response_model=list[HistoryResponse])
async def list_history(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Ticket history, newest first."""
    await ticket_service.get_ticket(db, ticket_id)
    return await history_service.get_history(db, ticket_id)


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_status(
    ticket_id: uuid.UUID,
    data: StatusChange,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await ticket_service.change_status(db, ticket, data.status, actor_id(actor))
    await db.commit()
    return ticket


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: uuid.UUID,
    data: AssignRequest,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    agent = await directory_service.get_user(db, data.agent_id)
    await ticket_service.assign_to_agent(db, ticket, agent, actor_id(actor))
    await db.commit()
    return ticket


@router.post("/{ticket_id}/auto-assign", response_model=TicketResponse)
async def auto_assign_ticket(
    ticket_id: uuid.UUID,
    data: VersionedAction | None = None,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    """Assign to the least busy agent of the ticket's department."""
    expected_version = data.expected_version if data else None
    ticket = await ticket_service.get_ticket(db, ticket_id, expected_version)
    await assignment_service.auto_assign(db, ticket, actor_id(actor))
    await db.commit()
    return ticket


@router.post("/{ticket_id}/escalate", response_model=TicketResponse)
async def escalate_ticket(
    ticket_id: uuid.UUID,
    data: EscalateRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    data = data or EscalateRequest()
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await escalation_service.escalate(db, ticket, actor_id(actor), data.reason)
    await db.commit()
    return ticket


@router.post("/{ticket_id}/close", response_model=TicketResponse)
async def close_ticket(
    ticket_id: uuid.UUID,
    data: CloseRequest,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await ticket_service.close_ticket(db, ticket, data.resolution_summary, actor_id(actor))
    await db.commit()
    return ticket


@router.post("/{ticket_id}/rating", response_model=TicketResponse)
async def rate_ticket(
    ticket_id: uuid.UUID,
    data: RatingRequest,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await ticket_service.add_satisfaction_rating(
        db, ticket, data.rating, data.feedback, actor_id(actor)
    )
    await db.commit()
    return ticket


# ---------------------------------------------------------------------------
# Approval workflow
# ---------------------------------------------------------------------------


@router.post("/{ticket_id}/resolve", response_model=TicketResponse)
async def resolve_ticket(
    ticket_id: uuid.UUID,
    data: ResolveRequest,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    """Mark work done and request manager approval."""
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await approval_service.resolve_for_approval(
        db, ticket, data.resolution_summary, actor_id(actor)
    )
    await db.commit()
    return ticket


@router.post("/{ticket_id}/approve/manager", response_model=TicketResponse)
async def approve_by_manager(
    ticket_id: uuid.UUID,
    data: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    actor: User = Depends(require_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await approval_service.approve_by_manager(db, ticket, actor.id, data.comment)
    await db.commit()
    return ticket


@router.post("/{ticket_id}/approve/admin", response_model=TicketResponse)
async def approve_by_admin(
    ticket_id: uuid.UUID,
    data: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    actor: User = Depends(require_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await approval_service.approve_by_admin(db, ticket, actor.id, data.comment)
    await db.commit()
    return ticket


@router.post("/{ticket_id}/reject", response_model=TicketResponse)
async def reject_approval(
    ticket_id: uuid.UUID,
    data: RejectRequest,
    db: AsyncSession = Depends(get_db),
    actor: User | None = Depends(get_actor),
):
    ticket = await ticket_service.get_ticket(db, ticket_id, data.expected_version)
    await approval_service.reject_approval(db, ticket, data.reason, actor_id(actor))
    await db.commit()
    return ticket
