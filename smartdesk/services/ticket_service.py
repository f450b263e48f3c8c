import logging
import uuid

import nh3
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.config import settings
from smartdesk.database import flush
from smartdesk.exceptions import (
    ConcurrencyConflict,
    IllegalTransition,
    InvalidAssignee,
    InvalidRating,
    NotFound,
    ValidationError,
)
from smartdesk.models.base import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    PRIORITY_ORDER,
    ChangeType,
    TicketPriority,
    TicketStatus,
    utcnow,
)
from smartdesk.models.ticket import Ticket
from smartdesk.models.user import User
from smartdesk.schemas.ticket import TicketCreate, TicketUpdate
from smartdesk.services import (
    directory_service,
    history_service,
    sla_policy_service,
    sla_service,
    state_machine,
)
from smartdesk.services.notification_service import TicketEvent, notify

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _next_ticket_number(db: AsyncSession, now, skip: int = 0) -> str:
    """Generate PREFIX-YYYYMMDD-NNNN, numbering tickets per day."""
    prefix = f"{settings.ticket_number_prefix}-{now:%Y%m%d}-"
    result = await db.execute(
        select(func.count()).select_from(Ticket).where(Ticket.ticket_number.like(f"{prefix}%"))
    )
    return f"{prefix}{(result.scalar() or 0) + 1 + skip:04d}"


async def _insert_numbered(db: AsyncSession, ticket: Ticket, now) -> None:
    """Insert a new ticket, stepping past numbers taken by concurrent inserts."""
    for attempt in range(settings.ticket_number_attempts):
        ticket.ticket_number = await _next_ticket_number(db, now, skip=attempt)
        try:
            async with db.begin_nested():
                db.add(ticket)
            return
        except IntegrityError:
            logger.warning("Ticket number %s already taken, retrying", ticket.ticket_number)
    raise ConcurrencyConflict(
        "Could not allocate a ticket number; retry the request",
        {"ticket_number": ticket.ticket_number},
    )


def clean_text(text: str | None) -> str | None:
    return nh3.clean(text) if text is not None else None


def check_version(ticket: Ticket, expected_version: int | None) -> None:
    """Reject a write based on a stale read of the ticket."""
    if expected_version is not None and expected_version != ticket.version:
        raise ConcurrencyConflict(
            f"Ticket {ticket.ticket_number} is at version {ticket.version}, "
            f"expected {expected_version}; re-read it and retry",
            {"current_version": ticket.version},
        )


_PRIORITY_RANK = case(
    {priority: rank for priority, rank in PRIORITY_ORDER.items()},
    value=Ticket.priority,
)


# ---------------------------------------------------------------------------
# Creation and lookup
# ---------------------------------------------------------------------------

async def create_ticket(
    db: AsyncSession,
    data: TicketCreate,
    creator_id: uuid.UUID | None = None,
) -> Ticket:
    """Create a NEW ticket, resolve its SLA and record the creation."""
    await directory_service.get_tenant(db, data.tenant_id)
    if data.department_id is not None:
        department = await directory_service.get_department(db, data.department_id)
        if department.tenant_id != data.tenant_id:
            raise ValidationError("Department does not belong to the ticket's tenant")
    if data.customer_id is not None:
        await directory_service.get_user(db, data.customer_id)
    if creator_id is not None:
        await directory_service.get_user(db, creator_id)

    now = utcnow()
    policy = await sla_policy_service.find_applicable_policy(
        db, data.tenant_id, data.department_id, data.priority
    )
    if policy is not None:
        sla_deadline = sla_service.compute_deadline(now, policy)
    else:
        sla_deadline = sla_service.default_deadline(now)

    ticket = Ticket(
        title=data.title,
        description=clean_text(data.description),
        priority=data.priority,
        category=data.category,
        source=data.source,
        tags=data.tags,
        status=TicketStatus.new,
        escalation_level=0,
        tenant_id=data.tenant_id,
        department_id=data.department_id,
        customer_id=data.customer_id,
        creator_id=creator_id,
        created_at=now,
        last_activity_at=now,
        sla_deadline=sla_deadline,
    )
    await _insert_numbered(db, ticket, now)

    if policy is not None:
        await sla_service.start_tracking(db, ticket, policy)
    else:
        logger.info(
            "No SLA policy for ticket %s, using the default %dh deadline",
            ticket.ticket_number,
            settings.sla_default_resolution_hours,
        )

    await history_service.log_change(
        db,
        ticket_id=ticket.id,
        actor_id=creator_id,
        field_name="status",
        old_value="",
        new_value=TicketStatus.new,
        change_type=ChangeType.created,
    )
    logger.info("Created ticket %s (%s)", ticket.ticket_number, ticket.priority.value)
    await notify(ticket, TicketEvent.created)
    return ticket


async def get_ticket(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    expected_version: int | None = None,
) -> Ticket:
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFound("Ticket", ticket_id)
    check_version(ticket, expected_version)
    return ticket


async def get_ticket_by_number(db: AsyncSession, ticket_number: str) -> Ticket | None:
    result = await db.execute(select(Ticket).where(Ticket.ticket_number == ticket_number))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# State machine operations
# ---------------------------------------------------------------------------

async def change_status(
    db: AsyncSession,
    ticket: Ticket,
    new_status: TicketStatus,
    actor_id: uuid.UUID | None = None,
    event: TicketEvent | None = TicketEvent.updated,
) -> Ticket:
    """The single path through which ticket status changes.

    Enforces the transition table, stamps timestamps, bumps last activity,
    records history and re-checks SLA flags when a timestamp was set.
    """
    old_status = ticket.status
    stamped = state_machine.apply_status(ticket, new_status, utcnow())
    await flush(db)

    if old_status != new_status:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name="status",
            old_value=old_status,
            new_value=new_status,
            change_type=ChangeType.status_changed,
        )
        logger.info(
            "Ticket %s status %s -> %s", ticket.ticket_number, old_status.value, new_status.value
        )

    if stamped:
        await sla_service.evaluate_ticket(db, ticket)

    if event is not None and old_status != new_status:
        await notify(ticket, event)
    return ticket


async def assign_to_agent(
    db: AsyncSession,
    ticket: Ticket,
    agent: User,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    """Assign the ticket to an agent or manager and adopt their department."""
    if not agent.can_work_tickets or not agent.is_active:
        raise InvalidAssignee(f"User {agent.full_name} is not an active agent or manager")
    if agent.tenant_id != ticket.tenant_id:
        raise InvalidAssignee(f"User {agent.full_name} belongs to another tenant")
    if agent.department_id is None:
        raise InvalidAssignee(f"User {agent.full_name} has no department")
    if ticket.status == TicketStatus.closed:
        raise IllegalTransition(ticket.status.value, "assigned", "Closed tickets cannot be reassigned")

    old_agent_id = ticket.assigned_agent_id
    old_department_id = ticket.department_id
    ticket.assigned_agent_id = agent.id
    ticket.department_id = agent.department_id
    ticket.touch()
    await flush(db)

    await history_service.log_change(
        db,
        ticket_id=ticket.id,
        actor_id=actor_id,
        field_name="assignedAgent",
        old_value=await directory_service.get_user_name(db, old_agent_id),
        new_value=agent.full_name,
        change_type=ChangeType.assigned,
    )
    if old_department_id != ticket.department_id:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name="department",
            old_value=await directory_service.get_department_name(db, old_department_id),
            new_value=await directory_service.get_department_name(db, ticket.department_id),
        )
    logger.info("Ticket %s assigned to %s", ticket.ticket_number, agent.full_name)

    # Assignment implicitly opens a new ticket
    if ticket.status == TicketStatus.new:
        await change_status(db, ticket, TicketStatus.open, actor_id, event=None)

    await notify(ticket, TicketEvent.assigned)
    return ticket


async def close_ticket(
    db: AsyncSession,
    ticket: Ticket,
    resolution_summary: str | None,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    """Record the resolution summary and move to CLOSED; repeat calls keep the timestamps."""
    state_machine.check_ticket_transition(ticket, TicketStatus.closed)

    old_summary = ticket.resolution_summary
    summary = clean_text(resolution_summary)
    if summary is not None:
        ticket.resolution_summary = summary

    was_closed = ticket.status == TicketStatus.closed
    await change_status(db, ticket, TicketStatus.closed, actor_id, event=None)
    if ticket.resolution_summary != old_summary:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name="resolutionSummary",
            old_value=old_summary,
            new_value=ticket.resolution_summary,
        )
    if not was_closed:
        await notify(ticket, TicketEvent.closed)
    return ticket


async def add_satisfaction_rating(
    db: AsyncSession,
    ticket: Ticket,
    rating: int,
    feedback: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    if not 1 <= rating <= 5:
        raise InvalidRating("Rating must be between 1 and 5", {"rating": rating})
    if ticket.status not in COMPLETED_STATUSES:
        raise ValidationError("Only resolved or closed tickets can be rated")

    old_rating = ticket.satisfaction_rating
    ticket.satisfaction_rating = rating
    ticket.satisfaction_feedback = clean_text(feedback)
    await flush(db)

    await history_service.log_change(
        db,
        ticket_id=ticket.id,
        actor_id=actor_id,
        field_name="satisfactionRating",
        old_value=old_rating,
        new_value=rating,
        change_type=ChangeType.rated,
    )
    logger.info("Ticket %s rated %d", ticket.ticket_number, rating)
    await notify(ticket, TicketEvent.rated)
    return ticket


# ---------------------------------------------------------------------------
# Administrative edits
# ---------------------------------------------------------------------------

async def update_ticket(
    db: AsyncSession,
    ticket: Ticket,
    data: TicketUpdate,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    """Edit descriptive fields; this is the only path that may lower priority."""
    update_fields = data.model_dump(exclude_unset=True, exclude={"expected_version"})
    changes: list[tuple[str, str | None, str | None]] = []

    for field, new_value in update_fields.items():
        if field == "description" and new_value is not None:
            new_value = clean_text(new_value)

        old_value = getattr(ticket, field)
        old_str = history_service.as_history_value(old_value)
        new_str = history_service.as_history_value(new_value)

        # Skip if value hasn't actually changed
        if old_str == new_str:
            continue

        setattr(ticket, field, new_value)
        changes.append((field, old_str, new_str))

    if not changes:
        return ticket

    # One flush, one version bump, however many fields changed
    ticket.touch()
    await flush(db)
    for field, old_str, new_str in changes:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name=field,
            old_value=old_str,
            new_value=new_str,
        )
    await notify(ticket, TicketEvent.updated)
    return ticket


async def change_priority(
    db: AsyncSession,
    ticket: Ticket,
    priority: TicketPriority,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    return await update_ticket(db, ticket, TicketUpdate(priority=priority), actor_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def find_active(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    page: int = 1,
    page_size: int = 25,
) -> tuple[list[Ticket], int]:
    """Active tickets, most urgent first, then oldest first."""
    condition = (Ticket.tenant_id == tenant_id) & Ticket.status.in_(ACTIVE_STATUSES)
    total_result = await db.execute(select(func.count()).select_from(Ticket).where(condition))
    total = total_result.scalar() or 0

    result = await db.execute(
        select(Ticket)
        .where(condition)
        .order_by(_PRIORITY_RANK.desc(), Ticket.created_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def find_unassigned(db: AsyncSession, tenant_id: uuid.UUID) -> list[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(
            Ticket.tenant_id == tenant_id,
            Ticket.assigned_agent_id.is_(None),
            Ticket.status == TicketStatus.new,
        )
        .order_by(_PRIORITY_RANK.desc(), Ticket.created_at.asc())
    )
    return list(result.scalars().all())


async def count_assigned_to(db: AsyncSession, agent_id: uuid.UUID) -> int:
    """Number of tickets the agent currently holds (resolved/closed excluded)."""
    result = await db.execute(
        select(func.count())
        .select_from(Ticket)
        .where(
            Ticket.assigned_agent_id == agent_id,
            Ticket.status.notin_(COMPLETED_STATUSES),
        )
    )
    return result.scalar() or 0
