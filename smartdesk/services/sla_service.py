import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.config import settings
from smartdesk.database import flush
from smartdesk.models.base import utcnow
from smartdesk.models.sla import SlaPolicy, SlaTracking
from smartdesk.models.ticket import Ticket
from smartdesk.services import sla_policy_service

logger = logging.getLogger(__name__)


def compute_deadline(created_at: datetime, policy: SlaPolicy) -> datetime:
    """Resolution deadline: created_at + resolution budget in wall-clock hours.

    business_hours_only is not applied.
    """
    return created_at + timedelta(hours=policy.resolution_time_hours)


def compute_first_response_deadline(created_at: datetime, policy: SlaPolicy) -> datetime:
    return created_at + timedelta(hours=policy.first_response_time_hours)


def default_deadline(created_at: datetime) -> datetime:
    """Deadline for tickets no policy applies to."""
    return created_at + timedelta(hours=settings.sla_default_resolution_hours)


async def get_tracking(db: AsyncSession, ticket_id: uuid.UUID) -> SlaTracking | None:
    result = await db.execute(select(SlaTracking).where(SlaTracking.ticket_id == ticket_id))
    return result.scalar_one_or_none()


async def ensure_tracking(db: AsyncSession, ticket: Ticket) -> SlaTracking | None:
    """Return the ticket's tracking row, creating it on first evaluation.

    Returns None when no active policy applies to the ticket. Deadlines are
    fixed at creation and not recomputed when priority later changes.
    """
    tracking = await get_tracking(db, ticket.id)
    if tracking is not None:
        return tracking

    policy = await sla_policy_service.find_applicable_policy(
        db, ticket.tenant_id, ticket.department_id, ticket.priority
    )
    if policy is None:
        logger.info("No applicable SLA policy for ticket %s", ticket.ticket_number)
        return None
    return await start_tracking(db, ticket, policy)


async def start_tracking(db: AsyncSession, ticket: Ticket, policy: SlaPolicy) -> SlaTracking:
    """Create the tracking row for a ticket under the given policy."""
    tracking = SlaTracking(
        ticket_id=ticket.id,
        sla_policy_id=policy.id,
        first_response_deadline=compute_first_response_deadline(ticket.created_at, policy),
        deadline=compute_deadline(ticket.created_at, policy),
        first_response_violated=False,
        resolution_violated=False,
        escalated=False,
        escalation_level=ticket.escalation_level,
    )
    db.add(tracking)
    if ticket.sla_deadline != tracking.deadline:
        ticket.sla_deadline = tracking.deadline
    await flush(db)
    return tracking


def mark_violation_if_breached(ticket: Ticket, tracking: SlaTracking) -> bool:
    """Set the one-way violation flags from the ticket's recorded timestamps.

    A flag that is already set is never re-evaluated or cleared. Returns True
    when a flag was newly set.
    """
    changed = False
    if (
        not tracking.first_response_violated
        and ticket.first_response_at is not None
        and tracking.first_response_deadline is not None
        and ticket.first_response_at > tracking.first_response_deadline
    ):
        tracking.first_response_violated = True
        changed = True
        logger.warning(
            "First response SLA violated for ticket %s (responded %s, due %s)",
            ticket.ticket_number,
            ticket.first_response_at.isoformat(),
            tracking.first_response_deadline.isoformat(),
        )
    if (
        not tracking.resolution_violated
        and ticket.resolved_at is not None
        and ticket.resolved_at > tracking.deadline
    ):
        tracking.resolution_violated = True
        changed = True
        logger.warning(
            "Resolution SLA violated for ticket %s (resolved %s, due %s)",
            ticket.ticket_number,
            ticket.resolved_at.isoformat(),
            tracking.deadline.isoformat(),
        )
    return changed


async def evaluate_ticket(db: AsyncSession, ticket: Ticket) -> SlaTracking | None:
    """Re-check violation flags after a response/resolution timestamp was set."""
    tracking = await ensure_tracking(db, ticket)
    if tracking is None:
        return None
    if mark_violation_if_breached(ticket, tracking):
        await flush(db)
    return tracking


def get_sla_status(
    ticket: Ticket,
    tracking: SlaTracking | None = None,
    now: datetime | None = None,
) -> dict | None:
    """Deadline progress for display. Returns None if the ticket has no deadline."""
    deadline = tracking.deadline if tracking else ticket.sla_deadline
    if deadline is None:
        return None

    now = now or utcnow()
    end_time = ticket.resolved_at or now
    elapsed = max(0, int((end_time - ticket.created_at).total_seconds()))
    target = int((deadline - ticket.created_at).total_seconds())
    remaining = int((deadline - end_time).total_seconds())
    risk_window = settings.sla_risk_window_hours * 3600

    breached = end_time > deadline
    return {
        "policy_id": tracking.sla_policy_id if tracking else None,
        "deadline": deadline,
        "first_response_deadline": tracking.first_response_deadline if tracking else None,
        "elapsed_minutes": round(elapsed / 60),
        "remaining_minutes": round(remaining / 60),
        "percentage": round((elapsed / target) * 100, 1) if target > 0 else 0,
        "is_at_risk": ticket.resolved_at is None and not breached and remaining <= risk_window,
        "is_breached": breached,
        "first_response_violated": tracking.first_response_violated if tracking else False,
        "resolution_violated": tracking.resolution_violated if tracking else False,
        "escalated": tracking.escalated if tracking else False,
    }


async def compliance_report(
    db: AsyncSession,
    tenant_id: uuid.UUID | None,
    since: datetime,
    until: datetime,
    now: datetime | None = None,
) -> dict:
    """SLA compliance over tickets created in [since, until).

    A ticket counts as breached when it was resolved after its deadline or is
    still unresolved past it.
    """
    now = now or utcnow()
    query = select(Ticket.sla_deadline, Ticket.resolved_at).where(
        Ticket.created_at >= since,
        Ticket.created_at < until,
    )
    if tenant_id is not None:
        query = query.where(Ticket.tenant_id == tenant_id)
    rows = (await db.execute(query)).all()

    total = len(rows)
    breached = sum(
        1
        for deadline, resolved_at in rows
        if deadline is not None and (resolved_at or now) > deadline
    )
    rate = ((total - breached) / total) * 100 if total else 100.0
    logger.info(
        "SLA compliance report: total=%d breached=%d compliance=%.2f%%", total, breached, rate
    )
    return {
        "tenant_id": tenant_id,
        "since": since,
        "until": until,
        "total_tickets": total,
        "breached_tickets": breached,
        "compliance_rate": round(rate, 2),
    }
