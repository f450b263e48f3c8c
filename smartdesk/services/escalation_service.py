import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.database import flush
from smartdesk.exceptions import IllegalTransition
from smartdesk.models.base import ChangeType, TicketStatus
from smartdesk.models.ticket import Ticket
from smartdesk.services import history_service, sla_service, state_machine, ticket_service
from smartdesk.services.notification_service import TicketEvent, notify

logger = logging.getLogger(__name__)


async def escalate(
    db: AsyncSession,
    ticket: Ticket,
    actor_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> Ticket:
    """Raise the escalation level and bump priority one tier.

    Unconditional once called: deciding when a ticket deserves escalation is
    up to the caller. Priority stays put at CRITICAL while the level still
    increases. The SLA deadline is not recomputed.
    """
    if ticket.status not in state_machine.ESCALATABLE:
        raise IllegalTransition(ticket.status.value, TicketStatus.escalated.value)

    old_level = ticket.escalation_level
    old_priority = ticket.priority
    ticket.escalation_level = old_level + 1
    ticket.priority = old_priority.next_tier()

    await ticket_service.change_status(db, ticket, TicketStatus.escalated, actor_id, event=None)

    await history_service.log_change(
        db,
        ticket_id=ticket.id,
        actor_id=actor_id,
        field_name="escalationLevel",
        old_value=old_level,
        new_value=ticket.escalation_level,
        change_type=ChangeType.escalated,
        description=reason,
    )
    if ticket.priority != old_priority:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name="priority",
            old_value=old_priority,
            new_value=ticket.priority,
            change_type=ChangeType.escalated,
        )

    tracking = await sla_service.get_tracking(db, ticket.id)
    if tracking is not None:
        tracking.escalated = True
        tracking.escalation_level = ticket.escalation_level
        await flush(db)

    logger.info(
        "Escalated ticket %s to level %d (priority %s -> %s)",
        ticket.ticket_number,
        ticket.escalation_level,
        old_priority.value,
        ticket.priority.value,
    )
    await notify(ticket, TicketEvent.escalated)
    return ticket
