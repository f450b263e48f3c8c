import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.exceptions import MissingDepartment, NoAvailableAgent
from smartdesk.models.ticket import Ticket
from smartdesk.services import directory_service, ticket_service

logger = logging.getLogger(__name__)


async def auto_assign(
    db: AsyncSession,
    ticket: Ticket,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    """Hand the ticket to the least busy agent of its department.

    Best effort only: no lock is taken, so concurrent calls for the same
    department may both pick the same agent.
    """
    if ticket.department_id is None:
        raise MissingDepartment(
            f"Ticket {ticket.ticket_number} has no department to assign within"
        )

    candidates = await directory_service.least_busy_in_department(db, ticket.department_id)
    if not candidates:
        raise NoAvailableAgent(
            f"No active agents in department {ticket.department_id}",
            {"department_id": str(ticket.department_id)},
        )

    agent, open_tickets = candidates[0]
    logger.info(
        "Auto-assigning ticket %s to %s (%d open tickets)",
        ticket.ticket_number,
        agent.full_name,
        open_tickets,
    )
    return await ticket_service.assign_to_agent(db, ticket, agent, actor_id)
