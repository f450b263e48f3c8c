"""Best-effort ticket event fan-out.

Delivery (email, websocket, chat) lives outside the lifecycle engine. Handlers
registered here are called after a state change has been applied; a failing
handler is logged and never undoes or blocks the change.
"""

import enum
import inspect
import logging
from collections.abc import Awaitable, Callable

from smartdesk.models.ticket import Ticket

logger = logging.getLogger(__name__)


class TicketEvent(str, enum.Enum):
    created = "CREATED"
    updated = "UPDATED"
    assigned = "ASSIGNED"
    escalated = "ESCALATED"
    closed = "CLOSED"
    rated = "RATED"
    pending_manager_approval = "PENDING_MANAGER_APPROVAL"
    pending_admin_approval = "PENDING_ADMIN_APPROVAL"
    manager_approved = "MANAGER_APPROVED"
    admin_approved = "ADMIN_APPROVED"
    approval_rejected = "APPROVAL_REJECTED"
    sla_risk = "SLA_RISK"
    sla_violated = "SLA_VIOLATED"


NotificationHandler = Callable[[Ticket, TicketEvent], Awaitable[None] | None]


def log_notification(ticket: Ticket, event: TicketEvent) -> None:
    logger.info("Ticket %s event %s", ticket.ticket_number, event.value)


_handlers: list[NotificationHandler] = [log_notification]


def register_handler(handler: NotificationHandler) -> None:
    _handlers.append(handler)


def unregister_handler(handler: NotificationHandler) -> None:
    if handler in _handlers:
        _handlers.remove(handler)


async def notify(ticket: Ticket, event: TicketEvent) -> None:
    for handler in list(_handlers):
        try:
            result = handler(ticket, event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Notification handler %r failed for ticket %s (%s)",
                handler,
                ticket.ticket_number,
                event.value,
            )
