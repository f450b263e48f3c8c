"""Resolve -> manager approval -> admin approval -> close.

The ticket sits in RESOLVED while an approval is pending; the stage is kept in
``approval_state``. Every stage goes through ticket_service.change_status so
activity and history bookkeeping match ordinary status changes. Who may act
on which stage is decided by the caller.
"""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.exceptions import IllegalTransition, ValidationError
from smartdesk.models.base import ApprovalState, ChangeType, TicketStatus, utcnow
from smartdesk.models.ticket import Ticket
from smartdesk.services import history_service, ticket_service
from smartdesk.services.notification_service import TicketEvent, notify

logger = logging.getLogger(__name__)

_RESOLVABLE = frozenset(
    {TicketStatus.open, TicketStatus.in_progress, TicketStatus.pending, TicketStatus.escalated}
)


def _require_stage(ticket: Ticket, *stages: ApprovalState) -> None:
    if ticket.approval_state not in stages:
        raise IllegalTransition(
            ticket.approval_state.value,
            "/".join(s.value for s in stages),
            f"Ticket {ticket.ticket_number} is not awaiting that approval "
            f"(approval state: {ticket.approval_state.value})",
        )


def _require_pending(ticket: Ticket, *stages: ApprovalState) -> None:
    """A decision is only taken on a RESOLVED ticket at the given stage."""
    if ticket.status != TicketStatus.resolved:
        raise IllegalTransition(
            ticket.status.value,
            TicketStatus.resolved.value,
            f"Ticket {ticket.ticket_number} is {ticket.status.value}, not awaiting approval",
        )
    _require_stage(ticket, *stages)


async def _record_stage(
    db: AsyncSession,
    ticket: Ticket,
    old_state: ApprovalState,
    actor_id: uuid.UUID | None,
    change_type: ChangeType,
    description: str | None = None,
) -> None:
    await history_service.log_change(
        db,
        ticket_id=ticket.id,
        actor_id=actor_id,
        field_name="approvalState",
        old_value=old_state,
        new_value=ticket.approval_state,
        change_type=change_type,
        description=description,
    )


async def resolve_for_approval(
    db: AsyncSession,
    ticket: Ticket,
    resolution_summary: str,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    if not resolution_summary or not resolution_summary.strip():
        raise ValidationError("A resolution summary is required")
    if ticket.status not in _RESOLVABLE:
        raise IllegalTransition(
            ticket.status.value,
            TicketStatus.resolved.value,
            f"Ticket {ticket.ticket_number} cannot be submitted for approval "
            f"from status {ticket.status.value}",
        )
    _require_stage(ticket, ApprovalState.none, ApprovalState.rejected)

    old_state = ticket.approval_state
    old_summary = ticket.resolution_summary
    ticket.pre_approval_status = ticket.status
    ticket.resolution_summary = ticket_service.clean_text(resolution_summary)
    ticket.resolution_requested_by_id = actor_id
    ticket.resolution_requested_at = utcnow()
    ticket.approval_state = ApprovalState.pending_manager

    await ticket_service.change_status(db, ticket, TicketStatus.resolved, actor_id, event=None)
    if ticket.resolution_summary != old_summary:
        await history_service.log_change(
            db,
            ticket_id=ticket.id,
            actor_id=actor_id,
            field_name="resolutionSummary",
            old_value=old_summary,
            new_value=ticket.resolution_summary,
        )
    await _record_stage(db, ticket, old_state, actor_id, ChangeType.approval_requested)

    logger.info("Ticket %s resolved, awaiting manager approval", ticket.ticket_number)
    await notify(ticket, TicketEvent.pending_manager_approval)
    return ticket


async def approve_by_manager(
    db: AsyncSession,
    ticket: Ticket,
    manager_id: uuid.UUID,
    comment: str | None = None,
) -> Ticket:
    _require_pending(ticket, ApprovalState.pending_manager)

    old_state = ticket.approval_state
    ticket.approval_state = ApprovalState.pending_admin
    ticket.manager_approved_by_id = manager_id
    ticket.manager_approved_at = utcnow()
    ticket.manager_comment = ticket_service.clean_text(comment)

    await ticket_service.change_status(db, ticket, TicketStatus.resolved, manager_id, event=None)
    await _record_stage(
        db, ticket, old_state, manager_id, ChangeType.approved, ticket.manager_comment
    )

    logger.info("Ticket %s approved by manager, awaiting admin", ticket.ticket_number)
    await notify(ticket, TicketEvent.manager_approved)
    await notify(ticket, TicketEvent.pending_admin_approval)
    return ticket


async def approve_by_admin(
    db: AsyncSession,
    ticket: Ticket,
    admin_id: uuid.UUID,
    comment: str | None = None,
) -> Ticket:
    _require_pending(ticket, ApprovalState.pending_admin)

    old_state = ticket.approval_state
    ticket.approval_state = ApprovalState.approved
    ticket.admin_approved_by_id = admin_id
    ticket.admin_approved_at = utcnow()
    ticket.admin_comment = ticket_service.clean_text(comment)

    await ticket_service.close_ticket(db, ticket, None, admin_id)
    await _record_stage(db, ticket, old_state, admin_id, ChangeType.approved, ticket.admin_comment)

    logger.info("Ticket %s approved by admin and closed", ticket.ticket_number)
    await notify(ticket, TicketEvent.admin_approved)
    return ticket


async def reject_approval(
    db: AsyncSession,
    ticket: Ticket,
    reason: str,
    actor_id: uuid.UUID | None = None,
) -> Ticket:
    """Send the ticket back one stage.

    A manager rejection returns the ticket to the status it had before it was
    submitted; an admin rejection returns it to the manager.
    """
    if reason is None or not reason.strip():
        raise ValidationError("A rejection reason is required")
    _require_pending(ticket, ApprovalState.pending_manager, ApprovalState.pending_admin)

    old_state = ticket.approval_state
    reason = ticket_service.clean_text(reason.strip())

    if old_state == ApprovalState.pending_manager:
        target = ticket.pre_approval_status or TicketStatus.in_progress
        ticket.approval_state = ApprovalState.rejected
        ticket.pre_approval_status = None
        await ticket_service.change_status(db, ticket, target, actor_id, event=None)
    else:
        ticket.approval_state = ApprovalState.pending_manager
        ticket.manager_approved_by_id = None
        ticket.manager_approved_at = None
        await ticket_service.change_status(db, ticket, TicketStatus.resolved, actor_id, event=None)

    await _record_stage(db, ticket, old_state, actor_id, ChangeType.approval_rejected, reason)

    logger.info(
        "Ticket %s approval rejected at %s stage", ticket.ticket_number, old_state.value
    )
    await notify(ticket, TicketEvent.approval_rejected)
    return ticket
