"""Ticket status graph and the bookkeeping each transition implies.

Pure functions over a Ticket; persistence and history are handled by
ticket_service.change_status, the only caller that mutates status.
"""

from datetime import datetime

from smartdesk.exceptions import IllegalTransition
from smartdesk.models.base import ApprovalState, TicketStatus
from smartdesk.models.ticket import Ticket

_WORKING = frozenset(
    {TicketStatus.open, TicketStatus.in_progress, TicketStatus.pending}
)

TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.new: _WORKING
    | {TicketStatus.resolved, TicketStatus.escalated, TicketStatus.closed},
    TicketStatus.open: (_WORKING - {TicketStatus.open})
    | {TicketStatus.resolved, TicketStatus.escalated, TicketStatus.closed},
    TicketStatus.in_progress: (_WORKING - {TicketStatus.in_progress})
    | {TicketStatus.resolved, TicketStatus.escalated, TicketStatus.closed},
    TicketStatus.pending: (_WORKING - {TicketStatus.pending})
    | {TicketStatus.resolved, TicketStatus.escalated, TicketStatus.closed},
    TicketStatus.escalated: _WORKING | {TicketStatus.resolved, TicketStatus.closed},
    # Reopen, or roll back a rejected resolution to where work stood
    TicketStatus.resolved: _WORKING | {TicketStatus.escalated, TicketStatus.closed},
    TicketStatus.closed: frozenset(),
}

# Statuses escalate() may start from
ESCALATABLE = frozenset(
    {
        TicketStatus.new,
        TicketStatus.open,
        TicketStatus.in_progress,
        TicketStatus.pending,
        TicketStatus.escalated,
    }
)


PENDING_APPROVAL = frozenset({ApprovalState.pending_manager, ApprovalState.pending_admin})


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    """Staying in the same status is always allowed and only refreshes activity."""
    return current == target or target in TRANSITIONS[current]


def check_transition(current: TicketStatus, target: TicketStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)


def check_ticket_transition(ticket: Ticket, target: TicketStatus) -> None:
    """Transition table plus the approval hold.

    While a manager or admin decision is pending the ticket stays RESOLVED;
    only the approval workflow may move it on, after clearing the hold.
    """
    check_transition(ticket.status, target)
    if ticket.approval_state in PENDING_APPROVAL and target != TicketStatus.resolved:
        raise IllegalTransition(
            ticket.status.value,
            target.value,
            f"Ticket {ticket.ticket_number} is awaiting "
            f"{ticket.approval_state.value.removeprefix('pending_')} approval; "
            "approve or reject it first",
        )


def apply_status(ticket: Ticket, target: TicketStatus, now: datetime) -> list[str]:
    """Move the ticket to target and stamp lifecycle timestamps.

    Timestamps are only ever filled in, never overwritten. Returns the names
    of the timestamp fields that were set.
    """
    check_ticket_transition(ticket, target)
    previous = ticket.status
    stamped: list[str] = []

    if target == TicketStatus.open:
        if previous == TicketStatus.new and ticket.first_response_at is None:
            ticket.first_response_at = now
            stamped.append("first_response_at")
    elif target == TicketStatus.resolved:
        if ticket.resolved_at is None:
            ticket.resolved_at = now
            stamped.append("resolved_at")
    elif target == TicketStatus.closed:
        if ticket.closed_at is None:
            ticket.closed_at = now
            stamped.append("closed_at")
        # closing implies resolution
        if ticket.resolved_at is None:
            ticket.resolved_at = now
            stamped.append("resolved_at")

    ticket.status = target
    ticket.last_activity_at = now
    return stamped
