import asyncio
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.config import settings
from smartdesk.database import async_session
from smartdesk.exceptions import SmartDeskError
from smartdesk.models.base import TicketStatus, utcnow
from smartdesk.models.ticket import Ticket
from smartdesk.services import escalation_service, sla_scanner, sla_service
from smartdesk.services.notification_service import TicketEvent, notify

logger = logging.getLogger(__name__)


async def _should_auto_escalate(db: AsyncSession, ticket: Ticket) -> bool:
    """Escalate a violated ticket once, not on every sweep."""
    if ticket.status == TicketStatus.escalated:
        return False
    tracking = await sla_service.get_tracking(db, ticket.id)
    if tracking is not None:
        return not tracking.escalated
    return ticket.escalation_level == 0


async def run_sweep(db: AsyncSession, now: datetime | None = None) -> dict:
    """One monitoring pass: mark violations, warn on at-risk, act on violated."""
    now = now or utcnow()
    batch = settings.sla_scan_batch_size
    scan = await sla_scanner.scan_violations(db, batch)

    at_risk = 0
    offset = 0
    while True:
        tickets = await sla_scanner.find_at_risk(db, now=now, limit=batch, offset=offset)
        for ticket in tickets:
            await notify(ticket, TicketEvent.sla_risk)
        at_risk += len(tickets)
        if len(tickets) < batch:
            break
        offset += batch

    violated = 0
    escalated = 0
    offset = 0
    while True:
        tickets = await sla_scanner.find_violated(db, now=now, limit=batch, offset=offset)
        for ticket in tickets:
            violated += 1
            # a rolled-back savepoint expires the ticket
            ticket_number = ticket.ticket_number
            try:
                if not await _should_auto_escalate(db, ticket):
                    continue
                if settings.sla_auto_escalate:
                    async with db.begin_nested():
                        await escalation_service.escalate(
                            db, ticket, reason="SLA deadline passed without a first response"
                        )
                    escalated += 1
                await notify(ticket, TicketEvent.sla_violated)
            except (SmartDeskError, SQLAlchemyError):
                logger.exception("Auto-escalation failed for ticket %s", ticket_number)
        if len(tickets) < batch:
            break
        offset += batch

    summary = {
        "scanned": scan.scanned,
        "new_violations": scan.newly_violated,
        "at_risk": at_risk,
        "violated": violated,
        "escalated": escalated,
    }
    logger.info(
        "SLA sweep complete: %d at risk, %d violated, %d escalated",
        at_risk,
        violated,
        escalated,
    )
    return summary


async def monitor_sla():
    """Runs every sla_scan_interval_seconds until cancelled."""
    while True:
        try:
            async with async_session() as db:
                await run_sweep(db)
                await db.commit()
        except Exception:
            logger.exception("SLA sweep failed")
        await asyncio.sleep(settings.sla_scan_interval_seconds)
