"""Detection side of SLA monitoring.

Queries here only read, and ``scan_violations`` only sets violation flags.
Acting on the results (escalating, alerting) is left to the caller, see
``smartdesk.tasks.sla_monitor``.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.config import settings
from smartdesk.database import flush
from smartdesk.models.base import COMPLETED_STATUSES, utcnow
from smartdesk.models.sla import SlaTracking
from smartdesk.models.ticket import Ticket
from smartdesk.services import sla_service

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    scanned: int = 0
    first_response_violations: int = 0
    resolution_violations: int = 0

    @property
    def newly_violated(self) -> int:
        return self.first_response_violations + self.resolution_violations


async def find_at_risk(
    db: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    now: datetime | None = None,
    window_hours: float | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Ticket]:
    """Unfinished tickets whose deadline falls before now + window.

    Tickets already past their deadline are included.
    """
    now = now or utcnow()
    if window_hours is None:
        window_hours = settings.sla_risk_window_hours
    risk_time = now + timedelta(hours=window_hours)

    query = select(Ticket).where(
        Ticket.sla_deadline.isnot(None),
        Ticket.sla_deadline < risk_time,
        Ticket.status.notin_(COMPLETED_STATUSES),
    )
    if tenant_id is not None:
        query = query.where(Ticket.tenant_id == tenant_id)
    result = await db.execute(
        query.order_by(Ticket.sla_deadline.asc(), Ticket.id.asc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def find_violated(
    db: AsyncSession,
    tenant_id: uuid.UUID | None = None,
    now: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Ticket]:
    """Unfinished tickets past their deadline that never got a first response."""
    now = now or utcnow()
    query = select(Ticket).where(
        Ticket.sla_deadline.isnot(None),
        Ticket.sla_deadline < now,
        Ticket.first_response_at.is_(None),
        Ticket.status.notin_(COMPLETED_STATUSES),
    )
    if tenant_id is not None:
        query = query.where(Ticket.tenant_id == tenant_id)
    result = await db.execute(
        query.order_by(Ticket.sla_deadline.asc(), Ticket.id.asc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def scan_violations(db: AsyncSession, batch_size: int | None = None) -> ScanResult:
    """One pass of violation marking over all tracked tickets.

    Walks SlaTracking rows in id order, one batch at a time, and flushes each
    batch. Rows whose flags are both already set are skipped.
    """
    batch_size = batch_size or settings.sla_scan_batch_size
    scan = ScanResult()
    last_id: uuid.UUID | None = None

    while True:
        query = (
            select(SlaTracking, Ticket)
            .join(Ticket, Ticket.id == SlaTracking.ticket_id)
            .where(
                or_(
                    SlaTracking.first_response_violated.is_(False),
                    SlaTracking.resolution_violated.is_(False),
                )
            )
            .order_by(SlaTracking.id.asc())
            .limit(batch_size)
        )
        if last_id is not None:
            query = query.where(SlaTracking.id > last_id)
        rows = (await db.execute(query)).all()
        if not rows:
            break

        for tracking, ticket in rows:
            scan.scanned += 1
            first_before = tracking.first_response_violated
            resolution_before = tracking.resolution_violated
            if sla_service.mark_violation_if_breached(ticket, tracking):
                if tracking.first_response_violated and not first_before:
                    scan.first_response_violations += 1
                if tracking.resolution_violated and not resolution_before:
                    scan.resolution_violations += 1
        await flush(db)

        last_id = rows[-1][0].id
        if len(rows) < batch_size:
            break

    logger.info(
        "SLA violation scan: %d tracked tickets checked, %d new first-response "
        "and %d new resolution violations",
        scan.scanned,
        scan.first_response_violations,
        scan.resolution_violations,
    )
    return scan
