from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.config import settings
from smartdesk.models.base import TicketPriority, TicketStatus, utcnow
from smartdesk.services import escalation_service, sla_scanner, sla_service, ticket_service
from smartdesk.tasks import sla_monitor

pytestmark = pytest.mark.asyncio


# ---------------------------------------------------------------------------
# Violation marking
# ---------------------------------------------------------------------------


async def test_resolved_late_is_marked(db: AsyncSession, make_ticket, tenant_policies):
    late = await make_ticket(title="late", priority=TicketPriority.normal)
    on_time = await make_ticket(title="on time", priority=TicketPriority.normal)
    late.resolved_at = late.created_at + timedelta(hours=30)
    on_time.resolved_at = on_time.created_at + timedelta(hours=10)
    await db.flush()

    result = await sla_scanner.scan_violations(db)

    late_tracking = await sla_service.get_tracking(db, late.id)
    on_time_tracking = await sla_service.get_tracking(db, on_time.id)
    assert late_tracking.resolution_violated is True
    assert on_time_tracking.resolution_violated is False
    assert result.resolution_violations == 1


async def test_first_response_violation_is_sticky(db: AsyncSession, make_ticket, tenant_policies):
    ticket = await make_ticket(priority=TicketPriority.normal)
    tracking = await sla_service.get_tracking(db, ticket.id)
    ticket.first_response_at = tracking.first_response_deadline + timedelta(minutes=5)
    await db.flush()

    first = await sla_scanner.scan_violations(db)
    assert tracking.first_response_violated is True
    assert first.first_response_violations == 1

    # a later correction does not clear the flag
    ticket.first_response_at = ticket.created_at + timedelta(minutes=1)
    await db.flush()
    second = await sla_scanner.scan_violations(db)

    assert tracking.first_response_violated is True
    assert second.first_response_violations == 0


async def test_scan_walks_all_batches(db: AsyncSession, make_ticket, tenant_policies):
    tickets = [await make_ticket(title=f"t{i}") for i in range(5)]
    for ticket in tickets:
        ticket.resolved_at = ticket.created_at + timedelta(hours=48)
    await db.flush()

    result = await sla_scanner.scan_violations(db, batch_size=2)

    assert result.scanned == 5
    assert result.resolution_violations == 5


async def test_closing_late_marks_violation_immediately(db: AsyncSession, make_ticket, tenant_policies):
    ticket = await make_ticket(priority=TicketPriority.critical)
    tracking = await sla_service.get_tracking(db, ticket.id)
    tracking.deadline = ticket.created_at - timedelta(hours=1)
    await db.flush()

    await ticket_service.close_ticket(db, ticket, "Too late")

    assert tracking.resolution_violated is True


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def test_find_at_risk(db: AsyncSession, make_ticket, tenant):
    now = utcnow()
    soon = await make_ticket(title="soon")
    later = await make_ticket(title="later")
    overdue = await make_ticket(title="overdue")
    done = await make_ticket(title="done")
    soon.sla_deadline = now + timedelta(hours=1)
    later.sla_deadline = now + timedelta(hours=5)
    overdue.sla_deadline = now - timedelta(hours=1)
    done.sla_deadline = now + timedelta(minutes=30)
    await ticket_service.close_ticket(db, done, "Done")
    await db.flush()

    at_risk = await sla_scanner.find_at_risk(db, tenant.id, now=now)

    assert [t.id for t in at_risk] == [overdue.id, soon.id]


async def test_find_violated(db: AsyncSession, make_ticket, agent, tenant):
    now = utcnow()
    ignored = await make_ticket(title="ignored")
    answered = await make_ticket(title="answered")
    not_due = await make_ticket(title="not due")
    ignored.sla_deadline = now - timedelta(hours=1)
    answered.sla_deadline = now - timedelta(hours=1)
    not_due.sla_deadline = now + timedelta(hours=1)
    await ticket_service.assign_to_agent(db, answered, agent)
    await db.flush()

    violated = await sla_scanner.find_violated(db, tenant.id, now=now)

    assert [t.id for t in violated] == [ignored.id]


async def test_find_violated_paginates(db: AsyncSession, make_ticket, tenant):
    now = utcnow()
    tickets = [await make_ticket(title=f"t{i}") for i in range(3)]
    for i, ticket in enumerate(tickets):
        ticket.sla_deadline = now - timedelta(hours=3 - i)
    await db.flush()

    first_page = await sla_scanner.find_violated(db, tenant.id, now=now, limit=2)
    second_page = await sla_scanner.find_violated(db, tenant.id, now=now, limit=2, offset=2)

    assert [t.id for t in first_page + second_page] == [t.id for t in tickets]


# ---------------------------------------------------------------------------
# Monitor sweep
# ---------------------------------------------------------------------------


async def test_sweep_escalates_violated_tickets_once(db: AsyncSession, make_ticket, events):
    ticket = await make_ticket(priority=TicketPriority.normal)
    ticket.sla_deadline = utcnow() - timedelta(minutes=10)
    await db.flush()

    first = await sla_monitor.run_sweep(db)
    second = await sla_monitor.run_sweep(db)

    assert first["escalated"] == 1
    assert second["escalated"] == 0
    assert second["violated"] == 1
    assert ticket.status == TicketStatus.escalated
    assert ticket.escalation_level == 1
    assert ticket.priority == TicketPriority.high
    assert events.count((ticket.ticket_number, "SLA_VIOLATED")) == 1
    assert (ticket.ticket_number, "SLA_RISK") in events


async def test_sweep_without_auto_escalation(db: AsyncSession, make_ticket, monkeypatch):
    monkeypatch.setattr(settings, "sla_auto_escalate", False)
    ticket = await make_ticket()
    ticket.sla_deadline = utcnow() - timedelta(minutes=10)
    await db.flush()

    summary = await sla_monitor.run_sweep(db)

    assert summary["violated"] == 1
    assert summary["escalated"] == 0
    assert ticket.status == TicketStatus.new


async def test_sweep_carries_on_after_database_error(db: AsyncSession, make_ticket, monkeypatch):
    broken = await make_ticket(title="broken")
    healthy = await make_ticket(title="healthy")
    broken.sla_deadline = utcnow() - timedelta(hours=2)
    healthy.sla_deadline = utcnow() - timedelta(hours=1)
    await db.flush()
    escalate = escalation_service.escalate

    async def flaky_escalate(db, ticket, actor_id=None, reason=None):
        if ticket.id == broken.id:
            raise OperationalError("UPDATE tickets", {}, Exception("disk I/O error"))
        return await escalate(db, ticket, actor_id, reason)

    monkeypatch.setattr(escalation_service, "escalate", flaky_escalate)

    summary = await sla_monitor.run_sweep(db)

    assert summary["violated"] == 2
    assert summary["escalated"] == 1
    await db.refresh(broken)
    assert broken.status == TicketStatus.new
    assert healthy.status == TicketStatus.escalated
