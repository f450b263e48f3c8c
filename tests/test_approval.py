import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from smartdesk.database import enable_sqlite_savepoints
from smartdesk.exceptions import ConcurrencyConflict, IllegalTransition, ValidationError
from smartdesk.models import Base, Department, Tenant, User
from smartdesk.models.base import ApprovalState, ChangeType, TicketStatus, UserRole
from smartdesk.schemas.ticket import TicketCreate
from smartdesk.services import approval_service, history_service, ticket_service

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def worked_ticket(db: AsyncSession, make_ticket, agent):
    """An assigned ticket that is being worked on."""
    ticket = await make_ticket()
    await ticket_service.assign_to_agent(db, ticket, agent)
    await ticket_service.change_status(db, ticket, TicketStatus.in_progress)
    return ticket


async def test_full_approval_round_trip(db: AsyncSession, worked_ticket, agent, manager, admin, events):
    ticket = worked_ticket

    await approval_service.resolve_for_approval(db, ticket, "Rebooted the router", agent.id)
    assert ticket.status == TicketStatus.resolved
    assert ticket.approval_state == ApprovalState.pending_manager
    assert ticket.resolution_summary == "Rebooted the router"

    await approval_service.approve_by_manager(db, ticket, manager.id, "Looks good")
    assert ticket.status == TicketStatus.resolved
    assert ticket.approval_state == ApprovalState.pending_admin
    assert ticket.manager_approved_by_id == manager.id

    await approval_service.approve_by_admin(db, ticket, admin.id, "Approved")
    assert ticket.status == TicketStatus.closed
    assert ticket.approval_state == ApprovalState.approved
    assert ticket.admin_approved_by_id == admin.id
    assert ticket.resolved_at <= ticket.closed_at
    assert ticket.resolution_summary == "Rebooted the router"

    sent = [event for number, event in events if number == ticket.ticket_number]
    for expected in ("PENDING_MANAGER_APPROVAL", "MANAGER_APPROVED", "ADMIN_APPROVED", "CLOSED"):
        assert expected in sent


async def test_manager_rejection_restores_previous_status(db: AsyncSession, worked_ticket, agent, manager):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)

    await approval_service.reject_approval(db, ticket, "Customer still affected", manager.id)

    assert ticket.status == TicketStatus.in_progress
    assert ticket.approval_state == ApprovalState.rejected
    history = await history_service.get_history(db, ticket.id)
    rejections = [h for h in history if h.change_type == ChangeType.approval_rejected.value]
    assert len(rejections) == 1
    assert rejections[0].description == "Customer still affected"
    assert rejections[0].actor_id == manager.id


async def test_admin_rejection_returns_to_manager(db: AsyncSession, worked_ticket, agent, manager, admin):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)
    await approval_service.approve_by_manager(db, ticket, manager.id)

    await approval_service.reject_approval(db, ticket, "Missing root cause", admin.id)

    assert ticket.status == TicketStatus.resolved
    assert ticket.approval_state == ApprovalState.pending_manager
    assert ticket.manager_approved_by_id is None


@pytest.mark.parametrize("reason", ["", "   "])
async def test_rejection_requires_reason(db: AsyncSession, worked_ticket, agent, manager, reason):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)
    version = ticket.version

    with pytest.raises(ValidationError):
        await approval_service.reject_approval(db, ticket, reason, manager.id)

    assert ticket.status == TicketStatus.resolved
    assert ticket.approval_state == ApprovalState.pending_manager
    assert ticket.version == version


async def test_resubmit_after_rejection(db: AsyncSession, worked_ticket, agent, manager):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "First try", agent.id)
    await approval_service.reject_approval(db, ticket, "Not yet", manager.id)

    await approval_service.resolve_for_approval(db, ticket, "Second try", agent.id)

    assert ticket.approval_state == ApprovalState.pending_manager
    assert ticket.pre_approval_status == TicketStatus.in_progress
    assert ticket.resolution_summary == "Second try"


async def test_admin_cannot_skip_manager(db: AsyncSession, worked_ticket, agent, admin):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)

    with pytest.raises(IllegalTransition):
        await approval_service.approve_by_admin(db, ticket, admin.id)
    assert ticket.status == TicketStatus.resolved


async def test_approval_without_pending_request(db: AsyncSession, worked_ticket, manager):
    with pytest.raises(IllegalTransition):
        await approval_service.approve_by_manager(db, worked_ticket, manager.id)
    with pytest.raises(IllegalTransition):
        await approval_service.reject_approval(db, worked_ticket, "No", manager.id)


async def test_cannot_resolve_new_ticket_for_approval(db: AsyncSession, make_ticket, agent):
    ticket = await make_ticket()

    with pytest.raises(IllegalTransition):
        await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)
    assert ticket.status == TicketStatus.new


async def test_resolve_requires_summary(db: AsyncSession, worked_ticket, agent):
    with pytest.raises(ValidationError):
        await approval_service.resolve_for_approval(db, worked_ticket, " ", agent.id)


async def test_resolve_records_summary_change(db: AsyncSession, worked_ticket, agent):
    await approval_service.resolve_for_approval(db, worked_ticket, "Swapped the disk", agent.id)

    history = await history_service.get_history(db, worked_ticket.id)
    summaries = [
        (h.old_value, h.new_value, h.change_type)
        for h in history
        if h.field_name == "resolutionSummary"
    ]
    assert summaries == [(None, "Swapped the disk", ChangeType.field_changed.value)]


# ---------------------------------------------------------------------------
# Approval hold
# ---------------------------------------------------------------------------


async def test_status_change_refused_while_awaiting_manager(db: AsyncSession, worked_ticket, agent):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)

    with pytest.raises(IllegalTransition):
        await ticket_service.change_status(db, ticket, TicketStatus.in_progress)
    with pytest.raises(IllegalTransition):
        await ticket_service.close_ticket(db, ticket, "Skipping approval")

    assert ticket.status == TicketStatus.resolved
    assert ticket.approval_state == ApprovalState.pending_manager
    assert ticket.resolution_summary == "Fixed"


async def test_close_refused_while_awaiting_admin(db: AsyncSession, worked_ticket, agent, manager):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)
    await approval_service.approve_by_manager(db, ticket, manager.id)

    with pytest.raises(IllegalTransition):
        await ticket_service.close_ticket(db, ticket, "Skipping the admin")

    assert ticket.status == TicketStatus.resolved
    assert ticket.closed_at is None


async def test_reopen_allowed_after_rejection(db: AsyncSession, worked_ticket, agent, manager):
    ticket = worked_ticket
    await approval_service.resolve_for_approval(db, ticket, "Fixed", agent.id)
    await approval_service.reject_approval(db, ticket, "Not fixed", manager.id)

    await ticket_service.change_status(db, ticket, TicketStatus.pending)

    assert ticket.status == TicketStatus.pending


async def test_approval_requires_resolved_status(db: AsyncSession, worked_ticket, manager):
    ticket = worked_ticket
    ticket.approval_state = ApprovalState.pending_manager

    with pytest.raises(IllegalTransition):
        await approval_service.approve_by_manager(db, ticket, manager.id)
    assert ticket.status == TicketStatus.in_progress
    assert ticket.manager_approved_by_id is None


# ---------------------------------------------------------------------------
# Concurrent approvals
# ---------------------------------------------------------------------------


async def _ticket_awaiting_manager(db: AsyncSession):
    """Seed a tenant with two managers and a ticket submitted for approval."""
    tenant = Tenant(name="Globex")
    db.add(tenant)
    await db.flush()
    department = Department(tenant_id=tenant.id, name="Service Desk")
    db.add(department)
    await db.flush()

    def _user(full_name: str, role: UserRole) -> User:
        return User(
            tenant_id=tenant.id,
            department_id=department.id,
            email=f"{full_name.lower().replace(' ', '.')}@globex.example",
            full_name=full_name,
            role=role,
        )

    agent = _user("Sam Agent", UserRole.agent)
    first_manager = _user("Morgan Manager", UserRole.manager)
    second_manager = _user("Riley Manager", UserRole.manager)
    db.add_all([agent, first_manager, second_manager])
    await db.flush()

    ticket = await ticket_service.create_ticket(
        db,
        TicketCreate(tenant_id=tenant.id, title="VPN down", description="No tunnel"),
    )
    await ticket_service.assign_to_agent(db, ticket, agent)
    await approval_service.resolve_for_approval(db, ticket, "Renewed the cert", agent.id)
    await db.commit()
    return ticket.id, first_manager.id, second_manager.id


async def test_concurrent_manager_approvals_conflict(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}")
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with sessions() as first, sessions() as second:
            ticket_id, first_manager_id, second_manager_id = await _ticket_awaiting_manager(first)

            # Both managers read the ticket before either approves
            theirs = await ticket_service.get_ticket(second, ticket_id)
            await second.commit()
            ours = await ticket_service.get_ticket(first, ticket_id)

            await approval_service.approve_by_manager(first, ours, first_manager_id)
            await first.commit()

            with pytest.raises(ConcurrencyConflict):
                await approval_service.approve_by_manager(second, theirs, second_manager_id)
            await second.rollback()

            await second.refresh(theirs)
            assert theirs.approval_state == ApprovalState.pending_admin
            assert theirs.manager_approved_by_id == first_manager_id
    finally:
        await engine.dispose()
