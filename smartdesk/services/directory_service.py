import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.exceptions import NotFound
from smartdesk.models.base import COMPLETED_STATUSES, UserRole
from smartdesk.models.tenant import Department, Tenant
from smartdesk.models.ticket import Ticket
from smartdesk.models.user import User


async def get_tenant(db: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFound("Tenant", tenant_id)
    return tenant


async def get_department(db: AsyncSession, department_id: uuid.UUID) -> Department:
    department = await db.get(Department, department_id)
    if department is None:
        raise NotFound("Department", department_id)
    return department


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


async def get_user_name(db: AsyncSession, user_id: uuid.UUID | None) -> str | None:
    """Display name for history rows; falls back to the id string."""
    if user_id is None:
        return None
    user = await db.get(User, user_id)
    return user.full_name if user else str(user_id)


async def get_department_name(db: AsyncSession, department_id: uuid.UUID | None) -> str | None:
    if department_id is None:
        return None
    department = await db.get(Department, department_id)
    return department.name if department else str(department_id)


async def least_busy_in_department(
    db: AsyncSession,
    department_id: uuid.UUID,
    limit: int = 1,
) -> list[tuple[User, int]]:
    """Active agents of a department ordered by how many open tickets they hold.

    Counts are read live without locking, so two concurrent callers can pick
    the same agent. Ties are broken by name, then id.
    """
    open_tickets = (
        select(func.count(Ticket.id))
        .where(
            Ticket.assigned_agent_id == User.id,
            Ticket.status.notin_(COMPLETED_STATUSES),
        )
        .correlate(User)
        .scalar_subquery()
    )
    result = await db.execute(
        select(User, open_tickets.label("open_tickets"))
        .where(
            User.department_id == department_id,
            User.role == UserRole.agent,
            User.is_active.is_(True),
        )
        .order_by(open_tickets.asc(), User.full_name.asc(), User.id.asc())
        .limit(limit)
    )
    return [(user, count) for user, count in result.all()]
