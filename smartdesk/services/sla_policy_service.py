import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.database import flush
from smartdesk.exceptions import DuplicatePolicy, NotFound, ValidationError
from smartdesk.models.base import PRIORITY_ORDER, TicketPriority
from smartdesk.models.sla import SlaPolicy, SlaTracking
from smartdesk.schemas.sla import SlaPolicyCreate, SlaPolicyUpdate
from smartdesk.services import directory_service

logger = logging.getLogger(__name__)


async def _find_active(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    department_id: uuid.UUID | None,
    priority: TicketPriority,
) -> SlaPolicy | None:
    query = select(SlaPolicy).where(
        SlaPolicy.tenant_id == tenant_id,
        SlaPolicy.priority == priority,
        SlaPolicy.is_active.is_(True),
    )
    if department_id is None:
        query = query.where(SlaPolicy.department_id.is_(None))
    else:
        query = query.where(SlaPolicy.department_id == department_id)
    result = await db.execute(query.order_by(SlaPolicy.created_at.asc()).limit(1))
    return result.scalar_one_or_none()


async def find_applicable_policy(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    department_id: uuid.UUID | None,
    priority: TicketPriority,
) -> SlaPolicy | None:
    """Department-specific policy first, then the tenant-wide default."""
    if department_id is not None:
        policy = await _find_active(db, tenant_id, department_id, priority)
        if policy is not None:
            return policy
    return await _find_active(db, tenant_id, None, priority)


async def resolve_policy(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    department_id: uuid.UUID | None,
    priority: TicketPriority,
) -> SlaPolicy:
    policy = await find_applicable_policy(db, tenant_id, department_id, priority)
    if policy is None:
        raise NotFound("SLA policy", f"{tenant_id}/{department_id}/{priority.value}")
    return policy


async def _ensure_unique(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    department_id: uuid.UUID | None,
    priority: TicketPriority,
    exclude_id: uuid.UUID | None = None,
) -> None:
    existing = await _find_active(db, tenant_id, department_id, priority)
    if existing is not None and existing.id != exclude_id:
        raise DuplicatePolicy(
            "An active SLA policy for this tenant, department and priority already exists",
            {"policy_id": str(existing.id)},
        )


async def _check_department(
    db: AsyncSession, tenant_id: uuid.UUID, department_id: uuid.UUID | None
) -> None:
    if department_id is None:
        return
    department = await directory_service.get_department(db, department_id)
    if department.tenant_id != tenant_id:
        raise ValidationError("Department does not belong to the policy's tenant")


async def list_policies(db: AsyncSession, tenant_id: uuid.UUID) -> list[SlaPolicy]:
    result = await db.execute(select(SlaPolicy).where(SlaPolicy.tenant_id == tenant_id))
    rows = list(result.scalars().all())
    # Tenant-wide defaults first, then by priority tier
    rows.sort(key=lambda p: (p.department_id is not None, str(p.department_id), PRIORITY_ORDER[p.priority]))
    return rows


async def get_policy(db: AsyncSession, policy_id: uuid.UUID) -> SlaPolicy:
    policy = await db.get(SlaPolicy, policy_id)
    if policy is None:
        raise NotFound("SLA policy", policy_id)
    return policy


async def create_policy(db: AsyncSession, data: SlaPolicyCreate) -> SlaPolicy:
    await directory_service.get_tenant(db, data.tenant_id)
    await _check_department(db, data.tenant_id, data.department_id)
    if data.is_active:
        await _ensure_unique(db, data.tenant_id, data.department_id, data.priority)

    policy = SlaPolicy(**data.model_dump())
    db.add(policy)
    await flush(db)
    logger.info(
        "Created SLA policy %s for tenant %s (%s)", policy.name, policy.tenant_id, policy.priority.value
    )
    return policy


async def update_policy(
    db: AsyncSession, policy_id: uuid.UUID, data: SlaPolicyUpdate
) -> SlaPolicy:
    """Partial update. Existing trackings keep the deadline they were given."""
    policy = await get_policy(db, policy_id)
    changes = data.model_dump(exclude_unset=True)

    department_id = changes.get("department_id", policy.department_id)
    priority = changes.get("priority", policy.priority)
    is_active = changes.get("is_active", policy.is_active)

    if "department_id" in changes:
        await _check_department(db, policy.tenant_id, department_id)
    if is_active:
        await _ensure_unique(db, policy.tenant_id, department_id, priority, exclude_id=policy.id)

    for field, value in changes.items():
        setattr(policy, field, value)
    await flush(db)
    return policy


async def deactivate_policy(db: AsyncSession, policy_id: uuid.UUID) -> SlaPolicy:
    policy = await get_policy(db, policy_id)
    policy.is_active = False
    await flush(db)
    return policy


async def delete_policy(db: AsyncSession, policy_id: uuid.UUID) -> None:
    policy = await get_policy(db, policy_id)
    result = await db.execute(
        select(func.count()).select_from(SlaTracking).where(SlaTracking.sla_policy_id == policy.id)
    )
    if result.scalar():
        raise ValidationError("SLA policy is referenced by tracked tickets; deactivate it instead")
    await db.delete(policy)
    await flush(db)
