import enum
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from smartdesk.database import flush
from smartdesk.models.base import ChangeType
from smartdesk.models.history import TicketHistory

logger = logging.getLogger(__name__)


def as_history_value(value: Any) -> str | None:
    """Render a field value the way it is stored in history rows."""
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


async def log_change(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID | None,
    field_name: str,
    old_value: Any,
    new_value: Any,
    change_type: ChangeType = ChangeType.field_changed,
    description: str | None = None,
) -> TicketHistory | None:
    """Append a history entry for a ticket change.

    The ticket's own pending changes are flushed first so a concurrency
    conflict still surfaces to the caller. The entry itself is written in a
    SAVEPOINT: if that insert fails it is logged and rolled back alone, and
    the ticket change stands.
    """
    await flush(db)

    entry = TicketHistory(
        ticket_id=ticket_id,
        actor_id=actor_id,
        field_name=field_name,
        old_value=as_history_value(old_value),
        new_value=as_history_value(new_value),
        change_type=change_type.value,
        description=description,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.exception(
            "Failed to append history for ticket %s (field %s)", ticket_id, field_name
        )
        return None
    return entry


async def get_history(db: AsyncSession, ticket_id: uuid.UUID) -> list[TicketHistory]:
    """Get all history entries for a ticket, newest first."""
    result = await db.execute(
        select(TicketHistory)
        .where(TicketHistory.ticket_id == ticket_id)
        .order_by(TicketHistory.created_at.desc())
        .options(selectinload(TicketHistory.actor))
    )
    return list(result.scalars().all())
