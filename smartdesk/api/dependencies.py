import uuid

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from smartdesk.database import get_db
from smartdesk.models.user import User


async def get_actor(
    x_actor_id: uuid.UUID | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """The acting user named by the X-Actor-Id header, if any.

    Identity is trusted as given; system calls may omit the header.
    """
    if x_actor_id is None:
        return None
    user = await db.get(User, x_actor_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown or inactive actor"
        )
    return user


async def require_actor(actor: User | None = Depends(get_actor)) -> User:
    """Like get_actor, but the header is mandatory."""
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Actor-Id header required"
        )
    return actor


def actor_id(actor: User | None) -> uuid.UUID | None:
    return actor.id if actor else None
