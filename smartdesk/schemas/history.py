import uuid
from datetime import datetime

from pydantic import BaseModel


class HistoryResponse(BaseModel):
    id: uuid.UUID
    ticket_id: uuid.UUID
    actor_id: uuid.UUID | None
    actor_name: str | None = None
    field_name: str
    old_value: str | None
    new_value: str | None
    change_type: str
    description: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
