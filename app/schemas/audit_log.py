from typing import Optional
from datetime import datetime
import uuid

from app.schemas.base import BaseResponseSchema


class AuditLogResponse(BaseResponseSchema):
    """Audit trail entry."""
    id: uuid.UUID
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    reason: Optional[str] = None
    created_at: datetime
