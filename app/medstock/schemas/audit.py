from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    user_id: UUID | None
    department_id: UUID | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str
    entity_id: str | None
    before: dict | None = Field(default=None, validation_alias="before_payload")
    after: dict | None = Field(default=None, validation_alias="after_payload")
    metadata: dict | None = Field(default=None, validation_alias="event_metadata")
    result: str
    created_at: datetime


class AuditEventListResponse(BaseModel):
    rows: list[AuditEventResponse]
    total: int
    limit: int
    offset: int
