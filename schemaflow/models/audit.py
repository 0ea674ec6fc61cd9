from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class SchemaEvent(BaseModel):
    """Stored in MongoDB 'schema_events' collection."""
    schema_id: str
    event_type: str  # "create", "update", "evolve", "rollback", "delete", "activate"
    actor: str
    version: int | None = None
    summary: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
