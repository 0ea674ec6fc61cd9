import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ColumnType(str, Enum):
    TEXT = "text"
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


class ValidationRules(BaseModel):
    """Structured per-column validation rules. Equality is field-by-field (deep)."""
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    allowed_values: list[Any] | None = None

    model_config = {"extra": "forbid"}


class SchemaColumn(BaseModel):
    name: str  # identity key within one schema, case-sensitive
    type: str = ColumnType.TEXT.value  # ColumnType value, or any other type name
    description: str | None = None
    is_required: bool = False
    is_primary_key: bool = False
    is_foreign_key: bool = False
    references_table: str | None = None
    references_column: str | None = None
    default_value: Any = None
    validation_rules: ValidationRules | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _type_value(cls, v):
        return v.value if isinstance(v, Enum) else v


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GlobalSchema(BaseModel):
    """Stored in PostgreSQL 'global_schemas'."""
    id: str = Field(default_factory=lambda: f"schema_{uuid.uuid4()}")
    user_id: str
    project_id: str
    name: str
    description: str | None = None
    columns: list[SchemaColumn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_active: bool = True
    version: int = Field(default=1, ge=1)
    previous_version_id: str | None = None


class ChangeType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    MODIFY = "modify"


class SchemaChange(BaseModel):
    type: ChangeType
    column_name: str
    before: SchemaColumn | None = None  # remove / modify
    after: SchemaColumn | None = None  # add / modify


class SchemaVersion(BaseModel):
    """Immutable snapshot stored in PostgreSQL 'schema_versions'."""
    id: str = Field(default_factory=lambda: f"schema_version_{uuid.uuid4()}")
    schema_id: str
    version: int = Field(ge=1)
    columns: list[SchemaColumn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    created_by: str
    comment: str | None = None
    change_log: list[SchemaChange] = Field(default_factory=list)

    model_config = {"frozen": True}
