from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from schemaflow.models.schema import SchemaColumn


class FileColumn(BaseModel):
    """Column descriptor supplied by the upload pipeline."""
    name: str
    original_name: str = ""
    type: str = "string"
    sample_values: list[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_original_name(self):
        if not self.original_name:
            self.original_name = self.name
        return self


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class ColumnMapping(BaseModel):
    file_column: FileColumn
    schema_column: SchemaColumn | None = None
    match_type: MatchType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class MappingSuggestionResult(BaseModel):
    # keyed by file column name
    suggestions: dict[str, str] = Field(default_factory=dict)  # -> schema column name
    confidence: dict[str, float] = Field(default_factory=dict)
    reason: dict[str, str] = Field(default_factory=dict)


class FieldMapping(BaseModel):
    file_column_name: str
    schema_column_name: str
    transformation: str | None = None  # uppercase, lowercase, trim, number, boolean, string
