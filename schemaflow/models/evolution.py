from pydantic import BaseModel, Field

from schemaflow.errors import SideEffectResult
from schemaflow.models.mapping import ColumnMapping
from schemaflow.models.schema import GlobalSchema, SchemaColumn, SchemaVersion


class ModifiedColumn(BaseModel):
    column_name: str
    before: SchemaColumn
    after: SchemaColumn
    changed_fields: list[str] = Field(default_factory=list)


class SchemaComparison(BaseModel):
    added: list[SchemaColumn] = Field(default_factory=list)
    removed: list[SchemaColumn] = Field(default_factory=list)
    modified: list[ModifiedColumn] = Field(default_factory=list)
    unchanged: list[SchemaColumn] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)


class EvolutionOptions(BaseModel):
    add_new_columns: bool = True
    migrate_data: bool = False
    update_existing_records: bool = False
    create_new_version: bool = True


class MigrationStatus(BaseModel):
    records_updated: int = 0
    records_skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class EvolutionResult(BaseModel):
    success: bool
    message: str
    schema_: GlobalSchema | None = Field(default=None, alias="schema")
    new_columns: list[SchemaColumn] = Field(default_factory=list)
    mappings: list[ColumnMapping] = Field(default_factory=list)
    version: SchemaVersion | None = None  # snapshot of the pre-evolution state
    migration_status: MigrationStatus | None = None
    side_effects: list[SideEffectResult] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RollbackResult(BaseModel):
    success: bool
    message: str
    schema_: GlobalSchema | None = Field(default=None, alias="schema")
    version: SchemaVersion | None = None

    model_config = {"populate_by_name": True}


class VersionComparisonResult(BaseModel):
    success: bool
    message: str = ""
    comparison: SchemaComparison | None = None
    change_script: str | None = None
    from_version: SchemaVersion | None = None
    to_version: SchemaVersion | None = None
