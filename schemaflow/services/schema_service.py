import logging
from datetime import datetime, timezone
from typing import Sequence

from schemaflow.db.database import Database
from schemaflow.errors import ConcurrentModificationError, NotFoundError, ValidationError, best_effort
from schemaflow.models.audit import SchemaEvent
from schemaflow.models.schema import GlobalSchema, SchemaColumn
from schemaflow.repositories import audit_repo, schema_repo, version_repo
from schemaflow.services import version_service

logger = logging.getLogger(__name__)


def _check_unique_names(columns: Sequence[SchemaColumn]) -> None:
    seen: set[str] = set()
    for column in columns:
        if column.name in seen:
            raise ValidationError(f"Duplicate column name: {column.name}")
        seen.add(column.name)


async def _audit(event: SchemaEvent) -> None:
    await best_effort("audit event", audit_repo.record_event(event), schema_id=event.schema_id)


async def create_schema(
    db: Database,
    user_id: str,
    project_id: str,
    name: str,
    columns: Sequence[SchemaColumn],
    description: str | None = None,
) -> GlobalSchema:
    if not name.strip():
        raise ValidationError("Schema name is required")
    _check_unique_names(columns)

    schema = GlobalSchema(
        user_id=user_id,
        project_id=project_id,
        name=name.strip(),
        description=description,
        columns=list(columns),
    )
    await schema_repo.insert_schema(db, schema)
    logger.info("Created schema %s (%s) with %d columns", schema.id, schema.name, len(schema.columns))
    await _audit(SchemaEvent(schema_id=schema.id, event_type="create", actor=user_id, version=1, summary=schema.name))
    return schema


async def get_schema(db: Database, schema_id: str) -> GlobalSchema | None:
    return await schema_repo.get_schema(db, schema_id)


async def require_schema(db: Database, schema_id: str) -> GlobalSchema:
    schema = await schema_repo.get_schema(db, schema_id)
    if schema is None:
        raise NotFoundError(f"Schema '{schema_id}' not found")
    return schema


async def list_schemas(db: Database, project_id: str, active_only: bool = False) -> list[GlobalSchema]:
    return await schema_repo.list_for_project(db, project_id, active_only)


async def update_schema(
    db: Database,
    schema: GlobalSchema,
    columns: Sequence[SchemaColumn],
    actor: str,
    comment: str | None = None,
) -> GlobalSchema:
    """Replace the column set of ``schema`` as loaded by the caller.

    The prior state is snapshotted in the same transaction as the write;
    raises ConcurrentModificationError, leaving both untouched, if the stored
    version moved on since ``schema`` was read.
    """
    _check_unique_names(columns)
    updated = schema.model_copy(update={
        "columns": list(columns),
        "version": schema.version + 1,
        "previous_version_id": schema.id,
        "updated_at": datetime.now(timezone.utc),
    })
    async with db.transaction() as tx:
        await version_service.create_version(tx, schema, actor, comment or "Schema updated")
        if not await schema_repo.update_schema(tx, updated, expected_version=schema.version):
            raise ConcurrentModificationError(schema.id, schema.version)

    await _audit(SchemaEvent(schema_id=schema.id, event_type="update", actor=actor, version=updated.version, summary=comment or ""))
    return updated


async def delete_schema(db: Database, schema_id: str, actor: str) -> bool:
    async with db.transaction() as tx:
        if not await schema_repo.delete_schema(tx, schema_id):
            return False
        removed_versions = await version_repo.delete_versions(tx, schema_id)
    logger.info("Deleted schema %s and %d versions", schema_id, removed_versions)
    await _audit(SchemaEvent(schema_id=schema_id, event_type="delete", actor=actor))
    return True


async def set_active_schema(db: Database, project_id: str, schema_id: str, actor: str) -> bool:
    schema = await schema_repo.get_schema(db, schema_id)
    if schema is None or schema.project_id != project_id:
        return False
    activated = await schema_repo.set_active(db, project_id, schema_id)
    if activated:
        await _audit(SchemaEvent(schema_id=schema_id, event_type="activate", actor=actor, version=schema.version))
    return activated
