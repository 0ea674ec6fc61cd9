import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError

from schemaflow.config import settings
from schemaflow.db.database import Database
from schemaflow.errors import ConcurrentModificationError, PersistenceError, ValidationError, best_effort
from schemaflow.models.audit import SchemaEvent
from schemaflow.models.evolution import EvolutionOptions, EvolutionResult, MigrationStatus
from schemaflow.models.mapping import ColumnMapping, FileColumn, MatchType
from schemaflow.models.schema import ColumnType, GlobalSchema, SchemaColumn
from schemaflow.repositories import audit_repo, record_repo, schema_repo
from schemaflow.services import column_matcher, version_service

logger = logging.getLogger(__name__)


def _coerce_file_columns(candidates: Any) -> list[FileColumn]:
    if not isinstance(candidates, (list, tuple)):
        raise ValidationError("Candidate file columns must be a list")
    try:
        return [c if isinstance(c, FileColumn) else FileColumn.model_validate(c) for c in candidates]
    except PydanticValidationError as e:
        raise ValidationError("Invalid file column", detail=str(e)) from e


def new_columns_from(mappings: Sequence[ColumnMapping]) -> list[SchemaColumn]:
    """Schema columns for every unmatched file column, one per distinct name."""
    columns: dict[str, SchemaColumn] = {}
    for mapping in mappings:
        if mapping.match_type is not MatchType.NONE:
            continue
        file_column = mapping.file_column
        columns.setdefault(file_column.name, SchemaColumn(
            name=file_column.name,
            type=column_matcher.map_file_type(file_column.type),
            description=f"Added from file column: {file_column.original_name}",
            is_required=False,
        ))
    return list(columns.values())


def default_for_type(column_type: str) -> Any:
    column_type = column_type.lower()
    if column_type == ColumnType.NUMERIC.value:
        return 0
    if column_type == ColumnType.BOOLEAN.value:
        return False
    return None


async def evolve(
    db: Database,
    schema: GlobalSchema,
    candidate_columns: Sequence[FileColumn],
    actor: str,
    options: EvolutionOptions | None = None,
) -> EvolutionResult:
    """Add a file's unmatched columns to ``schema``.

    The pre-evolution snapshot and the schema row are written in one
    transaction, and the row write is conditional on the schema version the
    caller loaded; a lost race leaves neither behind.
    Store failures come back as ``success=False``; only unexpected errors
    propagate.
    """
    options = options or EvolutionOptions()
    file_columns = _coerce_file_columns(candidate_columns)

    mappings = column_matcher.identify_columns(file_columns, schema.columns)
    new_columns = new_columns_from(mappings) if options.add_new_columns else []
    if not new_columns:
        return EvolutionResult(
            success=True,
            message="Schema is up to date. No new columns to add.",
            schema=schema,
            mappings=mappings,
        )

    evolved = schema.model_copy(update={
        "columns": [*schema.columns, *new_columns],
        "version": schema.version + 1,
        "previous_version_id": schema.id,
        "updated_at": datetime.now(timezone.utc),
    })

    snapshot = None
    try:
        async with db.transaction() as tx:
            if options.create_new_version:
                snapshot = await version_service.create_version(
                    tx, schema, actor, f"Added {len(new_columns)} new columns from file upload"
                )
            if not await schema_repo.update_schema(tx, evolved, expected_version=schema.version):
                raise ConcurrentModificationError(schema.id, schema.version)
    except ConcurrentModificationError:
        logger.warning("Schema %s moved past version %d; evolution discarded", schema.id, schema.version)
        return EvolutionResult(
            success=False,
            message=f"Schema {schema.id} was modified concurrently (expected version {schema.version})",
            mappings=mappings,
        )
    except PersistenceError as e:
        logger.error("Error evolving schema %s: %s", schema.id, e.message)
        return EvolutionResult(success=False, message=e.message, mappings=mappings)

    logger.info("Evolved schema %s to version %d with %d new columns", schema.id, evolved.version, len(new_columns))

    migration_status = None
    if options.migrate_data:
        migration_status = await migrate_data(db, schema.id, new_columns, options.update_existing_records)

    audit = await best_effort(
        "audit event",
        audit_repo.record_event(SchemaEvent(
            schema_id=schema.id,
            event_type="evolve",
            actor=actor,
            version=evolved.version,
            summary=f"Added {len(new_columns)} new columns",
            details={"columns": [c.name for c in new_columns]},
        )),
        schema_id=schema.id,
    )

    success, message = True, f"Schema evolved successfully. Added {len(new_columns)} new columns."
    if migration_status and migration_status.errors and migration_status.records_updated == 0:
        success = False
        message = f"Schema evolved but data migration failed: {migration_status.errors[0]}"

    return EvolutionResult(
        success=success,
        message=message,
        schema=evolved,
        new_columns=new_columns,
        mappings=mappings,
        version=snapshot,
        migration_status=migration_status,
        side_effects=[audit],
    )


async def migrate_data(
    db: Database,
    schema_id: str,
    new_columns: Sequence[SchemaColumn],
    update_existing: bool = False,
    batch_size: int | None = None,
) -> MigrationStatus:
    """Backfill defaults for ``new_columns`` on stored rows, one keyset batch at a time.

    A row that fails is counted as skipped and its error collected; the
    remaining rows are still processed.
    """
    batch_size = batch_size or settings.migration_batch_size
    status = MigrationStatus()
    try:
        if not await record_repo.table_exists(db):
            status.errors.append("Normalized records table does not exist")
            return status

        after_id = None
        while True:
            batch = await record_repo.fetch_batch(db, schema_id, after_id, batch_size)
            for record in batch:
                await _backfill_record(db, record, new_columns, update_existing, status)
            if len(batch) < batch_size:
                break
            after_id = batch[-1]["id"]
    except PersistenceError as e:
        logger.error("Error migrating data for schema %s: %s", schema_id, e.message)
        status.errors.append(f"Error migrating data: {e.message}")

    logger.info(
        "Migration for schema %s: %d updated, %d skipped, %d errors",
        schema_id, status.records_updated, status.records_skipped, len(status.errors),
    )
    return status


async def _backfill_record(
    db: Database,
    record: dict[str, Any],
    new_columns: Sequence[SchemaColumn],
    update_existing: bool,
    status: MigrationStatus,
) -> None:
    record_id = record["id"]
    try:
        data = record_repo.decode_record_data(record["data"])
        changed = False
        for column in new_columns:
            if column.name not in data or update_existing:
                data[column.name] = default_for_type(column.type)
                changed = True
        if not changed:
            status.records_skipped += 1
            return
        await record_repo.update_data(db, record_id, data)
        status.records_updated += 1
    except (PersistenceError, ValueError) as e:
        logger.warning("Error migrating data for record %s: %s", record_id, e)
        status.errors.append(f"Error migrating data for record {record_id}: {e}")
        status.records_skipped += 1
