import logging
from datetime import datetime, timezone

from schemaflow.db.database import Database
from schemaflow.errors import ConcurrentModificationError, PersistenceError, best_effort
from schemaflow.models.audit import SchemaEvent
from schemaflow.models.evolution import RollbackResult, VersionComparisonResult
from schemaflow.models.schema import GlobalSchema, SchemaVersion
from schemaflow.repositories import audit_repo, schema_repo, version_repo
from schemaflow.services import schema_diff

logger = logging.getLogger(__name__)


async def create_version(
    db: Database, schema: GlobalSchema, actor: str, comment: str | None = None
) -> SchemaVersion:
    """Snapshot ``schema.columns`` as the next version of ``schema.id``.

    The change log is the diff against the previous snapshot (empty for the
    first version). Raises PersistenceError if the snapshot cannot be stored,
    including when a concurrent writer already took the version number.
    """
    previous = await version_repo.get_latest(db, schema.id)
    change_log = []
    if previous is not None:
        comparison = schema_diff.compare_columns(previous.columns, schema.columns)
        change_log = schema_diff.change_log(comparison)

    version = SchemaVersion(
        schema_id=schema.id,
        version=previous.version + 1 if previous else 1,
        columns=[c.model_copy(deep=True) for c in schema.columns],
        created_by=actor,
        comment=comment,
        change_log=change_log,
    )
    await version_repo.insert_version(db, version)
    logger.info("Created version %d of schema %s (%d changes)", version.version, schema.id, len(change_log))
    return version


async def get_versions(db: Database, schema_id: str) -> list[SchemaVersion]:
    try:
        return await version_repo.list_versions(db, schema_id)
    except PersistenceError as e:
        logger.error("Error listing versions for schema %s: %s", schema_id, e.message)
        return []


async def get_version(db: Database, schema_id: str, version: int) -> SchemaVersion | None:
    try:
        return await version_repo.get_version(db, schema_id, version)
    except PersistenceError as e:
        logger.error("Error getting version %d of schema %s: %s", version, schema_id, e.message)
        return None


async def get_latest(db: Database, schema_id: str) -> SchemaVersion | None:
    try:
        return await version_repo.get_latest(db, schema_id)
    except PersistenceError as e:
        logger.error("Error getting latest version of schema %s: %s", schema_id, e.message)
        return None


async def rollback(db: Database, schema_id: str, target_version: int, actor: str) -> RollbackResult:
    """Restore the columns of ``target_version`` as a new forward version.

    History is append-only: the target snapshot is left untouched and the
    rollback itself is recorded as the newest version, in the same
    transaction as the schema row write.
    """
    try:
        target = await version_repo.get_version(db, schema_id, target_version)
        if target is None:
            return RollbackResult(success=False, message=f"Version {target_version} not found for schema {schema_id}")

        current = await schema_repo.get_schema(db, schema_id)
        if current is None:
            return RollbackResult(success=False, message=f"Schema {schema_id} not found")

        restored = current.model_copy(update={
            "columns": [c.model_copy(deep=True) for c in target.columns],
            "version": current.version + 1,
            "previous_version_id": current.id,
            "updated_at": datetime.now(timezone.utc),
        })
        try:
            async with db.transaction() as tx:
                if not await schema_repo.update_schema(tx, restored, expected_version=current.version):
                    raise ConcurrentModificationError(schema_id, current.version)
                snapshot = await create_version(tx, restored, actor, f"Rollback to version {target_version}")
        except ConcurrentModificationError:
            return RollbackResult(
                success=False,
                message=f"Schema {schema_id} was modified concurrently; rollback not applied",
            )
    except PersistenceError as e:
        logger.error("Error rolling back schema %s to version %d: %s", schema_id, target_version, e.message)
        return RollbackResult(success=False, message=e.message)

    await best_effort(
        "audit event",
        audit_repo.record_event(SchemaEvent(
            schema_id=schema_id,
            event_type="rollback",
            actor=actor,
            version=snapshot.version,
            summary=f"Rolled back to version {target_version}",
        )),
        schema_id=schema_id,
    )
    logger.info("Rolled back schema %s to version %d as version %d", schema_id, target_version, snapshot.version)
    return RollbackResult(
        success=True,
        message=f"Schema {schema_id} rolled back to version {target_version}",
        schema=restored,
        version=snapshot,
    )


async def compare_versions(
    db: Database,
    schema_id: str,
    from_version: int,
    to_version: int,
    generate_script: bool = False,
) -> VersionComparisonResult:
    try:
        older = await version_repo.get_version(db, schema_id, from_version)
        newer = await version_repo.get_version(db, schema_id, to_version)
    except PersistenceError as e:
        logger.error("Error loading versions of schema %s for comparison: %s", schema_id, e.message)
        return VersionComparisonResult(success=False, message=e.message)

    for number, found in ((from_version, older), (to_version, newer)):
        if found is None:
            return VersionComparisonResult(
                success=False, message=f"Version {number} not found for schema {schema_id}"
            )

    comparison = schema_diff.compare_columns(older.columns, newer.columns)
    return VersionComparisonResult(
        success=True,
        comparison=comparison,
        change_script=schema_diff.generate_change_script(comparison) if generate_script else None,
        from_version=older,
        to_version=newer,
    )
