import json
from typing import Any

from schemaflow.db.database import Database
from schemaflow.db.router import RoutableModel
from schemaflow.models.schema import SchemaVersion
from schemaflow.repositories.schema_repo import decode_json

TABLE = "schema_versions"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_versions (
  id TEXT PRIMARY KEY,
  schema_id TEXT NOT NULL,
  version INTEGER NOT NULL,
  columns JSONB NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
  created_by TEXT NOT NULL,
  comment TEXT,
  change_log JSONB,
  UNIQUE (schema_id, version)
)
"""

_COLUMNS = "id, schema_id, version, columns, created_at, created_by, comment, change_log"


def _row_to_version(row: dict[str, Any]) -> SchemaVersion:
    return SchemaVersion(
        **{
            **row,
            "columns": decode_json(row["columns"]) or [],
            "change_log": decode_json(row.get("change_log")) or [],
        }
    )


async def ensure_table(db: Database) -> None:
    await db.execute(CREATE_TABLE_SQL)
    # Tables created before change logs were recorded
    if not await db.column_exists(TABLE, "change_log"):
        await db.execute(f"ALTER TABLE {TABLE} ADD COLUMN change_log JSONB")


async def insert_version(db: Database, version: SchemaVersion) -> None:
    await db.execute(
        f"""
        INSERT INTO {TABLE} ({_COLUMNS})
        VALUES (:id, :schema_id, :version, CAST(:columns AS JSONB), :created_at,
                :created_by, :comment, CAST(:change_log AS JSONB))
        """,
        {
            "id": version.id,
            "schema_id": version.schema_id,
            "version": version.version,
            "columns": json.dumps([c.model_dump(mode="json") for c in version.columns]),
            "created_at": version.created_at,
            "created_by": version.created_by,
            "comment": version.comment,
            "change_log": json.dumps([c.model_dump(mode="json") for c in version.change_log]),
        },
    )


async def list_versions(db: Database, schema_id: str) -> list[SchemaVersion]:
    rows = await db.find_many(
        RoutableModel.SCHEMA_VERSION,
        f"SELECT {_COLUMNS} FROM {TABLE} WHERE schema_id = :schema_id ORDER BY version DESC",
        {"schema_id": schema_id},
    )
    return [_row_to_version(r) for r in rows]


async def get_version(db: Database, schema_id: str, version: int) -> SchemaVersion | None:
    row = await db.find_one(
        RoutableModel.SCHEMA_VERSION,
        f"SELECT {_COLUMNS} FROM {TABLE} WHERE schema_id = :schema_id AND version = :version",
        {"schema_id": schema_id, "version": version},
    )
    return _row_to_version(row) if row else None


async def get_latest(db: Database, schema_id: str) -> SchemaVersion | None:
    row = await db.find_one(
        RoutableModel.SCHEMA_VERSION,
        f"SELECT {_COLUMNS} FROM {TABLE} WHERE schema_id = :schema_id ORDER BY version DESC LIMIT 1",
        {"schema_id": schema_id},
    )
    return _row_to_version(row) if row else None


async def delete_versions(db: Database, schema_id: str) -> int:
    return await db.execute(f"DELETE FROM {TABLE} WHERE schema_id = :schema_id", {"schema_id": schema_id})
