import json
from typing import Any

from schemaflow.db.database import Database
from schemaflow.db.router import RoutableModel
from schemaflow.models.schema import GlobalSchema

TABLE = "global_schemas"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS global_schemas (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  project_id TEXT NOT NULL,
  name TEXT NOT NULL,
  description TEXT,
  columns JSONB NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
  updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
  is_active BOOLEAN NOT NULL DEFAULT TRUE,
  version INTEGER NOT NULL DEFAULT 1,
  previous_version_id TEXT
)
"""

_COLUMNS = (
    "id, user_id, project_id, name, description, columns, created_at, updated_at, "
    "is_active, version, previous_version_id"
)


def decode_json(value: Any) -> Any:
    """JSONB arrives as text from asyncpg unless a codec is registered."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _columns_json(schema: GlobalSchema) -> str:
    return json.dumps([c.model_dump(mode="json") for c in schema.columns])


def _row_to_schema(row: dict[str, Any]) -> GlobalSchema:
    return GlobalSchema(**{**row, "columns": decode_json(row["columns"]) or []})


async def ensure_table(db: Database) -> None:
    await db.execute(CREATE_TABLE_SQL)


async def insert_schema(db: Database, schema: GlobalSchema) -> None:
    await db.execute(
        f"""
        INSERT INTO {TABLE} ({_COLUMNS})
        VALUES (:id, :user_id, :project_id, :name, :description, CAST(:columns AS JSONB),
                :created_at, :updated_at, :is_active, :version, :previous_version_id)
        """,
        {**schema.model_dump(exclude={"columns"}), "columns": _columns_json(schema)},
    )


async def get_schema(db: Database, schema_id: str) -> GlobalSchema | None:
    row = await db.find_one(
        RoutableModel.GLOBAL_SCHEMA,
        f"SELECT {_COLUMNS} FROM {TABLE} WHERE id = :id",
        {"id": schema_id},
    )
    return _row_to_schema(row) if row else None


async def list_for_project(db: Database, project_id: str, active_only: bool = False) -> list[GlobalSchema]:
    active_clause = " AND is_active = TRUE" if active_only else ""
    rows = await db.find_many(
        RoutableModel.GLOBAL_SCHEMA,
        f"SELECT {_COLUMNS} FROM {TABLE} WHERE project_id = :project_id{active_clause} ORDER BY created_at DESC",
        {"project_id": project_id},
    )
    return [_row_to_schema(r) for r in rows]


async def update_schema(db: Database, schema: GlobalSchema, expected_version: int | None = None) -> bool:
    """Write the schema row. With ``expected_version`` the write only lands if the
    stored version still matches; returns False when nothing was updated."""
    version_clause = " AND version = :expected_version" if expected_version is not None else ""
    params = {
        "id": schema.id,
        "name": schema.name,
        "description": schema.description,
        "columns": _columns_json(schema),
        "is_active": schema.is_active,
        "version": schema.version,
        "previous_version_id": schema.previous_version_id,
    }
    if expected_version is not None:
        params["expected_version"] = expected_version
    updated = await db.execute(
        f"""
        UPDATE {TABLE}
        SET name = :name,
            description = :description,
            columns = CAST(:columns AS JSONB),
            updated_at = CURRENT_TIMESTAMP,
            is_active = :is_active,
            version = :version,
            previous_version_id = :previous_version_id
        WHERE id = :id{version_clause}
        """,
        params,
    )
    return updated > 0


async def delete_schema(db: Database, schema_id: str) -> bool:
    deleted = await db.execute(f"DELETE FROM {TABLE} WHERE id = :id", {"id": schema_id})
    return deleted > 0


async def set_active(db: Database, project_id: str, schema_id: str) -> bool:
    async with db.transaction() as tx:
        await tx.execute(
            f"UPDATE {TABLE} SET is_active = FALSE WHERE project_id = :project_id",
            {"project_id": project_id},
        )
        activated = await tx.execute(
            f"UPDATE {TABLE} SET is_active = TRUE WHERE id = :id AND project_id = :project_id",
            {"id": schema_id, "project_id": project_id},
        )
    return activated > 0
