import json
import uuid
from typing import Any

from schemaflow.db.database import Database
from schemaflow.db.router import RoutableModel
from schemaflow.repositories.schema_repo import decode_json

TABLE = "normalized_records"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS normalized_records (
  id TEXT PRIMARY KEY,
  schema_id TEXT NOT NULL,
  data JSONB NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


async def ensure_table(db: Database) -> None:
    await db.execute(CREATE_TABLE_SQL)


async def table_exists(db: Database) -> bool:
    return await db.table_exists(TABLE)


async def fetch_batch(
    db: Database, schema_id: str, after_id: str | None, limit: int
) -> list[dict[str, Any]]:
    """Keyset page of ``{"id", "data"}`` rows ordered by id. ``data`` is left undecoded."""
    after_clause = " AND id > :after_id" if after_id is not None else ""
    params: dict[str, Any] = {"schema_id": schema_id, "limit": limit}
    if after_id is not None:
        params["after_id"] = after_id
    return await db.find_many(
        RoutableModel.NORMALIZED_RECORD,
        f"SELECT id, data FROM {TABLE} WHERE schema_id = :schema_id{after_clause} ORDER BY id LIMIT :limit",
        params,
        take=limit,
    )


def decode_record_data(value: Any) -> dict[str, Any]:
    data = decode_json(value)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"record data is a {type(data).__name__}, expected an object")
    return data


async def update_data(db: Database, record_id: str, data: dict[str, Any]) -> None:
    await db.execute(
        f"UPDATE {TABLE} SET data = CAST(:data AS JSONB) WHERE id = :id",
        {"id": record_id, "data": json.dumps(data, default=str)},
    )


async def insert_records(db: Database, schema_id: str, rows: list[dict[str, Any]]) -> int:
    payload = [
        {"id": f"record_{uuid.uuid4()}", "schema_id": schema_id, "data": json.dumps(row, default=str)}
        for row in rows
    ]
    return await db.create_many(
        RoutableModel.NORMALIZED_RECORD,
        f"INSERT INTO {TABLE} (id, schema_id, data) VALUES (:id, :schema_id, CAST(:data AS JSONB))",
        payload,
    )
