import logging
from typing import Any, Sequence

import pandas as pd

from schemaflow.db.database import Database
from schemaflow.models.mapping import ColumnMapping, FieldMapping, MatchType
from schemaflow.models.schema import GlobalSchema, SchemaColumn
from schemaflow.repositories import record_repo
from schemaflow.services.column_matcher import BOOLEAN_TYPES, DATE_TYPES, NUMERIC_TYPES

logger = logging.getLogger(__name__)

TRUE_STRINGS = {"true", "yes", "1"}


def mappings_from_matches(matches: Sequence[ColumnMapping]) -> list[FieldMapping]:
    return [
        FieldMapping(file_column_name=m.file_column.name, schema_column_name=m.schema_column.name)
        for m in matches
        if m.match_type is not MatchType.NONE and m.schema_column is not None
    ]


def apply_transformation(value: Any, transformation: str | None) -> Any:
    if value is None or not transformation:
        return value
    if transformation == "uppercase":
        return str(value).upper()
    if transformation == "lowercase":
        return str(value).lower()
    if transformation == "trim":
        return str(value).strip()
    if transformation == "number":
        return pd.to_numeric(value, errors="coerce")
    if transformation == "boolean":
        return bool(value)
    if transformation == "string":
        return str(value)
    return value


def convert_value(value: Any, column_type: str) -> Any:
    """Coerce ``value`` to the schema column type. Unconvertible values become None."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    column_type = column_type.lower()
    if column_type in ("integer", "int"):
        number = pd.to_numeric(value, errors="coerce")
        return None if pd.isna(number) else int(number)
    if column_type in NUMERIC_TYPES:
        number = pd.to_numeric(value, errors="coerce")
        return None if pd.isna(number) else float(number)
    if column_type in BOOLEAN_TYPES:
        if isinstance(value, str):
            return value.strip().lower() in TRUE_STRINGS
        return bool(value)
    if column_type in DATE_TYPES:
        stamp = pd.to_datetime(value, errors="coerce")
        return None if pd.isna(stamp) else stamp.isoformat()
    return str(value)


def apply_mappings(
    rows: Sequence[dict[str, Any]],
    mappings: Sequence[FieldMapping],
    schema_columns: Sequence[SchemaColumn],
) -> list[dict[str, Any]]:
    """Rename, transform and type-convert file rows into schema-shaped rows.

    File columns without a mapping, or mapped to an unknown schema column, are dropped.
    """
    columns = {c.name: c for c in schema_columns}
    by_file = {m.file_column_name: m for m in mappings if m.schema_column_name in columns}

    mapped_rows = []
    for row in rows:
        mapped: dict[str, Any] = {}
        for file_name, value in row.items():
            mapping = by_file.get(file_name)
            if mapping is None:
                continue
            column = columns[mapping.schema_column_name]
            mapped[column.name] = convert_value(apply_transformation(value, mapping.transformation), column.type)
        mapped_rows.append(mapped)
    return mapped_rows


async def ingest_rows(
    db: Database,
    schema: GlobalSchema,
    rows: Sequence[dict[str, Any]],
    mappings: Sequence[FieldMapping],
) -> int:
    """Store mapped rows for ``schema``; large payloads are routed as bulk writes."""
    mapped = apply_mappings(rows, mappings, schema.columns)
    inserted = await record_repo.insert_records(db, schema.id, mapped)
    logger.info("Stored %d records for schema %s", inserted, schema.id)
    return inserted
