from typing import Any, Sequence

from pydantic import ValidationError as PydanticValidationError

from schemaflow.errors import ValidationError
from schemaflow.models.evolution import ModifiedColumn, SchemaComparison
from schemaflow.models.schema import ChangeType, SchemaChange, SchemaColumn

COMPARED_FIELDS = (
    "type",
    "description",
    "is_required",
    "is_primary_key",
    "is_foreign_key",
    "references_table",
    "references_column",
    "default_value",
    "validation_rules",
)

SQL_TYPES = {
    "text": "TEXT",
    "integer": "INTEGER",
    "numeric": "NUMERIC",
    "boolean": "BOOLEAN",
    "timestamp": "TIMESTAMP",
}


def _index(columns: Sequence[SchemaColumn] | None, label: str) -> dict[str, SchemaColumn]:
    if columns is None or isinstance(columns, (str, bytes, dict)):
        raise ValidationError(f"{label} columns must be a list of columns")
    index: dict[str, SchemaColumn] = {}
    for column in columns:
        if isinstance(column, dict):
            try:
                column = SchemaColumn.model_validate(column)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid column in {label} columns", detail=str(e)) from e
        if not isinstance(column, SchemaColumn):
            raise ValidationError(f"{label} columns must contain SchemaColumn entries")
        if column.name in index:
            raise ValidationError(f"Duplicate column name in {label} columns: {column.name}")
        index[column.name] = column
    return index


def changed_fields(before: SchemaColumn, after: SchemaColumn) -> list[str]:
    # ValidationRules compare structurally through pydantic equality
    return [f for f in COMPARED_FIELDS if getattr(before, f) != getattr(after, f)]


def compare_columns(
    old_columns: Sequence[SchemaColumn],
    new_columns: Sequence[SchemaColumn],
) -> SchemaComparison:
    old = _index(old_columns, "old")
    new = _index(new_columns, "new")

    comparison = SchemaComparison()
    for name, column in new.items():
        previous = old.get(name)
        if previous is None:
            comparison.added.append(column)
            continue
        fields = changed_fields(previous, column)
        if fields:
            comparison.modified.append(
                ModifiedColumn(column_name=name, before=previous, after=column, changed_fields=fields)
            )
        else:
            comparison.unchanged.append(column)

    comparison.removed.extend(column for name, column in old.items() if name not in new)
    return comparison


def change_log(comparison: SchemaComparison) -> list[SchemaChange]:
    return [
        *(SchemaChange(type=ChangeType.ADD, column_name=c.name, after=c) for c in comparison.added),
        *(SchemaChange(type=ChangeType.REMOVE, column_name=c.name, before=c) for c in comparison.removed),
        *(
            SchemaChange(type=ChangeType.MODIFY, column_name=m.column_name, before=m.before, after=m.after)
            for m in comparison.modified
        ),
    ]


def sql_type(column_type: str | None) -> str:
    return SQL_TYPES.get((column_type or "").lower(), "TEXT")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def sql_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def generate_change_script(comparison: SchemaComparison, table_name: str = "data") -> str:
    """Render the comparison as reviewable ALTER TABLE statements. Nothing is executed."""
    table = quote_identifier(table_name)
    blocks: list[str] = []

    for column in comparison.added:
        statement = f"ALTER TABLE {table} ADD COLUMN {quote_identifier(column.name)} {sql_type(column.type)}"
        if column.is_required:
            statement += " NOT NULL"
        if column.default_value is not None:
            statement += f" DEFAULT {sql_literal(column.default_value)}"
        blocks.append(f"-- Add column {column.name}\n{statement};\n")

    for mod in comparison.modified:
        alter = f"ALTER TABLE {table} ALTER COLUMN {quote_identifier(mod.column_name)}"
        lines = [f"-- Modify column {mod.column_name}"]
        if mod.after.type != mod.before.type:
            lines.append(f"{alter} TYPE {sql_type(mod.after.type)};")
        if mod.after.is_required != mod.before.is_required:
            lines.append(f"{alter} {'SET' if mod.after.is_required else 'DROP'} NOT NULL;")
        if mod.after.default_value != mod.before.default_value:
            if mod.after.default_value is not None:
                lines.append(f"{alter} SET DEFAULT {sql_literal(mod.after.default_value)};")
            else:
                lines.append(f"{alter} DROP DEFAULT;")
        blocks.append("\n".join(lines) + "\n")

    for column in comparison.removed:
        blocks.append(f"-- Remove column {column.name}\nALTER TABLE {table} DROP COLUMN {quote_identifier(column.name)};\n")

    return "\n".join(blocks)
