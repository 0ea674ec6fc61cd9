"""Match incoming file columns to schema columns.

``identify_columns`` classifies every file column as an exact, fuzzy or
missing match and is what schema evolution uses to find new columns.
``suggest_mappings`` is the richer scoring used when proposing mappings to
a user: it also weighs substring containment, the column's original header
and type compatibility.
"""

from typing import Sequence

from schemaflow.models.mapping import (
    ColumnMapping,
    FileColumn,
    MappingSuggestionResult,
    MatchType,
)
from schemaflow.models.schema import ColumnType, SchemaColumn

FUZZY_THRESHOLD = 0.7
SUGGESTION_THRESHOLD = 0.5

NUMERIC_TYPES = {"integer", "int", "number", "float", "double", "decimal", "numeric"}
STRING_TYPES = {"text", "string", "varchar", "char"}
BOOLEAN_TYPES = {"boolean", "bool"}
DATE_TYPES = {"date", "datetime", "timestamp"}


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit insert/delete/substitute costs."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance / longest length, in [0, 1]. Two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def identify_columns(
    file_columns: Sequence[FileColumn],
    schema_columns: Sequence[SchemaColumn],
) -> list[ColumnMapping]:
    # Last schema column wins when two names differ only by case
    by_lower: dict[str, SchemaColumn] = {}
    for column in schema_columns:
        by_lower[column.name.lower()] = column

    mappings = []
    for file_column in file_columns:
        name = file_column.name.lower()
        exact = by_lower.get(name)
        if exact is not None:
            mappings.append(ColumnMapping(
                file_column=file_column, schema_column=exact, match_type=MatchType.EXACT, confidence=1.0,
            ))
            continue

        best: SchemaColumn | None = None
        best_score = 0.0
        for column in schema_columns:
            score = similarity(name, column.name.lower())
            if score > best_score and score > FUZZY_THRESHOLD:
                best, best_score = column, score

        if best is not None:
            mappings.append(ColumnMapping(
                file_column=file_column, schema_column=best, match_type=MatchType.FUZZY, confidence=best_score,
            ))
        else:
            mappings.append(ColumnMapping(file_column=file_column, match_type=MatchType.NONE, confidence=0.0))
    return mappings


def types_compatible(file_type: str, schema_type: str) -> bool:
    file_type, schema_type = file_type.lower(), schema_type.lower()
    if file_type == schema_type:
        return True
    for family in (NUMERIC_TYPES, STRING_TYPES, BOOLEAN_TYPES, DATE_TYPES):
        if file_type in family and schema_type in family:
            return True
    # A text column can hold anything
    return schema_type in STRING_TYPES


def _name_score(file_column: FileColumn, schema_name: str) -> tuple[float, str]:
    name = file_column.name.lower()
    original = file_column.original_name.lower()
    if name == schema_name:
        return 1.0, "Exact name match"
    if schema_name in name or name in schema_name:
        return 0.7, "Partial name match"
    if original == schema_name:
        return 0.9, "Original name match"
    if schema_name in original or original in schema_name:
        return 0.6, "Partial original name match"
    score = similarity(name, schema_name)
    if score > FUZZY_THRESHOLD:
        return score * 0.5, "Fuzzy name match"
    return 0.0, ""


def suggest_mappings(
    file_columns: Sequence[FileColumn],
    schema_columns: Sequence[SchemaColumn],
) -> MappingSuggestionResult:
    result = MappingSuggestionResult()
    for file_column in file_columns:
        best: SchemaColumn | None = None
        best_score = 0.0
        best_reason = ""

        for column in schema_columns:
            score, reason = _name_score(file_column, column.name.lower())
            if types_compatible(file_column.type, column.type):
                score += 0.3
                reason = f"{reason}, compatible types" if reason else "Compatible types"
            if score > best_score:
                best, best_score, best_reason = column, score, reason

        if best is not None and best_score > SUGGESTION_THRESHOLD:
            result.suggestions[file_column.name] = best.name
            result.confidence[file_column.name] = best_score
            result.reason[file_column.name] = best_reason
    return result


def map_file_type(file_type: str) -> str:
    """Schema type for a column first seen in an uploaded file."""
    file_type = file_type.lower()
    if file_type in NUMERIC_TYPES:
        return ColumnType.NUMERIC.value
    if file_type in BOOLEAN_TYPES:
        return ColumnType.BOOLEAN.value
    if file_type in DATE_TYPES:
        return ColumnType.TIMESTAMP.value
    return ColumnType.TEXT.value
