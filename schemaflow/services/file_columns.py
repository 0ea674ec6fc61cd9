import re

import pandas as pd

from schemaflow.models.mapping import FileColumn

SAMPLE_SIZE = 5


def sanitize_column_name(name: str) -> str:
    """Make column names safe for SQL."""
    name = re.sub(r"[^\w]", "_", str(name).strip().lower())
    if name and name[0].isdigit():
        name = f"col_{name}"
    return name or "unnamed"


def dtype_to_type(dtype) -> str:
    dtype_str = str(dtype)
    if "bool" in dtype_str:
        return "boolean"
    if "int" in dtype_str:
        return "integer"
    if "float" in dtype_str:
        return "float"
    if "datetime" in dtype_str:
        return "datetime"
    return "string"


def describe_dataframe(df: pd.DataFrame) -> list[FileColumn]:
    """FileColumn descriptors for a parsed upload, keeping the original headers."""
    sample = df.head(SAMPLE_SIZE)
    columns = []
    for original in df.columns:
        values = sample[original].dropna().tolist()[:SAMPLE_SIZE]
        columns.append(FileColumn(
            name=sanitize_column_name(original),
            original_name=str(original),
            type=dtype_to_type(df[original].dtype),
            sample_values=values,
        ))
    return columns
