"""Multi-target load path: type inference, identifiers, destinations and fan-out."""

from ingestra.loader.identifiers import (
    column_names,
    safe_identifier,
    sanitize_identifier,
    validate_identifier,
)
from ingestra.loader.multi_target import (
    MultiTargetLoader,
    TargetLoadResult,
    select_embedding_columns,
    summarize,
)
from ingestra.loader.sql_table import SqliteTableWriter, TableWriter
from ingestra.loader.type_inference import (
    ColumnType,
    coerce_value,
    infer_column_type,
    infer_column_types,
)

__all__ = [
    "ColumnType",
    "coerce_value",
    "infer_column_type",
    "infer_column_types",
    "column_names",
    "safe_identifier",
    "sanitize_identifier",
    "validate_identifier",
    "MultiTargetLoader",
    "TargetLoadResult",
    "select_embedding_columns",
    "summarize",
    "SqliteTableWriter",
    "TableWriter",
]
