"""
Column type inference and value coercion.

Inference samples the first 100 non-empty values of a column and applies
the first matching rule: number (DECIMAL if any sample contains '.', else
INTEGER), DATE, BOOLEAN, UUID, then TEXT.
"""

import math
import re
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence


SAMPLE_SIZE = 100

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}|^\d{2}/\d{2}/\d{4}")
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
TRUE_TOKENS = ("true", "yes", "1")
FALSE_TOKENS = ("false", "no", "0")
BOOLEAN_TOKENS = TRUE_TOKENS + FALSE_TOKENS


class ColumnType(str, Enum):
    INTEGER = "INTEGER"
    DECIMAL = "DECIMAL"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"
    UUID = "UUID"
    TEXT = "TEXT"


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    text = str(value).strip()
    # float() also takes digit separators and inf/nan words
    if "_" in text:
        return False
    try:
        parsed = float(text)
    except ValueError:
        return False
    return math.isfinite(parsed)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def infer_column_type(values: Iterable[Any]) -> ColumnType:
    """Infer one column's type. An all-empty column is TEXT."""
    sample = []
    for value in values:
        if _is_empty(value):
            continue
        sample.append(value)
        if len(sample) == SAMPLE_SIZE:
            break

    if not sample:
        return ColumnType.TEXT

    if all(_is_number(v) for v in sample):
        if any("." in _text(v) for v in sample):
            return ColumnType.DECIMAL
        return ColumnType.INTEGER

    texts = [_text(v) for v in sample]
    if all(DATE_PATTERN.match(t) for t in texts):
        return ColumnType.DATE
    if all(t.lower() in BOOLEAN_TOKENS for t in texts):
        return ColumnType.BOOLEAN
    if all(UUID_PATTERN.match(t) for t in texts):
        return ColumnType.UUID
    return ColumnType.TEXT


def infer_column_types(
    rows: Sequence[Mapping[str, Any]],
    headers: Sequence[str],
) -> dict[str, ColumnType]:
    """Infer a ColumnType for every header."""
    return {h: infer_column_type(row.get(h) for row in rows) for h in headers}


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """
    Convert a parsed value to the Python value bound for a column type.

    Empty values become None.

    Raises:
        ValueError: If the value cannot be represented as column_type
    """
    if _is_empty(value):
        return None

    if column_type == ColumnType.INTEGER:
        if isinstance(value, bool):
            raise ValueError(f"invalid integer: {value!r}")
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise ValueError(f"invalid integer: {value!r}")
        text = str(value).strip()
        if "_" in text:
            raise ValueError(f"invalid integer: {value!r}")
        try:
            return int(text)
        except ValueError:
            parsed = float(text) if _is_number(text) else None
            if parsed is not None and parsed.is_integer():
                return int(parsed)
            raise ValueError(f"invalid integer: {value!r}")

    if column_type == ColumnType.DECIMAL:
        if not _is_number(value):
            raise ValueError(f"invalid decimal: {value!r}")
        return float(value)

    if column_type == ColumnType.BOOLEAN:
        token = _text(value).strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        raise ValueError(f"invalid boolean: {value!r}")

    if column_type == ColumnType.DATE:
        text = _text(value).strip()
        if not DATE_PATTERN.match(text):
            raise ValueError(f"invalid date: {value!r}")
        return text

    if column_type == ColumnType.UUID:
        text = _text(value).strip()
        if not UUID_PATTERN.match(text):
            raise ValueError(f"invalid uuid: {value!r}")
        return text.lower()

    if isinstance(value, (dict, list)):
        raise ValueError(f"nested value in text column: {value!r}")
    return _text(value)
