"""
Row transforms applied before loading.

Order: column transforms, then filter, then dedupe. Inputs are never
mutated; new row dicts and a new header list are returned.
"""

import logging
from typing import Any, Optional

from ingestra.schemas import ColumnTransform, FilterCondition, TransformConfig

logger = logging.getLogger(__name__)


def _cast(value: Any, to: str) -> Any:
    if value is None or value == "":
        return None
    if to in ("int", "integer"):
        return int(float(value))
    if to in ("float", "decimal", "number"):
        return float(value)
    if to in ("bool", "boolean"):
        return str(value).strip().lower() in ("true", "yes", "1")
    return str(value)


def _apply_column(rows, headers, transform: ColumnTransform):
    column = transform.column
    params = transform.params

    if transform.operation == "rename":
        new_name = params["to"]
        headers = [new_name if h == column else h for h in headers]
        rows = [{(new_name if k == column else k): v for k, v in row.items()} for row in rows]
        return rows, headers

    if transform.operation == "default":
        fill = params.get("value")
        if column not in headers:
            headers = headers + [column]
        return [
            {**row, column: fill if row.get(column) in (None, "") else row[column]}
            for row in rows
        ], headers

    if transform.operation == "cast":
        to = params.get("to", "text")
        result = []
        for row in rows:
            new_row = dict(row)
            try:
                new_row[column] = _cast(row.get(column), to)
            except (TypeError, ValueError, OverflowError):
                # Left as-is for the loader to type or reject
                logger.debug(f"Could not cast {column}={row.get(column)!r} to {to}")
            result.append(new_row)
        return result, headers

    string_ops = {
        "trim": str.strip,
        "lowercase": str.lower,
        "uppercase": str.upper,
    }
    op = string_ops[transform.operation]
    return [
        {**row, column: op(row[column]) if isinstance(row.get(column), str) else row.get(column)}
        for row in rows
    ], headers


def _compare(value: Any, other: Any) -> Optional[int]:
    try:
        left, right = float(value), float(other)
    except (TypeError, ValueError):
        if value is None or other is None:
            return None
        left, right = str(value), str(other)
    return (left > right) - (left < right)


def matches(row: dict[str, Any], condition: FilterCondition) -> bool:
    value = row.get(condition.column)
    op = condition.operator

    if op == "not_null":
        return value is not None and value != ""
    if op == "contains":
        return value is not None and str(condition.value) in str(value)
    if op == "eq":
        return value == condition.value or _compare(value, condition.value) == 0
    if op == "ne":
        return not (value == condition.value or _compare(value, condition.value) == 0)

    cmp = _compare(value, condition.value)
    if cmp is None:
        return False
    return {
        "gt": cmp > 0,
        "lt": cmp < 0,
        "gte": cmp >= 0,
        "lte": cmp <= 0,
    }[op]


def apply_transforms(
    rows: list[dict[str, Any]],
    headers: list[str],
    transform: Optional[TransformConfig],
) -> tuple[list[dict[str, Any]], list[str]]:
    """Apply a TransformConfig. Returns (rows, headers)."""
    if transform is None:
        return list(rows), list(headers)

    rows, headers = list(rows), list(headers)
    for column_transform in transform.transforms:
        rows, headers = _apply_column(rows, headers, column_transform)

    if transform.filter is not None and transform.filter.conditions:
        combine = any if transform.filter.logic == "or" else all
        before = len(rows)
        rows = [r for r in rows if combine(matches(r, c) for c in transform.filter.conditions)]
        logger.info(f"Filter kept {len(rows)} of {before} rows")

    if transform.dedupe is not None:
        columns = transform.dedupe.columns
        ordered = rows if transform.dedupe.keep_first else list(reversed(rows))
        seen = set()
        kept = []
        for row in ordered:
            key = tuple(str(row.get(c)) for c in columns)
            if key in seen:
                continue
            seen.add(key)
            kept.append(row)
        rows = kept if transform.dedupe.keep_first else list(reversed(kept))

    return rows, headers
