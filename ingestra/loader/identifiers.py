"""SQL identifier handling.

Identifiers are never bound as parameters, so every table and column name
passes through sanitize_identifier() and then the allow-list in
validate_identifier() before it reaches a statement. Values are always bound.
"""

import re
from typing import Sequence

from ingestra.errors import IdentifierError


IDENTIFIER_PATTERN = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
MAX_IDENTIFIER_LENGTH = 63


def sanitize_identifier(name: str) -> str:
    """
    Normalise an arbitrary header or table name.

    Lowercases, replaces characters outside [a-z0-9_] with '_', trims leading
    and trailing underscores, collapses runs of '_'. Names that would start
    with a digit get a 'col_' prefix; names that sanitise to nothing become
    'column'.
    """
    cleaned = re.sub(r"[^a-z0-9_]", "_", str(name).lower())
    cleaned = cleaned.strip("_")
    cleaned = re.sub(r"_+", "_", cleaned)
    if not cleaned:
        cleaned = "column"
    if cleaned[0].isdigit():
        cleaned = f"col_{cleaned}"
    return cleaned[:MAX_IDENTIFIER_LENGTH]


def validate_identifier(name: str) -> str:
    """
    Check a name against the identifier allow-list.

    Raises:
        IdentifierError: If the name is not a plain lowercase identifier
    """
    if not IDENTIFIER_PATTERN.match(name):
        raise IdentifierError(f"Identifier not allowed: {name!r}")
    return name


def safe_identifier(name: str) -> str:
    return validate_identifier(sanitize_identifier(name))


def column_names(headers: Sequence[str]) -> list[str]:
    """Sanitised, de-duplicated column names in header order."""
    result: list[str] = []
    seen: set[str] = set()
    for header in headers:
        base = safe_identifier(header)
        name = base
        suffix = 2
        while name in seen:
            name = validate_identifier(f"{base[:MAX_IDENTIFIER_LENGTH - 4]}_{suffix}")
            suffix += 1
        seen.add(name)
        result.append(name)
    return result
