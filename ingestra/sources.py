"""
Source loading and parsing.

Turns a SourceConfig into a ParsedData: an ordered list of flat row dicts
plus the column headers. Any failure raises SourceError.
"""

import csv
import io
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from ingestra.errors import SourceError
from ingestra.schemas import DatabaseSource, InlineSource, RemoteSource, SourceConfig, SourceFormat

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 30


@dataclass
class ParsedData:
    rows: list[dict[str, Any]]
    headers: list[str]
    format: SourceFormat = SourceFormat.CSV
    nested_paths: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def sample(self, n: int = 5) -> list[dict[str, Any]]:
        return self.rows[:n]


def parse_csv(content: str) -> ParsedData:
    """Parse CSV with a header row. Blank lines are skipped."""
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    try:
        rows = []
        for record in reader:
            # Fields beyond the header row are collected under the None key
            record.pop(None, None)
            if all(v is None or v == "" for v in record.values()):
                continue
            rows.append(dict(record))
    except csv.Error as e:
        raise SourceError(f"Invalid CSV: {e}")
    return ParsedData(rows=rows, headers=list(reader.fieldnames or []), format=SourceFormat.CSV)


def flatten_object(obj: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested objects with '_'-joined keys; lists become JSON text."""
    result: dict[str, Any] = {}
    for key, value in obj.items():
        new_key = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            result.update(flatten_object(value, new_key))
        elif isinstance(value, list):
            result[new_key] = json.dumps(value)
        else:
            result[new_key] = value
    return result


def parse_json(content: str) -> ParsedData:
    """
    Parse JSON into rows.

    Accepts an array of objects, an object holding an array property (the
    first such property is used), or a single object.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise SourceError(f"Invalid JSON: {e}")

    nested_paths: list[str] = []
    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        array_key = next((k for k, v in parsed.items() if isinstance(v, list)), None)
        if array_key is not None:
            nested_paths.append(array_key)
            items = parsed[array_key]
        else:
            items = [parsed]
    else:
        raise SourceError("JSON must be an object or array")

    rows = [flatten_object(item if isinstance(item, dict) else {"value": item}) for item in items]

    headers: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                headers.append(key)

    return ParsedData(rows=rows, headers=headers, format=SourceFormat.JSON, nested_paths=nested_paths)


def parse_content(content: str, fmt: SourceFormat) -> ParsedData:
    if fmt == SourceFormat.JSON:
        return parse_json(content)
    return parse_csv(content)


def fetch_remote(source: RemoteSource, session: requests.Session, timeout: int = DEFAULT_TIMEOUT) -> str:
    logger.info(f"Fetching {source.method} {source.url}")
    try:
        response = session.request(
            source.method,
            source.url,
            headers=source.headers or None,
            json=source.body,
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise SourceError(f"Failed to fetch {source.url}: {e}")
    return response.text


def query_database(source: DatabaseSource) -> ParsedData:
    """Run the query read-only against a SQLite database file."""
    try:
        conn = sqlite3.connect(f"file:{source.connection}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise SourceError(f"Cannot open database {source.connection}: {e}")
    try:
        cursor = conn.execute(source.query)
        headers = [d[0] for d in cursor.description or []]
        rows = [dict(zip(headers, values)) for values in cursor.fetchall()]
    except sqlite3.Error as e:
        raise SourceError(f"Query failed: {e}")
    finally:
        conn.close()
    return ParsedData(rows=rows, headers=headers)


def load_source(
    source: Optional[SourceConfig],
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> ParsedData:
    """
    Load and parse a source.

    Raises:
        SourceError: If the source is missing, unreachable or unparseable
    """
    if source is None:
        raise SourceError("No source configured")
    if isinstance(source, InlineSource):
        return parse_content(source.content, source.format)
    if isinstance(source, RemoteSource):
        text = fetch_remote(source, session or requests.Session(), timeout)
        return parse_content(text, source.format)
    if isinstance(source, DatabaseSource):
        return query_database(source)
    raise SourceError(f"Unsupported source: {source!r}")
