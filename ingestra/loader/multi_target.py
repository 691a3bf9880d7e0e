"""
MultiTargetLoader - fan one parsed dataset out to several destinations.

Every target is loaded independently: a failure in one target (or in one
batch of one target) is recorded as ETLError values on that target's
TargetLoadResult and never stops the others. For every target,
succeeded + failed == number of input rows.
"""

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from ingestra.loader.identifiers import column_names, safe_identifier, sanitize_identifier
from ingestra.loader.sql_table import TableWriter
from ingestra.loader.type_inference import ColumnType, coerce_value
from ingestra.schemas import (
    ETLError,
    LoadAdjustment,
    LoadMode,
    SearchIndexTarget,
    SqlTableTarget,
    StorageTargetConfig,
    TargetKind,
    VectorStoreTarget,
)
from ingestra.schemas import par
from ingestra.stack_clients import Document, DocumentIndex, EmbeddingClient

logger = logging.getLogger(__name__)


EMBEDDING_NAME_HINTS = ("content", "text", "description", "name", "title")

# (batch failure, per-document upload failure, whole-target failure)
DOCUMENT_ERROR_CODES = {
    TargetKind.VECTOR_STORE: (par.VECTOR_BATCH_ERROR, par.VECTOR_UPLOAD_ERROR, par.VECTOR_STORE_ERROR),
    TargetKind.SEARCH_INDEX: (par.SEARCH_BATCH_ERROR, par.SEARCH_UPLOAD_ERROR, par.SEARCH_INDEX_ERROR),
}


@dataclass
class TargetLoadResult:
    target: StorageTargetConfig
    succeeded: int = 0
    failed: int = 0
    errors: list[ETLError] = field(default_factory=list)
    loaded_rows: set[int] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict() if hasattr(self.target, "to_dict") else repr(self.target),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


def summarize(results: Sequence[TargetLoadResult]) -> tuple[int, int, list[ETLError]]:
    """Sum per-target outcomes into (processed, failed, errors)."""
    processed = sum(r.succeeded for r in results)
    failed = sum(r.failed for r in results)
    errors = [e for r in results for e in r.errors]
    return processed, failed, errors


def select_embedding_columns(headers: Sequence[str], configured: Sequence[str] = ()) -> list[str]:
    """Configured columns, else content-like headers, else the first header."""
    if configured:
        return list(configured)
    matched = [h for h in headers if any(hint in h.lower() for hint in EMBEDDING_NAME_HINTS)]
    if matched:
        return matched
    return list(headers[:1])


def _embedding_text(value: Any) -> str:
    return "" if value is None else str(value)


def _message(error: Exception) -> str:
    return str(error) or error.__class__.__name__


class MultiTargetLoader:
    """
    Load rows into sql_table, vector_store and search_index targets.

    Args:
        table_writer: Destination for sql_table targets (None = not configured)
        document_indexes: Destination per document target kind
        embedder: Embedding capability for document targets
        sql_batch_size: Rows per relational batch
        embedding_batch_size: Rows per embedding/upload batch
        embedding_dimensions: Vector size recorded when an index is created
    """

    def __init__(
        self,
        table_writer: Optional[TableWriter] = None,
        document_indexes: Optional[Mapping[TargetKind, DocumentIndex]] = None,
        embedder: Optional[EmbeddingClient] = None,
        sql_batch_size: int = 100,
        embedding_batch_size: int = 50,
        embedding_dimensions: int = 1536,
    ):
        self.table_writer = table_writer
        self.document_indexes = dict(document_indexes or {})
        self.embedder = embedder
        self.sql_batch_size = sql_batch_size
        self.embedding_batch_size = embedding_batch_size
        self.embedding_dimensions = embedding_dimensions

    def load(
        self,
        rows: Sequence[Mapping[str, Any]],
        headers: Sequence[str],
        column_types: Mapping[str, ColumnType],
        targets: Sequence[StorageTargetConfig],
        adjustment: Optional[LoadAdjustment] = None,
    ) -> list[TargetLoadResult]:
        """Load rows into every target in order. Returns one result per target."""
        results = []
        for position, target in enumerate(targets):
            loaded = adjustment.loaded_rows.get(position, frozenset()) if adjustment else frozenset()
            if rows and len(loaded) >= len(rows):
                logger.info(f"Target {position} already holds all {len(rows)} rows, skipping")
                results.append(TargetLoadResult(
                    target=target, succeeded=len(rows), loaded_rows=set(range(len(rows))),
                ))
                continue
            result = self.load_target(rows, headers, column_types, target, adjustment, loaded)
            logger.info(
                f"Target {target.kind.value if hasattr(target, 'kind') else target}: "
                f"{result.succeeded} succeeded, {result.failed} failed"
            )
            results.append(result)
        return results

    def load_target(
        self,
        rows: Sequence[Mapping[str, Any]],
        headers: Sequence[str],
        column_types: Mapping[str, ColumnType],
        target: StorageTargetConfig,
        adjustment: Optional[LoadAdjustment] = None,
        loaded: frozenset[int] = frozenset(),
    ) -> TargetLoadResult:
        """
        Load rows into one target.

        loaded holds row indices a previous attempt already wrote. Insert-mode
        tables skip them; replace, upsert and document targets rewrite every
        row since those writes do not duplicate.
        """
        if isinstance(target, SqlTableTarget):
            return self._load_sql_table(rows, headers, column_types, target, adjustment, loaded)
        if isinstance(target, VectorStoreTarget):
            return self._load_documents(rows, headers, target, TargetKind.VECTOR_STORE, adjustment)
        if isinstance(target, SearchIndexTarget):
            return self._load_documents(rows, headers, target, TargetKind.SEARCH_INDEX, adjustment)
        return TargetLoadResult(
            target=target,
            failed=len(rows),
            errors=[ETLError(par.UNKNOWN_TARGET, f"Unknown target type: {target!r}")],
        )

    # -------------------------------------------------------------------------
    # sql_table
    # -------------------------------------------------------------------------

    def _load_sql_table(self, rows, headers, column_types, target, adjustment, loaded=frozenset()) -> TargetLoadResult:
        if self.table_writer is None:
            return TargetLoadResult(
                target=target,
                failed=len(rows),
                errors=[ETLError(par.TARGET_NOT_CONFIGURED, "No table writer is configured for sql_table targets")],
            )

        batch_size = self.sql_batch_size
        skip_errors = False
        if adjustment is not None:
            batch_size = adjustment.batch_size or batch_size
            skip_errors = adjustment.skip_errors

        written: set[int] = set()
        if target.mode == LoadMode.INSERT:
            written.update(loaded)
        errors: list[ETLError] = []
        try:
            table = safe_identifier(target.table_name)
            names = column_names(headers)
            key_column = None
            if target.mode == LoadMode.UPSERT and target.key_column:
                key_column = safe_identifier(target.key_column)
                if key_column not in names:
                    raise ValueError(f"Key column {target.key_column!r} is not in the data")

            declared = self.table_writer.ensure_table(
                table,
                {name: column_types.get(h, ColumnType.TEXT) for h, name in zip(headers, names)},
                key_column,
            )

            if target.mode == LoadMode.REPLACE:
                guard = self.table_writer.lock_for(table)
            else:
                guard = contextlib.nullcontext()

            with guard:
                if target.mode == LoadMode.REPLACE:
                    self.table_writer.truncate(table)

                for start in range(0, len(rows), batch_size):
                    prepared = []
                    for index in range(start, min(start + batch_size, len(rows))):
                        if index in written:
                            continue
                        values = self._coerce_row(rows[index], headers, names, declared, index, errors)
                        if values is not None:
                            prepared.append((index, values))
                    written.update(self._write_batch(table, names, prepared, key_column, skip_errors, errors))

        except Exception as e:
            logger.warning(f"sql_table target {target.table_name} failed: {e}")
            errors.append(ETLError(par.SQL_TABLE_ERROR, _message(e)))

        return TargetLoadResult(
            target=target,
            succeeded=len(written),
            failed=len(rows) - len(written),
            errors=errors,
            loaded_rows=written,
        )

    @staticmethod
    def _coerce_row(row, headers, names, declared, index, errors) -> Optional[tuple]:
        values = []
        for header, name in zip(headers, names):
            try:
                values.append(coerce_value(row.get(header), declared[name]))
            except ValueError as e:
                errors.append(ETLError(par.ROW_INSERT_ERROR, str(e), row=index, column=header))
                return None
        return tuple(values)

    def _write_batch(self, table, names, prepared, key_column, skip_errors, errors) -> list[int]:
        """Write one batch. Returns the row indices written."""
        if not prepared:
            return []

        try:
            row_errors = self.table_writer.write_rows(table, names, [v for _, v in prepared], key_column)
        except Exception as e:
            if not skip_errors:
                errors.append(ETLError(par.BATCH_INSERT_ERROR, _message(e), row=prepared[0][0]))
                return []
            return self._write_rows_individually(table, names, prepared, key_column, errors)

        failed_positions = set()
        for position, message in row_errors:
            errors.append(ETLError(par.ROW_INSERT_ERROR, message, row=prepared[position][0]))
            failed_positions.add(position)
        return [index for position, (index, _) in enumerate(prepared) if position not in failed_positions]

    def _write_rows_individually(self, table, names, prepared, key_column, errors) -> list[int]:
        written = []
        for index, values in prepared:
            try:
                row_errors = self.table_writer.write_rows(table, names, [values], key_column)
            except Exception as e:
                errors.append(ETLError(par.ROW_INSERT_ERROR, _message(e), row=index))
                continue
            if row_errors:
                errors.append(ETLError(par.ROW_INSERT_ERROR, row_errors[0][1], row=index))
            else:
                written.append(index)
        return written

    # -------------------------------------------------------------------------
    # vector_store / search_index
    # -------------------------------------------------------------------------

    def _load_documents(self, rows, headers, target, kind: TargetKind, adjustment) -> TargetLoadResult:
        batch_code, upload_code, target_code = DOCUMENT_ERROR_CODES[kind]
        index = self.document_indexes.get(kind)
        if index is None or self.embedder is None:
            missing = "document index" if index is None else "embedding client"
            return TargetLoadResult(
                target=target,
                failed=len(rows),
                errors=[ETLError(par.TARGET_NOT_CONFIGURED, f"No {missing} is configured for {kind.value} targets")],
            )

        batch_size = self.embedding_batch_size
        if adjustment is not None and adjustment.batch_size:
            batch_size = min(batch_size, adjustment.batch_size)

        succeeded = 0
        loaded: set[int] = set()
        errors: list[ETLError] = []
        try:
            index_name = target.index_name
            columns = select_embedding_columns(headers, target.embedding_columns)
            if not index.index_exists(index_name):
                index.create_index(index_name, self.embedding_dimensions, self._index_settings(target, headers))

            for start in range(0, len(rows), batch_size):
                batch = rows[start:start + batch_size]
                try:
                    contents = [" ".join(_embedding_text(row.get(c)) for c in columns) for row in batch]
                    vectors = self.embedder.embed(contents)
                    if len(vectors) != len(batch):
                        raise ValueError(f"Expected {len(batch)} embeddings, got {len(vectors)}")
                    documents = [
                        Document(
                            id=str(row.get("id") or row.get("_id") or f"{index_name}-{start + offset}"),
                            content=contents[offset],
                            embedding=list(vectors[offset]),
                            metadata=self._metadata(row, headers, kind),
                        )
                        for offset, row in enumerate(batch)
                    ]
                    upload = index.upload_documents(index_name, documents)
                except Exception as e:
                    logger.warning(f"{kind.value} batch at row {start} failed: {e}")
                    errors.append(ETLError(batch_code, _message(e), row=start))
                    continue

                succeeded += min(upload.succeeded, len(batch))
                if upload.succeeded >= len(batch) and not upload.errors:
                    loaded.update(range(start, start + len(batch)))
                for failure in upload.errors:
                    errors.append(ETLError(upload_code, failure["error"], details={"id": failure["id"]}))

        except Exception as e:
            logger.warning(f"{kind.value} target {target.index_name} failed: {e}")
            errors.append(ETLError(target_code, _message(e)))

        return TargetLoadResult(
            target=target,
            succeeded=succeeded,
            failed=len(rows) - succeeded,
            errors=errors,
            loaded_rows=loaded,
        )

    @staticmethod
    def _metadata(row, headers, kind: TargetKind) -> dict[str, Any]:
        if kind == TargetKind.SEARCH_INDEX:
            return {sanitize_identifier(h): row.get(h) for h in headers}
        return dict(row)

    @staticmethod
    def _index_settings(target, headers) -> dict[str, Any]:
        if isinstance(target, VectorStoreTarget):
            # Chunking parameters are recorded with the index, rows are embedded whole
            return {
                "metric": "cosine",
                "fields": list(headers),
                "chunkSize": target.chunk_size,
                "chunkOverlap": target.chunk_overlap,
            }
        return {
            "fields": [sanitize_identifier(h) for h in headers],
            "semanticConfigName": target.semantic_config_name,
        }
