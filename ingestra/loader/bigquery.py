"""
BigQuery destination for sql_table targets.

Used when config.sql_backend == "bigquery". Inserts stream through
insert_rows_json (per-row errors come back from the API); upserts load the
batch into a temp table and MERGE it on the key column.
"""

import logging
import threading
from typing import Any, Optional

from google.cloud import bigquery

from ingestra.loader.identifiers import validate_identifier
from ingestra.loader.sql_table import DestinationLocks, RowErrors
from ingestra.loader.type_inference import ColumnType
from ingestra.store import generate_ulid

logger = logging.getLogger(__name__)


BIGQUERY_TYPES = {
    ColumnType.INTEGER: "INT64",
    ColumnType.DECIMAL: "FLOAT64",
    # US-format dates are not valid DATE literals
    ColumnType.DATE: "STRING",
    ColumnType.BOOLEAN: "BOOL",
    ColumnType.UUID: "STRING",
    ColumnType.TEXT: "STRING",
}


def column_type_from_field(field_type: str) -> ColumnType:
    upper = field_type.upper()
    if upper in ("INT64", "INTEGER"):
        return ColumnType.INTEGER
    if upper in ("FLOAT64", "FLOAT", "NUMERIC", "BIGNUMERIC"):
        return ColumnType.DECIMAL
    if upper in ("BOOL", "BOOLEAN"):
        return ColumnType.BOOLEAN
    if upper == "DATE":
        return ColumnType.DATE
    return ColumnType.TEXT


class BigQueryTableWriter:
    """TableWriter over one BigQuery dataset."""

    def __init__(self, client: bigquery.Client, project: str, dataset: str):
        self.client = client
        self.project = project
        self.dataset = dataset
        self._locks = DestinationLocks()

    def _ref(self, table: str) -> str:
        return f"{self.project}.{self.dataset}.{validate_identifier(table)}"

    def lock_for(self, table: str) -> threading.Lock:
        return self._locks.get(table)

    def ensure_table(self, table, columns, key_column=None):
        for name in columns:
            validate_identifier(name)
        table_ref = self._ref(table)

        schema = [
            bigquery.SchemaField(name, BIGQUERY_TYPES[ctype], mode="NULLABLE")
            for name, ctype in columns.items()
        ]
        schema.append(bigquery.SchemaField("_imported_at", "TIMESTAMP", mode="NULLABLE"))
        bq_table = self.client.create_table(bigquery.Table(table_ref, schema=schema), exists_ok=True)

        existing = {f.name: f for f in bq_table.schema}
        missing = [f for f in schema if f.name not in existing]
        if missing:
            bq_table.schema = list(bq_table.schema) + missing
            bq_table = self.client.update_table(bq_table, ["schema"])
            logger.info(f"Added {len(missing)} columns to {table_ref}")

        declared = {f.name: column_type_from_field(f.field_type) for f in bq_table.schema}
        return {name: declared.get(name, ctype) for name, ctype in columns.items()}

    def truncate(self, table):
        self.client.query(f"TRUNCATE TABLE `{self._ref(table)}`").result()

    def write_rows(self, table, columns, rows, key_column=None):
        for name in columns:
            validate_identifier(name)
        payload = [dict(zip(columns, row)) for row in rows]

        if key_column:
            self._merge(table, list(columns), payload, validate_identifier(key_column))
            return []

        errors = self.client.insert_rows_json(self._ref(table), payload)
        row_errors: RowErrors = []
        for entry in errors or []:
            messages = "; ".join(e.get("message", "") for e in entry.get("errors", []))
            row_errors.append((entry.get("index", 0), messages or "row rejected"))
        return row_errors

    def _merge(self, table: str, columns: list[str], payload: list[dict[str, Any]], key_column: str) -> None:
        table_ref = self._ref(table)
        temp_ref = f"{self.project}.{self.dataset}.tmp_{validate_identifier(table)}_{generate_ulid().lower()}"
        target_schema = {f.name: f for f in self.client.get_table(table_ref).schema}

        try:
            job_config = bigquery.LoadJobConfig(
                schema=[target_schema[c] for c in columns],
                write_disposition="WRITE_TRUNCATE",
            )
            self.client.load_table_from_json(payload, temp_ref, job_config=job_config).result()

            updates = ", ".join(f"`{c}` = source.`{c}`" for c in columns if c != key_column)
            when_matched = f"WHEN MATCHED THEN UPDATE SET {updates}" if updates else ""
            column_list = ", ".join(f"`{c}`" for c in columns)
            merge_query = f"""
                MERGE `{table_ref}` AS target
                USING `{temp_ref}` AS source
                ON target.`{key_column}` = source.`{key_column}`
                {when_matched}
                WHEN NOT MATCHED THEN
                    INSERT ({column_list}, _imported_at)
                    VALUES ({column_list}, CURRENT_TIMESTAMP())
            """
            self.client.query(merge_query).result()
        finally:
            self.client.delete_table(temp_ref, not_found_ok=True)

    def count_rows(self, table: str) -> int:
        rows = self.client.query(f"SELECT COUNT(*) AS n FROM `{self._ref(table)}`").result()
        return next(iter(rows))["n"]


def build_bigquery_writer(project: str, dataset: str, client: Optional[bigquery.Client] = None) -> BigQueryTableWriter:
    return BigQueryTableWriter(client or bigquery.Client(project=project), project, dataset)
