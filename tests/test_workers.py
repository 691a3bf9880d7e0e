"""Tests for the built-in workers, run end to end through BaseWorker.execute."""

import dataclasses
import random
from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from conftest import csv_content
from ingestra.loader import ColumnType
from ingestra.schemas import JobDefinition, JobStatus
from ingestra.schemas import par
from ingestra.stack_clients import GraphStats
from ingestra.workers import (
    CsvImportWorker,
    DataLoadWorker,
    EconomicIndicatorsWorker,
    JsonImportWorker,
    KgBuildWorker,
)
from ingestra.workers.economic_indicators import FRED_OBSERVATIONS_URL, SYNTHETIC_PROFILES, months_back


HEADERS = ["id", "name", "age"]


def _people(n=10):
    return [{"id": i + 1, "name": f"person {i + 1}", "age": 20 + i} for i in range(n)]


def _csv_job(content, **target):
    return JobDefinition.from_dict({
        "jobType": "csv_import",
        "name": "people",
        "sourceConfig": {"type": "csv", "fileContent": content},
        "targetConfig": target or {"table": "people"},
    })


class TestCsvImport:
    def test_clean_load(self, context, table_writer, store):
        definition = _csv_job(csv_content(_people(), HEADERS))

        result = CsvImportWorker(definition, context).execute("job-a")

        assert result.status == JobStatus.COMPLETED
        assert (result.records_processed, result.records_failed) == (10, 0)
        assert result.par_iterations == 1
        assert result.errors == []
        assert table_writer.count_rows("people") == 10
        assert table_writer.table_columns("people")["age"] == ColumnType.INTEGER
        assert store.get_job("job-a").status == JobStatus.COMPLETED

    def test_one_malformed_row_fails_without_retry(self, context, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER})
        rows = _people()
        rows[4]["age"] = "forty"

        result = CsvImportWorker(_csv_job(csv_content(rows, HEADERS)), context).execute("job-b")

        assert result.status == JobStatus.FAILED
        assert (result.records_processed, result.records_failed) == (9, 1)
        assert result.par_iterations == 1
        assert [(e.code, e.row) for e in result.errors] == [(par.ROW_INSERT_ERROR, 4)]
        assert table_writer.count_rows("people") == 9

    def test_retry_halves_batch_and_skips_errors(self, context, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER}, key_column="id")
        table_writer.write_rows("people", HEADERS, [(2, "existing", 1)])

        result = CsvImportWorker(_csv_job(csv_content(_people(), HEADERS)), context).execute("job-c")

        # first pass loses the whole batch; the retry falls back to single rows
        assert result.par_iterations == 2
        assert (result.records_processed, result.records_failed) == (9, 1)
        assert "Reducing batch size to 50 for retry" in result.reflexion_improvements
        assert result.status == JobStatus.FAILED
        assert table_writer.count_rows("people") == 10

    def test_retry_keeps_batches_already_written(self, context, test_config, table_writer):
        test_config.sql_batch_size = 5
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER}, key_column="id")
        table_writer.write_rows("people", HEADERS, [(7, "existing", 1)])

        result = CsvImportWorker(_csv_job(csv_content(_people(), HEADERS)), context).execute("job-c2")

        # ids 1-5 land on the first pass; the retry only revisits ids 6-10
        assert result.par_iterations == 2
        assert "Reducing batch size to 2 for retry" in result.reflexion_improvements
        assert (result.records_processed, result.records_failed) == (9, 1)
        assert [(e.code, e.row) for e in result.errors] == [(par.ROW_INSERT_ERROR, 6)]
        assert table_writer.count_rows("people") == 10

    def test_never_more_than_three_iterations(self, context, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER})
        rows = [dict(r, age="unknown") for r in _people(4)]

        result = CsvImportWorker(_csv_job(csv_content(rows, HEADERS)), context).execute("job-d")

        assert result.par_iterations == 3
        assert result.status == JobStatus.FAILED
        assert [i for i in result.reflexion_improvements if i.startswith("Reducing")] == [
            "Reducing batch size to 50 for retry",
            "Reducing batch size to 25 for retry",
        ]

    def test_empty_source(self, context):
        result = CsvImportWorker(_csv_job("id,name\n"), context).execute("job-e")

        assert result.status == JobStatus.FAILED
        assert result.par_iterations == 1
        assert result.reflexion_improvements == ["Source contained no rows"]

    def test_missing_target(self, context):
        definition = JobDefinition.from_dict({
            "jobType": "csv_import", "name": "x", "sourceConfig": {"fileContent": "a\n1\n"},
        })
        result = CsvImportWorker(definition, context).execute("job-f")
        assert result.errors[0].code == par.EXECUTION_ERROR
        assert "no targetConfig" in result.errors[0].message

    def test_lessons_recorded(self, context, store):
        definition = _csv_job(csv_content(_people(3), HEADERS))
        CsvImportWorker(definition, context).execute("job-g")

        lessons = store.list_knowledge("csv_import:people")
        assert lessons[-1].lessons_learned.startswith("Successfully loaded 3 records")
        assert lessons[-1].success_rate == 0.5


class TestJsonImport:
    def test_nested_array_flattened(self, context, table_writer):
        content = '{"page": 1, "items": [{"id": 1, "profile": {"city": "Oslo"}}, {"id": 2, "profile": {"city": "Rome"}}]}'
        definition = JobDefinition.from_dict({
            "jobType": "json_import",
            "name": "profiles",
            "sourceConfig": {"type": "json", "fileContent": content},
            "targetConfig": {"table": "profiles"},
        })

        result = JsonImportWorker(definition, context).execute("job-j")

        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == 2
        assert [r["profile_city"] for r in table_writer.fetch_rows("profiles")] == ["Oslo", "Rome"]

    def test_database_source_rejected(self, context):
        definition = JobDefinition.from_dict({
            "jobType": "json_import", "name": "x",
            "sourceConfig": {"type": "database", "connectionString": "/tmp/x.db", "query": "SELECT 1"},
            "targetConfig": {"table": "x"},
        })
        result = JsonImportWorker(definition, context).execute("job-k")
        assert result.errors[0].code == par.EXECUTION_ERROR


class TestDataLoad:
    def test_transforms_and_fan_out(self, context, table_writer, vector_index):
        rows = _people(6)
        definition = JobDefinition.from_dict({
            "jobType": "data_load",
            "name": "people",
            "sourceConfig": {"type": "csv", "fileContent": csv_content(rows, HEADERS)},
            "transformConfig": {
                "transforms": [{"column": "name", "operation": "uppercase"}],
                "filter": {"conditions": [{"column": "age", "operator": "gte", "value": 22}]},
            },
            "targetConfig": {"targets": [
                {"type": "sql_table", "tableName": "adults", "mode": "replace"},
                {"type": "vector_store", "indexName": "adults", "embeddingColumns": ["name"]},
            ]},
        })

        result = DataLoadWorker(definition, context).execute("job-l")

        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == 8
        assert table_writer.count_rows("adults") == 4
        assert table_writer.fetch_rows("adults")[0]["name"] == "PERSON 3"
        assert vector_index.count("adults") == 4

    def test_vector_failure_does_not_roll_back_table(self, context, table_writer):
        context.embedder.error = RuntimeError("embedding service down")
        definition = JobDefinition.from_dict({
            "jobType": "data_load",
            "name": "people",
            "sourceConfig": {"type": "csv", "fileContent": csv_content(_people(), HEADERS)},
            "targetConfig": {"targets": [
                {"type": "sql_table", "tableName": "people", "mode": "replace"},
                {"type": "vector_store", "indexName": "people"},
            ]},
        })

        result = DataLoadWorker(definition, context).execute("job-m")

        assert (result.records_processed, result.records_failed) == (10, 10)
        assert result.status == JobStatus.FAILED
        assert {e.code for e in result.errors} == {par.VECTOR_BATCH_ERROR}
        assert table_writer.count_rows("people") == 10

    def test_vector_failure_writes_insert_table_once(self, context, table_writer):
        context.embedder.error = RuntimeError("embedding service down")
        definition = JobDefinition.from_dict({
            "jobType": "data_load",
            "name": "people",
            "sourceConfig": {"type": "csv", "fileContent": csv_content(_people(), HEADERS)},
            "targetConfig": {"targets": [
                {"type": "sql_table", "tableName": "people", "mode": "insert"},
                {"type": "vector_store", "indexName": "people"},
            ]},
        })

        result = DataLoadWorker(definition, context).execute("job-m2")

        assert result.par_iterations == 1
        assert (result.records_processed, result.records_failed) == (10, 10)
        assert result.status == JobStatus.FAILED
        assert table_writer.count_rows("people") == 10

    def test_uncastable_cell_is_a_row_error(self, context, table_writer):
        table_writer.ensure_table("stock", {"id": ColumnType.INTEGER, "qty": ColumnType.INTEGER})
        definition = JobDefinition.from_dict({
            "jobType": "data_load",
            "name": "stock",
            "sourceConfig": {"type": "csv", "fileContent": "id,qty\n1,5\n2,inf\n3,7\n"},
            "transformConfig": {"transforms": [{"column": "qty", "operation": "cast", "params": {"to": "int"}}]},
            "targetConfig": {"targets": [{"type": "sql_table", "tableName": "stock", "mode": "insert"}]},
        })

        result = DataLoadWorker(definition, context).execute("job-n")

        assert result.par_iterations == 3
        assert (result.records_processed, result.records_failed) == (2, 1)
        assert [(e.code, e.row, e.column) for e in result.errors] == [(par.ROW_INSERT_ERROR, 1, "qty")]
        assert table_writer.count_rows("stock") == 2


class TestKgBuild:
    def _definition(self):
        return JobDefinition.from_dict({
            "jobType": "kg_build",
            "name": "graph",
            "expectedNodeTypes": ["Person", "Company"],
            "expectedEdgeTypes": ["WORKS_AT"],
        })

    def test_build_success(self, context):
        graph = MagicMock()
        graph.get_stats.return_value = GraphStats()
        graph.build.return_value = GraphStats(
            total_nodes=10,
            total_edges=12,
            nodes_by_type={"Person": 6, "Company": 4},
            edges_by_type={"WORKS_AT": 12},
        )

        result = KgBuildWorker(self._definition(), dataclasses.replace(context, knowledge_graph=graph)).execute("kg-1")

        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == 22
        graph.clear.assert_called_once()

    def test_missing_types_reported(self, context):
        graph = MagicMock()
        graph.get_stats.return_value = GraphStats()
        graph.build.return_value = GraphStats(total_nodes=4, total_edges=0, nodes_by_type={"Person": 4})

        result = KgBuildWorker(self._definition(), dataclasses.replace(context, knowledge_graph=graph)).execute("kg-2")

        assert result.status == JobStatus.FAILED
        assert result.par_iterations == 3
        assert "Missing node types: Company" in result.reflexion_improvements
        assert "Missing edge types: WORKS_AT" in result.reflexion_improvements

    def test_build_error(self, context):
        graph = MagicMock()
        graph.build.side_effect = RuntimeError("graph store unavailable")
        graph.get_stats.return_value = GraphStats()

        result = KgBuildWorker(self._definition(), dataclasses.replace(context, knowledge_graph=graph)).execute("kg-3")

        assert result.status == JobStatus.FAILED
        assert result.errors[0].code == par.KG_BUILD_ERROR
        assert result.errors[0].message == "graph store unavailable"
        assert graph.clear.call_count == 3

    def test_no_graph_client(self, context):
        result = KgBuildWorker(self._definition(), context).execute("kg-4")
        assert result.errors[0].code == par.EXECUTION_ERROR


class TestEconomicIndicators:
    def _definition(self, **extras):
        return JobDefinition.from_dict({"jobType": "economic_indicators", "name": "fred", **extras})

    def _fred_context(self, context, responses):
        http = MagicMock()

        def get(url, params, timeout):
            assert url == FRED_OBSERVATIONS_URL
            assert params["api_key"] == "fred-key"
            outcome = responses[params["series_id"]]
            if isinstance(outcome, Exception):
                raise outcome
            response = MagicMock()
            response.json.return_value = {"observations": outcome}
            return response

        http.get.side_effect = get
        config = dataclasses.replace(context.config, fred_api_key="fred-key")
        return dataclasses.replace(context, config=config, http=http)

    def test_synthetic_without_key(self, context, table_writer):
        worker = EconomicIndicatorsWorker(self._definition(), context, rng=random.Random(7))

        result = worker.execute("econ-1")

        expected = sum(points for _, _, _, points, _ in SYNTHETIC_PROFILES)
        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == expected
        rows = table_writer.fetch_rows("economic_indicators")
        assert len(rows) == expected
        assert {r["source"] for r in rows} == {"FRED"}

    def test_fetches_with_key(self, context, table_writer):
        observations = [{"date": "2024-02-01", "value": "3.9"}, {"date": "2024-01-01", "value": "."}]
        ctx = self._fred_context(context, {"UNRATE": observations, "FEDFUNDS": observations, "PCE": observations})

        result = EconomicIndicatorsWorker(
            self._definition(seriesIds=["UNRATE", "FEDFUNDS", "PCE"], tableName="macro"), ctx,
        ).execute("econ-2")

        assert result.status == JobStatus.COMPLETED
        assert result.records_processed == 3
        rows = table_writer.fetch_rows("macro")
        assert sorted(r["indicator"] for r in rows) == ["FEDFUNDS", "PCE", "UNRATE"]
        assert rows[0]["value"] == 3.9

    def test_partial_fetch_errors(self, context):
        observations = [{"date": "2024-02-01", "value": "1.0"}]
        ctx = self._fred_context(context, {
            "GDP": observations,
            "UNRATE": observations,
            "CPIAUCSL": observations,
            "HOUST": requests.ConnectionError("connection reset"),
        })

        result = EconomicIndicatorsWorker(
            self._definition(seriesIds=["GDP", "UNRATE", "CPIAUCSL", "HOUST"]), ctx,
        ).execute("econ-3")

        # 3 of 4 series is above the 70% fetch threshold
        assert result.status == JobStatus.COMPLETED
        assert [e.code for e in result.errors] == [par.FETCH_ERROR]
        assert "HOUST" in result.errors[0].message

    def test_too_few_series_falls_back(self, context):
        ctx = self._fred_context(context, {
            "GDP": [{"date": "2024-02-01", "value": "1.0"}],
            "UNRATE": requests.HTTPError("400 Client Error"),
            "CPIAUCSL": [],
        })

        worker = EconomicIndicatorsWorker(self._definition(seriesIds=["GDP", "UNRATE", "CPIAUCSL"]), ctx)
        perception = worker.perceive()

        assert perception.data.used_synthetic
        assert perception.data.fetch_errors == []
        assert perception.context["usedSyntheticData"] is True

    def test_unknown_series(self, context):
        result = EconomicIndicatorsWorker(self._definition(seriesIds=["NOPE"]), context).execute("econ-4")
        assert result.errors[0].code == par.EXECUTION_ERROR
        assert "NOPE" in result.errors[0].message

    @pytest.mark.parametrize("months,expected", [(0, "2024-03-01"), (3, "2023-12-01"), (14, "2023-01-01")])
    def test_months_back(self, months, expected):
        assert months_back(date(2024, 3, 15), months).isoformat() == expected
