"""Tests for the multi-target loader."""

import threading

import pytest

from conftest import FakeEmbedder, RecordingIndex
from ingestra.loader import ColumnType, MultiTargetLoader, infer_column_types, select_embedding_columns, summarize
from ingestra.schemas import (
    LoadAdjustment,
    LoadMode,
    SearchIndexTarget,
    SqlTableTarget,
    TargetKind,
    VectorStoreTarget,
)
from ingestra.schemas import par


HEADERS = ["id", "name", "age"]


def _rows(n=10):
    return [{"id": str(i + 1), "name": f"person {i + 1}", "age": str(20 + i)} for i in range(n)]


def _loader(table_writer, indexes=None, embedder=None, **kwargs):
    return MultiTargetLoader(
        table_writer=table_writer,
        document_indexes=indexes or {},
        embedder=embedder,
        embedding_dimensions=4,
        **kwargs,
    )


class TestSelectEmbeddingColumns:
    def test_configured_wins(self):
        assert select_embedding_columns(["id", "text"], ("id",)) == ["id"]

    def test_heuristic(self):
        assert select_embedding_columns(["id", "Product Name", "body_text", "price"]) == ["Product Name", "body_text"]

    def test_first_column_fallback(self):
        assert select_embedding_columns(["sku", "price"]) == ["sku"]


class TestSqlTable:
    def test_clean_insert(self, table_writer):
        rows = _rows()
        results = _loader(table_writer).load(rows, HEADERS, infer_column_types(rows, HEADERS),
                                             [SqlTableTarget(table_name="people")])

        assert results[0].succeeded == 10
        assert results[0].failed == 0
        assert results[0].errors == []
        stored = table_writer.fetch_rows("people")
        assert stored[0]["age"] == 20
        assert stored[0]["name"] == "person 1"

    def test_malformed_value_fails_one_row(self, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT, "age": ColumnType.INTEGER})
        rows = _rows()
        rows[4]["age"] = "forty"

        results = _loader(table_writer).load(rows, HEADERS, infer_column_types(rows, HEADERS),
                                             [SqlTableTarget(table_name="people")])

        result = results[0]
        assert (result.succeeded, result.failed) == (9, 1)
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.code == par.ROW_INSERT_ERROR
        assert error.row == 4
        assert error.column == "age"
        assert table_writer.count_rows("people") == 9

    def test_failed_batch_does_not_stop_later_batches(self, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER}, key_column="id")
        table_writer.write_rows("people", ["id", "name", "age"], [(2, "existing", 1)])
        rows = _rows()

        results = _loader(table_writer, sql_batch_size=3).load(
            rows, HEADERS, infer_column_types(rows, HEADERS), [SqlTableTarget(table_name="people")])

        result = results[0]
        # rows 0-2 collide on id=2 and fail as one batch; the other batches land
        assert (result.succeeded, result.failed) == (7, 3)
        assert [e.code for e in result.errors] == [par.BATCH_INSERT_ERROR]
        assert result.errors[0].row == 0

    def test_skip_errors_falls_back_to_rows(self, table_writer):
        table_writer.ensure_table("people", {"id": ColumnType.INTEGER, "name": ColumnType.TEXT,
                                             "age": ColumnType.INTEGER}, key_column="id")
        table_writer.write_rows("people", ["id", "name", "age"], [(2, "existing", 1)])
        rows = _rows()

        results = _loader(table_writer, sql_batch_size=100).load(
            rows, HEADERS, infer_column_types(rows, HEADERS), [SqlTableTarget(table_name="people")],
            adjustment=LoadAdjustment(batch_size=5, skip_errors=True),
        )

        result = results[0]
        assert (result.succeeded, result.failed) == (9, 1)
        assert result.errors[0].code == par.ROW_INSERT_ERROR
        assert result.errors[0].row == 1

    def test_replace_truncates_first(self, table_writer):
        rows = _rows(3)
        loader = _loader(table_writer)
        types = infer_column_types(rows, HEADERS)
        loader.load(rows, HEADERS, types, [SqlTableTarget(table_name="people")])
        loader.load(rows, HEADERS, types, [SqlTableTarget(table_name="people", mode=LoadMode.REPLACE)])
        assert table_writer.count_rows("people") == 3

    def test_upsert_on_key(self, table_writer):
        rows = _rows(3)
        loader = _loader(table_writer)
        types = infer_column_types(rows, HEADERS)
        target = SqlTableTarget(table_name="people", mode=LoadMode.UPSERT, key_column="id")
        loader.load(rows, HEADERS, types, [target])
        rows[0]["name"] = "renamed"
        loader.load(rows, HEADERS, types, [target])

        stored = table_writer.fetch_rows("people")
        assert len(stored) == 3
        assert stored[0]["name"] == "renamed"

    def test_upsert_key_must_exist(self, table_writer):
        rows = _rows(2)
        results = _loader(table_writer).load(
            rows, HEADERS, infer_column_types(rows, HEADERS),
            [SqlTableTarget(table_name="people", mode=LoadMode.UPSERT, key_column="email")],
        )
        assert results[0].failed == 2
        assert results[0].errors[0].code == par.SQL_TABLE_ERROR

    def test_headers_sanitized(self, table_writer):
        rows = [{"Full Name": "Ada", "Zip Code": "02139"}]
        headers = ["Full Name", "Zip Code"]
        _loader(table_writer).load(rows, headers, infer_column_types(rows, headers),
                                   [SqlTableTarget(table_name="Contacts List")])
        assert table_writer.fetch_rows("contacts_list")[0]["full_name"] == "Ada"

    def test_no_writer_configured(self):
        rows = _rows(4)
        results = _loader(None).load(rows, HEADERS, {}, [SqlTableTarget()])
        assert results[0].failed == 4
        assert results[0].errors[0].code == par.TARGET_NOT_CONFIGURED


class TestDocumentTargets:
    def test_vector_store_documents(self, table_writer, vector_index, embedder):
        rows = _rows(3)
        loader = _loader(table_writer, {TargetKind.VECTOR_STORE: vector_index}, embedder, embedding_batch_size=2)
        results = loader.load(rows, HEADERS, {}, [VectorStoreTarget(index_name="people")])

        assert (results[0].succeeded, results[0].failed) == (3, 0)
        assert vector_index.count("people") == 3
        document = vector_index.get_document("people", "1")
        assert document.content == "person 1"
        assert document.metadata == rows[0]
        assert len(embedder.calls) == 2
        assert vector_index.get_settings("people")["chunkSize"] == 1000

    def test_explicit_embedding_columns(self, table_writer, embedder):
        index = RecordingIndex()
        rows = _rows(1)
        _loader(table_writer, {TargetKind.SEARCH_INDEX: index}, embedder).load(
            rows, HEADERS, {}, [SearchIndexTarget(index_name="s", embedding_columns=("name", "age"))])

        assert embedder.calls == [["person 1 20"]]
        assert index.documents["s"]["1"].metadata == {"id": "1", "name": "person 1", "age": "20"}

    def test_generated_ids(self, table_writer, embedder):
        index = RecordingIndex()
        rows = [{"title": "a"}, {"title": "b"}]
        _loader(table_writer, {TargetKind.VECTOR_STORE: index}, embedder).load(
            rows, ["title"], {}, [VectorStoreTarget(index_name="docs")])
        assert sorted(index.documents["docs"]) == ["docs-0", "docs-1"]

    def test_upload_rejections_counted(self, table_writer, embedder):
        index = RecordingIndex(reject_ids={"2"})
        rows = _rows(3)
        results = _loader(table_writer, {TargetKind.SEARCH_INDEX: index}, embedder).load(
            rows, HEADERS, {}, [SearchIndexTarget()])

        assert (results[0].succeeded, results[0].failed) == (2, 1)
        assert results[0].errors[0].code == par.SEARCH_UPLOAD_ERROR
        assert results[0].errors[0].details == {"id": "2"}

    def test_embedding_failure_is_batch_error(self, table_writer):
        index = RecordingIndex()
        embedder = FakeEmbedder(error=RuntimeError("rate limited"))
        rows = _rows(5)
        results = _loader(table_writer, {TargetKind.VECTOR_STORE: index}, embedder, embedding_batch_size=2).load(
            rows, HEADERS, {}, [VectorStoreTarget()])

        assert (results[0].succeeded, results[0].failed) == (0, 5)
        assert [e.code for e in results[0].errors] == [par.VECTOR_BATCH_ERROR] * 3

    def test_missing_embedder(self, table_writer):
        rows = _rows(2)
        results = _loader(table_writer, {TargetKind.VECTOR_STORE: RecordingIndex()}, None).load(
            rows, HEADERS, {}, [VectorStoreTarget()])
        assert results[0].failed == 2
        assert results[0].errors[0].code == par.TARGET_NOT_CONFIGURED


class TestFanOut:
    def test_vector_failure_leaves_table_untouched(self, table_writer):
        rows = _rows()
        embedder = FakeEmbedder(error=RuntimeError("embedding service down"))
        loader = _loader(table_writer, {TargetKind.VECTOR_STORE: RecordingIndex()}, embedder)
        results = loader.load(rows, HEADERS, infer_column_types(rows, HEADERS), [
            SqlTableTarget(table_name="people"),
            VectorStoreTarget(index_name="people"),
        ])

        processed, failed, errors = summarize(results)
        assert results[0].succeeded == 10
        assert processed == 10
        assert failed == 10
        assert all(e.code == par.VECTOR_BATCH_ERROR for e in errors)
        assert table_writer.count_rows("people") == 10

    @pytest.mark.parametrize("targets", [
        [SqlTableTarget(table_name="people")],
        [SqlTableTarget(table_name="people"), VectorStoreTarget(), SearchIndexTarget()],
        [VectorStoreTarget(), "not a target"],
    ])
    def test_every_target_accounts_for_every_row(self, table_writer, embedder, targets):
        rows = _rows(7)
        loader = _loader(
            table_writer,
            {TargetKind.VECTOR_STORE: RecordingIndex(reject_ids={"3"}), TargetKind.SEARCH_INDEX: RecordingIndex()},
            embedder,
            embedding_batch_size=3,
        )
        results = loader.load(rows, HEADERS, infer_column_types(rows, HEADERS), targets)

        for result in results:
            assert result.succeeded + result.failed == len(rows)
        processed, failed, _ = summarize(results)
        assert processed + failed == len(rows) * len(targets)

    def test_unknown_target(self, table_writer):
        results = _loader(table_writer).load(_rows(2), HEADERS, {}, ["bogus"])
        assert results[0].failed == 2
        assert results[0].errors[0].code == par.UNKNOWN_TARGET


class TestRetryResume:
    def test_insert_skips_rows_already_loaded(self, table_writer):
        rows = _rows()
        loader = _loader(table_writer)
        types = infer_column_types(rows, HEADERS)
        loader.load(rows[:6], HEADERS, types, [SqlTableTarget(table_name="people")])

        results = loader.load(rows, HEADERS, types, [SqlTableTarget(table_name="people")],
                              adjustment=LoadAdjustment(batch_size=5, loaded_rows={0: frozenset(range(6))}))

        assert (results[0].succeeded, results[0].failed) == (10, 0)
        assert results[0].loaded_rows == set(range(10))
        assert table_writer.count_rows("people") == 10

    def test_fully_loaded_target_is_skipped(self, table_writer, embedder):
        rows = _rows(4)
        index = RecordingIndex()
        loader = _loader(table_writer, {TargetKind.VECTOR_STORE: index}, embedder)

        results = loader.load(rows, HEADERS, {}, [VectorStoreTarget(index_name="people")],
                              adjustment=LoadAdjustment(loaded_rows={0: frozenset(range(4))}))

        assert (results[0].succeeded, results[0].failed) == (4, 0)
        assert embedder.calls == []
        assert index.indexes == {}

    def test_replace_reloads_every_row(self, table_writer):
        rows = _rows(5)
        results = _loader(table_writer).load(
            rows, HEADERS, infer_column_types(rows, HEADERS),
            [SqlTableTarget(table_name="people", mode=LoadMode.REPLACE)],
            adjustment=LoadAdjustment(loaded_rows={0: frozenset({0, 1})}),
        )
        assert results[0].succeeded == 5
        assert table_writer.count_rows("people") == 5

    def test_document_rows_tracked_per_batch(self, table_writer, embedder):
        rows = _rows(4)
        index = RecordingIndex(reject_ids={"4"})
        results = _loader(table_writer, {TargetKind.VECTOR_STORE: index}, embedder, embedding_batch_size=2).load(
            rows, HEADERS, {}, [VectorStoreTarget(index_name="people")])
        assert results[0].loaded_rows == {0, 1}


class LockRecordingWriter:
    """Delegates to a real writer, noting whether the table lock is held on each write."""

    def __init__(self, writer):
        self.writer = writer
        self.observed = []

    def ensure_table(self, table, columns, key_column=None):
        return self.writer.ensure_table(table, columns, key_column)

    def lock_for(self, table):
        return self.writer.lock_for(table)

    def truncate(self, table):
        self.observed.append(("truncate", self.writer.lock_for(table).locked()))
        self.writer.truncate(table)

    def write_rows(self, table, columns, rows, key_column=None):
        self.observed.append(("write_rows", self.writer.lock_for(table).locked()))
        return self.writer.write_rows(table, columns, rows, key_column)


class TestReplaceLock:
    def test_lock_held_across_truncate_and_batches(self, table_writer):
        writer = LockRecordingWriter(table_writer)
        rows = _rows(5)
        _loader(writer, sql_batch_size=2).load(
            rows, HEADERS, infer_column_types(rows, HEADERS),
            [SqlTableTarget(table_name="people", mode=LoadMode.REPLACE)])

        assert writer.observed == [("truncate", True)] + [("write_rows", True)] * 3
        assert not table_writer.lock_for("people").locked()

    def test_insert_does_not_take_lock(self, table_writer):
        writer = LockRecordingWriter(table_writer)
        rows = _rows(2)
        _loader(writer).load(rows, HEADERS, infer_column_types(rows, HEADERS), [SqlTableTarget(table_name="people")])
        assert writer.observed == [("write_rows", False)]

    def test_concurrent_replace_loads_do_not_interleave(self, table_writer):
        rows = _rows(6)
        types = infer_column_types(rows, HEADERS)
        writer = LockRecordingWriter(table_writer)
        loader = _loader(writer, sql_batch_size=1)
        target = SqlTableTarget(table_name="people", mode=LoadMode.REPLACE)

        threads = [threading.Thread(target=loader.load, args=(rows, HEADERS, types, [target])) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        # each load truncates then writes all six rows before the other starts
        calls = [name for name, _ in writer.observed]
        assert calls == (["truncate"] + ["write_rows"] * 6) * 2
        assert table_writer.count_rows("people") == 6
