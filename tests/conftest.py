import pytest

from ingestra.config import IngestraConfig
from ingestra.engine import WorkerContext
from ingestra.loader import SqliteTableWriter
from ingestra.schemas import TargetKind
from ingestra.stack_clients import SqliteDocumentIndex, UploadResult
from ingestra.store import InMemoryJobStore


class FakeEmbedder:
    """Deterministic EmbeddingClient: one short vector per text."""

    def __init__(self, dimensions: int = 4, error: Exception = None):
        self.dimensions = dimensions
        self.error = error
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [[float(len(t))] + [0.0] * (self.dimensions - 1) for t in texts]


class RecordingIndex:
    """In-memory DocumentIndex that can reject chosen document ids."""

    def __init__(self, reject_ids=()):
        self.reject_ids = set(reject_ids)
        self.indexes = {}
        self.documents = {}

    def index_exists(self, index_name):
        return index_name in self.indexes

    def create_index(self, index_name, dimensions, settings=None):
        self.indexes[index_name] = {"dimensions": dimensions, "settings": settings or {}}

    def upload_documents(self, index_name, documents):
        errors = []
        for doc in documents:
            if doc.id in self.reject_ids:
                errors.append({"id": doc.id, "error": "rejected"})
            else:
                self.documents.setdefault(index_name, {})[doc.id] = doc
        return UploadResult(succeeded=len(documents) - len(errors), failed=len(errors), errors=errors)


@pytest.fixture
def test_config(tmp_path):
    return IngestraConfig(
        store_path=str(tmp_path / "ingestra.db"),
        warehouse_path=str(tmp_path / "warehouse.db"),
        index_path=str(tmp_path / "indexes.db"),
        embedding_dimensions=4,
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def table_writer(test_config):
    writer = SqliteTableWriter(test_config.warehouse_path)
    yield writer
    writer.close()


@pytest.fixture
def vector_index(test_config):
    index = SqliteDocumentIndex(test_config.index_path, kind="vector_store")
    yield index
    index.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def context(test_config, store, table_writer, vector_index, embedder):
    return WorkerContext(
        config=test_config,
        store=store,
        table_writer=table_writer,
        document_indexes={TargetKind.VECTOR_STORE: vector_index},
        embedder=embedder,
    )


def csv_content(rows, headers):
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(str(row[h]) for h in headers))
    return "\n".join(lines) + "\n"
