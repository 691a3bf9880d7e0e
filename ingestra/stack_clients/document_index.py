"""Document indexes for vector-store and search-index targets.

DocumentIndex is the write boundary the loader uploads embedded documents
through. SqliteDocumentIndex is the built-in implementation, storing
embeddings as JSON text keyed by (index_name, id).
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    id: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadResult:
    """Outcome of one upload call."""
    succeeded: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


@runtime_checkable
class DocumentIndex(Protocol):
    def index_exists(self, index_name: str) -> bool:
        ...

    def create_index(
        self,
        index_name: str,
        dimensions: int,
        settings: Optional[dict[str, Any]] = None,
    ) -> None:
        ...

    def upload_documents(self, index_name: str, documents: list[Document]) -> UploadResult:
        """Upsert documents by id. Per-document failures are counted, not raised."""
        ...


INDEX_SCHEMA = """
CREATE TABLE IF NOT EXISTS document_indexes (
    index_name TEXT PRIMARY KEY,
    dimensions INTEGER NOT NULL,
    settings TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS documents (
    index_name TEXT NOT NULL,
    id TEXT NOT NULL,
    content TEXT NOT NULL,
    embedding TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (index_name, id)
);
"""


class SqliteDocumentIndex:
    """
    DocumentIndex over a SQLite file.

    Several logical indexes share one database; `kind` only labels log lines
    so vector-store and search-index instances are distinguishable.
    """

    def __init__(self, path: Union[str, Path], kind: str = "vector_store"):
        self.path = str(path)
        self.kind = kind
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(INDEX_SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def index_exists(self, index_name: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM document_indexes WHERE index_name = ?", (index_name,)
            ).fetchone()
        return row is not None

    def create_index(self, index_name, dimensions, settings=None):
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO document_indexes (index_name, dimensions, settings) "
                "VALUES (?, ?, ?)",
                (index_name, dimensions, json.dumps(settings or {})),
            )
            self._conn.commit()
        logger.info(f"Created {self.kind} index {index_name} ({dimensions} dims)")

    def get_settings(self, index_name: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT settings FROM document_indexes WHERE index_name = ?", (index_name,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def upload_documents(self, index_name, documents):
        result = UploadResult()
        with self._lock:
            for doc in documents:
                try:
                    self._conn.execute(
                        "INSERT INTO documents (index_name, id, content, embedding, metadata) "
                        "VALUES (?, ?, ?, ?, ?) "
                        "ON CONFLICT (index_name, id) DO UPDATE SET "
                        "content = excluded.content, embedding = excluded.embedding, "
                        "metadata = excluded.metadata",
                        (
                            index_name,
                            doc.id,
                            doc.content,
                            json.dumps(doc.embedding),
                            json.dumps(doc.metadata, default=str),
                        ),
                    )
                    result.succeeded += 1
                except (sqlite3.Error, TypeError, ValueError) as e:
                    result.failed += 1
                    result.errors.append({"id": doc.id, "error": str(e)})
            self._conn.commit()
        return result

    def count(self, index_name: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM documents WHERE index_name = ?", (index_name,)
            ).fetchone()
        return row[0]

    def get_document(self, index_name: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, content, embedding, metadata FROM documents "
                "WHERE index_name = ? AND id = ?",
                (index_name, doc_id),
            ).fetchone()
        if row is None:
            return None
        return Document(
            id=row[0],
            content=row[1],
            embedding=json.loads(row[2]),
            metadata=json.loads(row[3]),
        )
