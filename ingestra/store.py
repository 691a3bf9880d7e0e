"""
JobStore - durable job, run and knowledge records.

The JobStore manages:
- JobRecords (one per submitted JobDefinition)
- JobRunResults (one per execution attempt)
- KnowledgeRecords (append-only lessons from reflections)

Storage backends:
- In-memory (for testing)
- SQLite (durable across process restarts)
"""

import json
import random
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Union

from ingestra.errors import JobNotFoundError
from ingestra.schemas import (
    JobDefinition,
    JobRecord,
    JobRunResult,
    JobStatus,
    JobType,
    KnowledgeRecord,
)
from ingestra.utils import format_timestamp, parse_timestamp, utc_now


def generate_ulid() -> str:
    """
    Generate a ULID: 10 chars of millisecond timestamp plus 16 random chars,
    Crockford base32. Lexicographic order follows creation time.
    """
    alphabet = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(alphabet[timestamp_ms & 0x1F])
        timestamp_ms >>= 5

    random_part = "".join(random.choice(alphabet) for _ in range(16))
    return "".join(reversed(timestamp_chars)) + random_part


def _values(items: Optional[Iterable]) -> Optional[list[str]]:
    if not items:
        return None
    return [getattr(i, "value", i) for i in items]


class JobStore(ABC):
    """
    Abstract base class for job/run storage.

    Listing methods return newest first.
    """

    @abstractmethod
    def create_job(
        self,
        definition: JobDefinition,
        job_id: Optional[str] = None,
        status: JobStatus = JobStatus.PENDING,
    ) -> JobRecord:
        """
        Persist a new job row.

        Args:
            definition: The job definition
            job_id: Explicit id, or None to generate a ULID
            status: Initial status (pending for submitted jobs)

        Returns:
            The created JobRecord
        """
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[JobRecord]:
        pass

    @abstractmethod
    def update_job(self, job_id: str, status: JobStatus, touch_last_run: bool = False) -> JobRecord:
        """
        Set a job's status.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        pass

    @abstractmethod
    def list_jobs(
        self,
        status: Optional[Iterable[Union[JobStatus, str]]] = None,
        job_type: Optional[Iterable[Union[JobType, str]]] = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        pass

    @abstractmethod
    def create_run(self, job_id: str) -> JobRunResult:
        """Create a run row in 'running' status with a fresh run id."""
        pass

    @abstractmethod
    def finish_run(self, result: JobRunResult) -> None:
        """Write the terminal state of a run created by create_run."""
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[JobRunResult]:
        pass

    @abstractmethod
    def list_runs(self, job_id: str, limit: int = 10) -> list[JobRunResult]:
        pass

    @abstractmethod
    def append_knowledge(self, record: KnowledgeRecord) -> None:
        pass

    @abstractmethod
    def list_knowledge(self, pattern: Optional[str] = None) -> list[KnowledgeRecord]:
        pass


class InMemoryJobStore(JobStore):
    """
    In-memory implementation of JobStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._jobs: dict[str, JobRecord] = {}
        self._runs: dict[str, JobRunResult] = {}
        self._knowledge: list[KnowledgeRecord] = []
        self._lock = threading.Lock()

    def create_job(self, definition, job_id=None, status=JobStatus.PENDING):
        now = utc_now()
        record = JobRecord(
            job_id=job_id or generate_ulid(),
            definition=definition,
            status=status,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._jobs[record.job_id] = record
        return record

    def get_job(self, job_id):
        return self._jobs.get(job_id)

    def update_job(self, job_id, status, touch_last_run=False):
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            now = utc_now()
            record.status = status
            record.updated_at = now
            if touch_last_run:
                record.last_run_at = now
            return record

    def list_jobs(self, status=None, job_type=None, limit=100):
        statuses = _values(status)
        types = _values(job_type)
        # dicts keep insertion order; reverse gives newest first
        records = list(reversed(list(self._jobs.values())))
        if statuses:
            records = [r for r in records if r.status.value in statuses]
        if types:
            records = [r for r in records if r.definition.job_type.value in types]
        return records[:limit]

    def create_run(self, job_id):
        result = JobRunResult(
            job_id=job_id,
            run_id=generate_ulid(),
            status=JobStatus.RUNNING,
            started_at=utc_now(),
        )
        with self._lock:
            self._runs[result.run_id] = result
        return result

    def finish_run(self, result):
        with self._lock:
            if result.run_id not in self._runs:
                raise KeyError(f"Run not found: {result.run_id}")
            self._runs[result.run_id] = result

    def get_run(self, run_id):
        return self._runs.get(run_id)

    def list_runs(self, job_id, limit=10):
        runs = [r for r in reversed(list(self._runs.values())) if r.job_id == job_id]
        return runs[:limit]

    def append_knowledge(self, record):
        with self._lock:
            self._knowledge.append(record)

    def list_knowledge(self, pattern=None):
        return [k for k in self._knowledge if pattern is None or k.pattern == pattern]


SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    name TEXT NOT NULL,
    definition TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_run_at TEXT
);
CREATE TABLE IF NOT EXISTS job_runs (
    run_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    records_processed INTEGER NOT NULL DEFAULT 0,
    records_failed INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    par_iterations INTEGER NOT NULL DEFAULT 0,
    reflexion_improvements TEXT NOT NULL DEFAULT '[]',
    metrics TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_job_runs_job_id ON job_runs(job_id);
CREATE TABLE IF NOT EXISTS knowledge_records (
    pattern TEXT NOT NULL,
    lessons_learned TEXT NOT NULL,
    success_rate REAL NOT NULL,
    created_at TEXT NOT NULL
);
"""


class SqliteJobStore(JobStore):
    """
    SQLite-backed JobStore.

    One connection per instance, shared across threads behind a lock.
    JSON-valued fields are stored as TEXT.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            rows = cursor.fetchall()
            self._conn.commit()
            return rows

    @staticmethod
    def _job_from_row(row: sqlite3.Row) -> JobRecord:
        return JobRecord(
            job_id=row["job_id"],
            definition=JobDefinition.from_dict(json.loads(row["definition"])),
            status=JobStatus(row["status"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            last_run_at=parse_timestamp(row["last_run_at"]),
        )

    @staticmethod
    def _run_from_row(row: sqlite3.Row) -> JobRunResult:
        return JobRunResult.from_dict({
            "job_id": row["job_id"],
            "run_id": row["run_id"],
            "status": row["status"],
            "started_at": row["started_at"],
            "completed_at": row["completed_at"],
            "records_processed": row["records_processed"],
            "records_failed": row["records_failed"],
            "errors": json.loads(row["errors"]),
            "par_iterations": row["par_iterations"],
            "reflexion_improvements": json.loads(row["reflexion_improvements"]),
            "metrics": json.loads(row["metrics"]),
        })

    def create_job(self, definition, job_id=None, status=JobStatus.PENDING):
        now = utc_now()
        record = JobRecord(
            job_id=job_id or generate_ulid(),
            definition=definition,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self._execute(
            "INSERT INTO jobs (job_id, job_type, name, definition, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.job_id,
                definition.job_type.value,
                definition.name,
                json.dumps(definition.to_dict()),
                status.value,
                format_timestamp(now),
                format_timestamp(now),
            ),
        )
        return record

    def get_job(self, job_id):
        rows = self._execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,))
        return self._job_from_row(rows[0]) if rows else None

    def update_job(self, job_id, status, touch_last_run=False):
        now = format_timestamp(utc_now())
        if touch_last_run:
            self._execute(
                "UPDATE jobs SET status = ?, updated_at = ?, last_run_at = ? WHERE job_id = ?",
                (status.value, now, now, job_id),
            )
        else:
            self._execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE job_id = ?",
                (status.value, now, job_id),
            )
        record = self.get_job(job_id)
        if record is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return record

    def list_jobs(self, status=None, job_type=None, limit=100):
        clauses = []
        params: list = []
        statuses = _values(status)
        types = _values(job_type)
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if types:
            clauses.append(f"job_type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        rows = self._execute(
            f"SELECT * FROM jobs {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            tuple(params),
        )
        return [self._job_from_row(r) for r in rows]

    def create_run(self, job_id):
        result = JobRunResult(
            job_id=job_id,
            run_id=generate_ulid(),
            status=JobStatus.RUNNING,
            started_at=utc_now(),
        )
        self._execute(
            "INSERT INTO job_runs (run_id, job_id, status, started_at) VALUES (?, ?, ?, ?)",
            (result.run_id, job_id, result.status.value, format_timestamp(result.started_at)),
        )
        return result

    def finish_run(self, result):
        self._execute(
            "UPDATE job_runs SET status = ?, completed_at = ?, records_processed = ?, "
            "records_failed = ?, errors = ?, par_iterations = ?, reflexion_improvements = ?, "
            "metrics = ? WHERE run_id = ?",
            (
                result.status.value,
                format_timestamp(result.completed_at),
                result.records_processed,
                result.records_failed,
                json.dumps([e.to_dict() for e in result.errors]),
                result.par_iterations,
                json.dumps(result.reflexion_improvements),
                json.dumps(result.metrics, default=str),
                result.run_id,
            ),
        )

    def get_run(self, run_id):
        rows = self._execute("SELECT * FROM job_runs WHERE run_id = ?", (run_id,))
        return self._run_from_row(rows[0]) if rows else None

    def list_runs(self, job_id, limit=10):
        rows = self._execute(
            "SELECT * FROM job_runs WHERE job_id = ? ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (job_id, limit),
        )
        return [self._run_from_row(r) for r in rows]

    def append_knowledge(self, record):
        self._execute(
            "INSERT INTO knowledge_records (pattern, lessons_learned, success_rate, created_at) "
            "VALUES (?, ?, ?, ?)",
            (record.pattern, record.lessons_learned, record.success_rate, format_timestamp(record.created_at)),
        )

    def list_knowledge(self, pattern=None):
        if pattern is None:
            rows = self._execute("SELECT * FROM knowledge_records ORDER BY rowid")
        else:
            rows = self._execute(
                "SELECT * FROM knowledge_records WHERE pattern = ? ORDER BY rowid", (pattern,)
            )
        return [
            KnowledgeRecord(
                pattern=r["pattern"],
                lessons_learned=r["lessons_learned"],
                success_rate=r["success_rate"],
                created_at=parse_timestamp(r["created_at"]),
            )
            for r in rows
        ]
