"""
Orchestrator - resolve a job to its worker, run it, forward its events.

The orchestrator is an explicit instance: it owns the in-flight job set and
the collaborators every worker shares. Build one per process with
Orchestrator.from_config() (or directly, in tests) and close() it on exit.

Usage:
    registry = register_default_workers(WorkerRegistry())
    orchestrator = Orchestrator.from_config(load_config(), registry=registry)
    job_id = orchestrator.create_job(definition)
    result = orchestrator.execute_job(job_id)
"""

import logging
import threading
from typing import Iterable, Optional, Union

from ingestra.config import IngestraConfig, resolve_factory
from ingestra.engine import BaseWorker, WorkerContext
from ingestra.errors import JobAlreadyRunningError, JobNotFoundError
from ingestra.events import EventBus, EventHandler, WorkerEvent
from ingestra.loader import SqliteTableWriter, TableWriter
from ingestra.registry import WorkerRegistry
from ingestra.schemas import JobDefinition, JobRecord, JobRunResult, JobStatus, JobType, TargetKind
from ingestra.stack_clients import (
    ChatClient,
    EmbeddingClient,
    KnowledgeGraph,
    ModelAssist,
    SqliteDocumentIndex,
)
from ingestra.store import SqliteJobStore, generate_ulid

logger = logging.getLogger(__name__)


DIRECT_JOB_PREFIX = "direct-"


def build_table_writer(config: IngestraConfig) -> TableWriter:
    """Relational destination for the configured sql_backend."""
    if config.sql_backend == "bigquery":
        from ingestra.loader.bigquery import build_bigquery_writer

        return build_bigquery_writer(config.bigquery_project, config.bigquery_dataset)
    return SqliteTableWriter(config.warehouse_path)


def _build_client(factory_path: Optional[str]):
    if not factory_path:
        return None
    client = resolve_factory(factory_path)()
    logger.info(f"Built client from {factory_path}")
    return client


class Orchestrator:
    """
    Top-level entry point for running jobs.

    Events from every worker it runs are re-tagged with the orchestrator's
    job id and forwarded to subscribers of `self.events`.
    """

    def __init__(self, registry: WorkerRegistry, context: WorkerContext):
        self.registry = registry
        self.context = context
        self.events = EventBus()
        self._running: dict[str, BaseWorker] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: IngestraConfig,
        registry: Optional[WorkerRegistry] = None,
        chat_client: Optional[ChatClient] = None,
        embedder: Optional[EmbeddingClient] = None,
        knowledge_graph: Optional[KnowledgeGraph] = None,
    ) -> "Orchestrator":
        """
        Build an orchestrator over the SQLite store and configured destinations.

        Clients not passed in are built from the embedding_client, chat_client
        and knowledge_graph factory paths in the config, when set.

        Raises:
            ConfigError: If a configured factory path cannot be resolved
        """
        embedder = embedder or _build_client(config.embedding_client)
        chat_client = chat_client or _build_client(config.chat_client)
        knowledge_graph = knowledge_graph or _build_client(config.knowledge_graph)

        if registry is None:
            from ingestra.workers import register_default_workers

            registry = register_default_workers(WorkerRegistry())

        context = WorkerContext(
            config=config,
            store=SqliteJobStore(config.store_path),
            table_writer=build_table_writer(config),
            document_indexes={
                TargetKind.VECTOR_STORE: SqliteDocumentIndex(config.index_path, kind=TargetKind.VECTOR_STORE.value),
                TargetKind.SEARCH_INDEX: SqliteDocumentIndex(config.index_path, kind=TargetKind.SEARCH_INDEX.value),
            },
            embedder=embedder,
            assist=ModelAssist(chat_client),
            knowledge_graph=knowledge_graph,
        )
        return cls(registry, context)

    def close(self) -> None:
        """Release store, destination and HTTP resources."""
        closables = [self.context.store, self.context.table_writer, *self.context.document_indexes.values()]
        for resource in closables:
            close = getattr(resource, "close", None)
            if close is not None:
                close()
        self.context.http.close()

    # -------------------------------------------------------------------------
    # Submission and execution
    # -------------------------------------------------------------------------

    def create_job(self, definition: JobDefinition) -> str:
        """Persist a pending job and return its id."""
        record = self.context.store.create_job(definition)
        logger.info(f"Created {definition.job_type.value} job {record.job_id} ({definition.name})")
        return record.job_id

    def execute_job(self, job_id: str) -> JobRunResult:
        """
        Run a persisted job.

        Raises:
            JobNotFoundError: If job_id is not in the store
            WorkerNotRegisteredError: If no worker handles the job's type
            JobAlreadyRunningError: If job_id is already executing here
        """
        record = self.context.store.get_job(job_id)
        if record is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return self._run(job_id, record.definition)

    def execute_job_direct(self, definition: JobDefinition) -> JobRunResult:
        """Run a definition without submitting it first, under a generated id."""
        return self._run(f"{DIRECT_JOB_PREFIX}{generate_ulid()}", definition)

    def _run(self, job_id: str, definition: JobDefinition) -> JobRunResult:
        factory = self.registry.resolve(definition.job_type)
        worker = factory(definition, self.context)

        with self._lock:
            if job_id in self._running:
                raise JobAlreadyRunningError(f"Job {job_id} is already running")
            self._running[job_id] = worker

        unsubscribe = worker.events.subscribe(lambda event: self._forward(job_id, event))
        try:
            return worker.execute(job_id)
        finally:
            unsubscribe()
            with self._lock:
                self._running.pop(job_id, None)

    def _forward(self, job_id: str, event: WorkerEvent) -> None:
        self.events.forward(event.with_job_id(job_id))

    def subscribe(self, handler: EventHandler):
        """Receive every forwarded worker event. Returns an unsubscribe callable."""
        return self.events.subscribe(handler)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def is_job_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._running

    def get_running_jobs(self) -> list[str]:
        with self._lock:
            return list(self._running)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.context.store.get_job(job_id)

    def get_jobs(
        self,
        status: Optional[Iterable[Union[JobStatus, str]]] = None,
        job_type: Optional[Iterable[Union[JobType, str]]] = None,
        limit: int = 100,
    ) -> list[JobRecord]:
        return self.context.store.list_jobs(status=status, job_type=job_type, limit=limit)

    def get_job_runs(self, job_id: str, limit: int = 10) -> list[JobRunResult]:
        return self.context.store.list_runs(job_id, limit=limit)
