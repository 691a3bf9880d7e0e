"""
PAR loop engine.

BaseWorker drives a bounded perceive -> act -> reflect loop:

    for iteration in range(max_iterations):
        perception = perceive()        # sees the previous reflection's adjustment
        action = act(perception)       # record-level failures become ETLError values
        reflection = reflect(action, perception)
        success -> stop (completed)
        no retry -> stop (failed, last action's metrics kept)
        retry -> carry reflection.adjustment into the next perception

execute() wraps the loop with job/run persistence and lifecycle events. Any
exception from the worker or from persistence ends the run as 'failed' with a
single EXECUTION_ERROR; the loop never retries on an exception.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import ClassVar, Generic, Optional, TypeVar

import requests

from ingestra.config import IngestraConfig
from ingestra.events import EventBus, EventType
from ingestra.loader import MultiTargetLoader, TableWriter
from ingestra.schemas import (
    ETLError,
    JobDefinition,
    JobRunResult,
    JobStatus,
    JobType,
    KnowledgeRecord,
    PARAction,
    PARPerception,
    PARReflection,
    TargetKind,
)
from ingestra.schemas import par
from ingestra.stack_clients import DocumentIndex, EmbeddingClient, KnowledgeGraph, ModelAssist
from ingestra.store import JobStore
from ingestra.utils import utc_now

logger = logging.getLogger(__name__)


T = TypeVar("T")
A = TypeVar("A")

# Success rate recorded with every lesson; lessons are not scored
NEUTRAL_SUCCESS_RATE = 0.5


@dataclass
class WorkerContext:
    """
    Shared collaborators handed to every worker factory.

    Built once per Orchestrator; workers never construct their own clients.
    """

    config: IngestraConfig
    store: JobStore
    table_writer: Optional[TableWriter] = None
    document_indexes: dict[TargetKind, DocumentIndex] = field(default_factory=dict)
    embedder: Optional[EmbeddingClient] = None
    assist: ModelAssist = field(default_factory=ModelAssist)
    knowledge_graph: Optional[KnowledgeGraph] = None
    http: requests.Session = field(default_factory=requests.Session)

    def loader(self) -> MultiTargetLoader:
        return MultiTargetLoader(
            table_writer=self.table_writer,
            document_indexes=self.document_indexes,
            embedder=self.embedder,
            sql_batch_size=self.config.sql_batch_size,
            embedding_batch_size=self.config.embedding_batch_size,
            embedding_dimensions=self.config.embedding_dimensions,
        )


@dataclass
class LoopOutcome:
    """What the PAR loop hands back to execute()."""
    action: Optional[PARAction] = None
    reflection: Optional[PARReflection] = None
    iterations: int = 0
    improvements: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.reflection is not None and self.reflection.success


class BaseWorker(ABC, Generic[T, A]):
    """
    Base class for all workers.

    Subclasses implement perceive/act/reflect for one job type. T is the
    perception payload type, A the adjustment type reflect() may hand to the
    next iteration.
    """

    job_type: ClassVar[JobType]

    def __init__(self, definition: JobDefinition, context: WorkerContext):
        self.definition = definition
        self.context = context
        self.events = EventBus()
        self.max_iterations = context.config.max_iterations

    @property
    def assist(self) -> ModelAssist:
        return self.context.assist

    @abstractmethod
    def perceive(self) -> PARPerception[T, A]:
        """Gather and parse input."""
        ...

    @abstractmethod
    def act(self, perception: PARPerception[T, A]) -> PARAction:
        """Perform the write. Record-level failures go into PARAction.errors."""
        ...

    @abstractmethod
    def reflect(self, action: PARAction, perception: PARPerception[T, A]) -> PARReflection[A]:
        """Score the action and decide success/retry."""
        ...

    def previous_lessons(self, limit: int = 5) -> list[str]:
        """Most recent lessons for this job's pattern. Best effort."""
        try:
            records = self.context.store.list_knowledge(self.definition.knowledge_pattern)
        except Exception:
            logger.warning("Could not read knowledge records", exc_info=True)
            return []
        return [r.lessons_learned for r in records[-limit:]]

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def run_par_loop(self) -> LoopOutcome:
        """Run at most max_iterations perceive/act/reflect cycles."""
        outcome = LoopOutcome()
        last_adjustment: Optional[A] = None

        for iteration in range(self.max_iterations):
            outcome.iterations = iteration + 1
            logger.debug(f"{self.definition.name}: iteration {iteration + 1}/{self.max_iterations}")

            perception = self.perceive()
            perception.iteration = iteration
            perception.previous_adjustment = last_adjustment
            self.events.emit(EventType.PERCEPTION_COMPLETE, {
                "iteration": iteration,
                "context": perception.context,
            })

            action = self.act(perception)
            outcome.action = action
            self.events.emit(EventType.ACTION_COMPLETE, {
                "iteration": iteration,
                "metrics": action.metrics.to_dict(),
                "errorCount": len(action.errors),
            })

            reflection = self.reflect(action, perception)
            outcome.reflection = reflection
            outcome.improvements.extend(reflection.improvements)
            self.events.emit(EventType.REFLECTION_COMPLETE, {
                "iteration": iteration,
                "success": reflection.success,
                "retry": reflection.retry,
                "confidence": reflection.confidence,
                "improvements": list(reflection.improvements),
            })

            if reflection.lesson:
                self._store_lesson(reflection.lesson)

            if reflection.success:
                self.events.emit(EventType.ITERATION_COMPLETE, {"iteration": iteration, "success": True})
                break

            if not reflection.retry:
                self.events.emit(EventType.ITERATION_COMPLETE, {"iteration": iteration, "success": False})
                break

            self.events.emit(EventType.ITERATION_COMPLETE, {
                "iteration": iteration,
                "success": False,
                "retrying": True,
            })
            last_adjustment = reflection.adjustment

        return outcome

    def _store_lesson(self, lesson: str) -> None:
        record = KnowledgeRecord(
            pattern=self.definition.knowledge_pattern,
            lessons_learned=lesson,
            success_rate=NEUTRAL_SUCCESS_RATE,
        )
        try:
            self.context.store.append_knowledge(record)
        except Exception:
            logger.warning(f"Failed to store lesson for {record.pattern}", exc_info=True)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute(self, job_id: str) -> JobRunResult:
        """
        Run this worker for job_id and persist the outcome.

        The job row is created (for direct execution) or moved to 'running',
        a run row is created, the PAR loop runs, and the terminal status is
        written. Exactly one of job_completed / job_failed is emitted.
        """
        store = self.context.store
        started = time.monotonic()
        started_at = utc_now()
        run: Optional[JobRunResult] = None
        self.events.bind(job_id, None)

        try:
            if store.get_job(job_id) is None:
                store.create_job(self.definition, job_id=job_id, status=JobStatus.RUNNING)
            else:
                store.update_job(job_id, JobStatus.RUNNING)
            run = store.create_run(job_id)
            self.events.run_id = run.run_id

            logger.info(f"Starting {self.definition.job_type.value} job {job_id} ({self.definition.name})")
            self.events.emit(EventType.JOB_STARTED, {
                "jobType": self.definition.job_type.value,
                "name": self.definition.name,
            })

            outcome = self.run_par_loop()
            result = self._build_result(job_id, run, outcome, started)

            store.finish_run(result)
            store.update_job(job_id, result.status, touch_last_run=True)

        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            result = JobRunResult(
                job_id=job_id,
                run_id=run.run_id if run else "",
                status=JobStatus.FAILED,
                started_at=run.started_at if run else started_at,
                completed_at=utc_now(),
                errors=[ETLError(par.EXECUTION_ERROR, str(e) or e.__class__.__name__)],
                metrics={"totalDurationMs": _elapsed_ms(started)},
            )
            self._persist_failure(job_id, run, result)

        duration_ms = result.metrics.get("totalDurationMs", _elapsed_ms(started))
        if result.status == JobStatus.COMPLETED:
            logger.info(
                f"Job {job_id} completed: {result.records_processed} processed, "
                f"{result.records_failed} failed in {result.par_iterations} iteration(s)"
            )
            self.events.emit(EventType.JOB_COMPLETED, {
                "recordsProcessed": result.records_processed,
                "recordsFailed": result.records_failed,
                "parIterations": result.par_iterations,
                "durationMs": duration_ms,
            })
        else:
            logger.info(f"Job {job_id} failed: {result.first_error or 'reflection did not succeed'}")
            self.events.emit(EventType.JOB_FAILED, {
                "error": result.first_error,
                "recordsProcessed": result.records_processed,
                "recordsFailed": result.records_failed,
                "parIterations": result.par_iterations,
                "durationMs": duration_ms,
            })
        return result

    def _build_result(self, job_id: str, run: JobRunResult, outcome: LoopOutcome, started: float) -> JobRunResult:
        result = JobRunResult(
            job_id=job_id,
            run_id=run.run_id,
            status=JobStatus.COMPLETED if outcome.succeeded else JobStatus.FAILED,
            started_at=run.started_at,
            completed_at=utc_now(),
            par_iterations=outcome.iterations,
            reflexion_improvements=list(outcome.improvements),
        )

        if outcome.action is None:
            result.errors = [ETLError(par.PAR_LOOP_FAILED, "PAR loop produced no result")]
            result.metrics = {"totalDurationMs": _elapsed_ms(started)}
            return result

        metrics = outcome.action.metrics
        result.records_processed = metrics.records_processed
        result.records_failed = metrics.records_failed
        result.errors = list(outcome.action.errors)
        result.metrics = {
            **metrics.to_dict(),
            "totalDurationMs": _elapsed_ms(started),
            "confidence": outcome.reflection.confidence if outcome.reflection else 0.0,
        }
        return result

    def _persist_failure(self, job_id: str, run: Optional[JobRunResult], result: JobRunResult) -> None:
        store = self.context.store
        try:
            if run is not None:
                store.finish_run(result)
            store.update_job(job_id, JobStatus.FAILED, touch_last_run=True)
        except Exception:
            logger.warning(f"Could not persist failure of job {job_id}", exc_info=True)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)