"""
Event bus for run lifecycle events.

Each worker owns one EventBus. The engine emits events in execution order;
subscribers (the orchestrator, a trace UI, tests) receive them synchronously.
A failing subscriber is logged and skipped, it never affects the run.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from ingestra.utils import format_timestamp, utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    JOB_STARTED = "job_started"
    PERCEPTION_COMPLETE = "perception_complete"
    ACTION_COMPLETE = "action_complete"
    REFLECTION_COMPLETE = "reflection_complete"
    ITERATION_COMPLETE = "iteration_complete"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"


@dataclass(frozen=True)
class WorkerEvent:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    job_id: Optional[str] = None
    run_id: Optional[str] = None
    sequence: int = 0
    emitted_at: datetime = field(default_factory=utc_now)

    def with_job_id(self, job_id: str) -> "WorkerEvent":
        return replace(self, job_id=job_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "job_id": self.job_id,
            "run_id": self.run_id,
            "sequence": self.sequence,
            "emitted_at": format_timestamp(self.emitted_at),
        }


EventHandler = Callable[[WorkerEvent], None]


class EventBus:
    """
    Ordered, synchronous publish/subscribe for one worker's runs.

    history holds every event emitted since the last bind(), so an observer
    that attaches late can still read the full trace of the current run.
    """

    def __init__(self):
        self._handlers: list[EventHandler] = []
        self._lock = threading.Lock()
        self._sequence = itertools.count()
        self.history: list[WorkerEvent] = []
        self.job_id: Optional[str] = None
        self.run_id: Optional[str] = None

    def bind(self, job_id: Optional[str], run_id: Optional[str]) -> None:
        """Start a new run: tag subsequent events and reset history."""
        with self._lock:
            self.job_id = job_id
            self.run_id = run_id
            self.history = []
            self._sequence = itertools.count()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            A callable that removes the handler again
        """
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event_type: EventType, payload: Optional[dict[str, Any]] = None) -> WorkerEvent:
        with self._lock:
            event = WorkerEvent(
                type=event_type,
                payload=payload or {},
                job_id=self.job_id,
                run_id=self.run_id,
                sequence=next(self._sequence),
            )
            self.history.append(event)
        self._dispatch(event)
        return event

    def forward(self, event: WorkerEvent) -> None:
        """Deliver an event emitted on another bus. History is not recorded."""
        self._dispatch(event)

    def _dispatch(self, event: WorkerEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.warning(f"Event handler failed for {event.type.value}", exc_info=True)
