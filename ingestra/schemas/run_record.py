"""
Durable records: job rows, per-attempt run results and knowledge records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ingestra.schemas.job_def import JobDefinition
from ingestra.schemas.par import ETLError
from ingestra.utils import format_timestamp, parse_timestamp, utc_now


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class JobRecord:
    """A persisted job: its definition plus lifecycle status."""
    job_id: str
    definition: JobDefinition
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_run_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "definition": self.definition.to_dict(),
            "status": self.status.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "last_run_at": format_timestamp(self.last_run_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRecord":
        return cls(
            job_id=data["job_id"],
            definition=JobDefinition.from_dict(data["definition"]),
            status=JobStatus(data["status"]),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            last_run_at=parse_timestamp(data.get("last_run_at")),
        )


@dataclass
class JobRunResult:
    """
    Outcome of one execution attempt.

    records_processed / records_failed / metrics come from the final action
    the PAR loop produced, even when the run ends as 'failed'.
    """
    job_id: str
    run_id: str
    status: JobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_failed: int = 0
    errors: list[ETLError] = field(default_factory=list)
    par_iterations: int = 0
    reflexion_improvements: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0].message if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "errors": [e.to_dict() for e in self.errors],
            "par_iterations": self.par_iterations,
            "reflexion_improvements": list(self.reflexion_improvements),
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRunResult":
        return cls(
            job_id=data["job_id"],
            run_id=data["run_id"],
            status=JobStatus(data["status"]),
            started_at=parse_timestamp(data["started_at"]),
            completed_at=parse_timestamp(data.get("completed_at")),
            records_processed=data.get("records_processed", 0),
            records_failed=data.get("records_failed", 0),
            errors=[ETLError.from_dict(e) for e in data.get("errors", [])],
            par_iterations=data.get("par_iterations", 0),
            reflexion_improvements=list(data.get("reflexion_improvements", [])),
            metrics=dict(data.get("metrics", {})),
        )


@dataclass(frozen=True)
class KnowledgeRecord:
    """Append-only lesson written after a reflection that carried one."""
    pattern: str
    lessons_learned: str
    success_rate: float = 0.5
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "lessons_learned": self.lessons_learned,
            "success_rate": self.success_rate,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KnowledgeRecord":
        return cls(
            pattern=data["pattern"],
            lessons_learned=data["lessons_learned"],
            success_rate=data.get("success_rate", 0.5),
            created_at=parse_timestamp(data["created_at"]),
        )
