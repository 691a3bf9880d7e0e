"""
Perceive-act-reflect types.

A worker produces one PARPerception, one PARAction and one PARReflection per
iteration. ETLError values are record-level failures: collected during act,
never raised.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")
A = TypeVar("A")


# Record-level error codes
BATCH_INSERT_ERROR = "BATCH_INSERT_ERROR"
ROW_INSERT_ERROR = "ROW_INSERT_ERROR"
SQL_TABLE_ERROR = "SQL_TABLE_ERROR"
VECTOR_BATCH_ERROR = "VECTOR_BATCH_ERROR"
VECTOR_UPLOAD_ERROR = "VECTOR_UPLOAD_ERROR"
VECTOR_STORE_ERROR = "VECTOR_STORE_ERROR"
SEARCH_BATCH_ERROR = "SEARCH_BATCH_ERROR"
SEARCH_UPLOAD_ERROR = "SEARCH_UPLOAD_ERROR"
SEARCH_INDEX_ERROR = "SEARCH_INDEX_ERROR"
TARGET_NOT_CONFIGURED = "TARGET_NOT_CONFIGURED"
UNKNOWN_TARGET = "UNKNOWN_TARGET"
KG_BUILD_ERROR = "KG_BUILD_ERROR"
INSERT_ERROR = "INSERT_ERROR"
FETCH_ERROR = "FETCH_ERROR"

# Execution-level error codes (synthesised by the engine)
EXECUTION_ERROR = "EXECUTION_ERROR"
PAR_LOOP_FAILED = "PAR_LOOP_FAILED"


@dataclass(frozen=True)
class ETLError:
    code: str
    message: str
    row: Optional[int] = None
    column: Optional[str] = None
    details: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.row is not None:
            result["row"] = self.row
        if self.column is not None:
            result["column"] = self.column
        if self.details:
            result["details"] = self.details
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ETLError":
        return cls(
            code=data["code"],
            message=data["message"],
            row=data.get("row"),
            column=data.get("column"),
            details=data.get("details"),
        )


@dataclass(frozen=True)
class LoadAdjustment:
    """
    Adjustment for tabular loads, produced by reflect and read by the next act.

    loaded_rows maps a target's position in the target list to the source row
    indices already written to it. A retry skips targets whose rows are all
    loaded and does not re-insert loaded rows into insert-mode tables.
    """
    batch_size: Optional[int] = None
    skip_errors: bool = False
    loaded_rows: dict[int, frozenset[int]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchSize": self.batch_size,
            "skipErrors": self.skip_errors,
            "loadedRows": {str(k): len(v) for k, v in self.loaded_rows.items()},
        }


@dataclass
class PARPerception(Generic[T, A]):
    """
    Result of perceive().

    Attributes:
        data: Worker-defined payload (parsed rows, fetched series, ...)
        context: Free-form facts about the input (row counts, headers, ...)
        iteration: 0-based iteration number, set by the engine
        previous_adjustment: Adjustment from the prior reflection, set by the
            engine; None on iteration 0
    """
    data: T
    context: dict[str, Any] = field(default_factory=dict)
    iteration: int = 0
    previous_adjustment: Optional[A] = None


@dataclass(frozen=True)
class ActionMetrics:
    records_processed: int = 0
    records_failed: int = 0
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return self.records_processed + self.records_failed

    @property
    def success_rate(self) -> float:
        total = self.total
        return self.records_processed / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordsProcessed": self.records_processed,
            "recordsFailed": self.records_failed,
            "durationMs": self.duration_ms,
        }


@dataclass
class PARAction:
    result: Any = None
    metrics: ActionMetrics = field(default_factory=ActionMetrics)
    errors: list[ETLError] = field(default_factory=list)


@dataclass
class PARReflection(Generic[A]):
    success: bool
    retry: bool = False
    confidence: float = 0.0
    adjustment: Optional[A] = None
    improvements: list[str] = field(default_factory=list)
    lesson: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
