"""
Shared act/reflect for public-data connectors.

A connector fetches one public dataset in perceive() (falling back to
synthetic data when the source is unreachable or thin), turns it into rows
and loads them into a single table it owns. Reflection scores the fetch
rate (series, tickers or sectors that came back) and the insert rate.
"""

import logging
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Sequence, TypeVar

from ingestra.engine import BaseWorker
from ingestra.loader import ColumnType, summarize
from ingestra.schemas import (
    ActionMetrics,
    ETLError,
    LoadMode,
    PARAction,
    PARPerception,
    PARReflection,
    SqlTableTarget,
    TableTarget,
)
from ingestra.schemas import par

logger = logging.getLogger(__name__)


FETCH_SUCCESS_RATE = 0.7
INSERT_SUCCESS_RATE = 0.95


@dataclass
class PublicData:
    """
    Perception payload common to every connector.

    Attributes:
        fetch_errors: One message per item that could not be fetched
        requested: Items asked of the source (synthetic item count on fallback)
        used_synthetic: True when the rows are synthetic
    """
    fetch_errors: list[str] = field(default_factory=list)
    requested: int = 0
    used_synthetic: bool = False

    def use_synthetic(self, item_count: int) -> None:
        self.fetch_errors = []
        self.requested = item_count
        self.used_synthetic = True

    @property
    def fetch_rate(self) -> float:
        if not self.requested:
            return 0.0
        return (self.requested - len(self.fetch_errors)) / self.requested


D = TypeVar("D", bound=PublicData)


class PublicDataWorker(BaseWorker[D, None]):
    """
    Base for connectors loading one public dataset into one table.

    Subclasses set the table layout and implement perceive(), build_rows()
    and describe_row(). The destination table is targetConfig.table when
    given, else the tableName parameter, else default_table; the load mode is
    always the connector's own.
    """

    default_table: ClassVar[str]
    headers: ClassVar[Sequence[str]]
    column_types: ClassVar[Mapping[str, ColumnType]]
    load_mode: ClassVar[LoadMode] = LoadMode.REPLACE
    key_column: ClassVar[Optional[str]] = None
    # Plural noun for fetched items in improvements
    item_label: ClassVar[str] = "items"
    # None: fetch coverage does not decide success
    fetch_threshold: ClassVar[Optional[float]] = FETCH_SUCCESS_RATE

    @abstractmethod
    def build_rows(self, data: D) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def describe_row(self, row: Mapping[str, Any]) -> str:
        """Short label for a row in insert error messages."""
        ...

    def success_lesson(self, records_processed: int, data: D) -> str:
        return f"Successfully loaded {records_processed} {self.item_label}"

    def table_name(self) -> str:
        if isinstance(self.definition.target, TableTarget):
            return self.definition.target.table
        return self.definition.extras.get("tableName", self.default_table)

    def act(self, perception: PARPerception[D, None]) -> PARAction:
        started = time.monotonic()
        data = perception.data
        rows = self.build_rows(data)

        target = SqlTableTarget(table_name=self.table_name(), mode=self.load_mode, key_column=self.key_column)
        results = self.context.loader().load(rows, list(self.headers), dict(self.column_types), [target])
        processed, failed, load_errors = summarize(results)
        logger.info(f"{self.job_type.value}: {processed} rows into {target.table_name}, {failed} failed")

        errors = [ETLError(par.FETCH_ERROR, message) for message in data.fetch_errors]
        for error in load_errors:
            # batch and table errors cover many rows and keep their own code
            if error.code != par.ROW_INSERT_ERROR or error.row is None:
                errors.append(error)
                continue
            errors.append(ETLError(
                par.INSERT_ERROR,
                f"Failed to insert {self.describe_row(rows[error.row])}: {error.message}",
                row=error.row,
                column=error.column,
            ))

        return PARAction(
            result={"rowCount": len(rows), "targets": results},
            metrics=ActionMetrics(
                records_processed=processed,
                records_failed=failed,
                duration_ms=int((time.monotonic() - started) * 1000),
            ),
            errors=errors,
        )

    def reflect(self, action: PARAction, perception: PARPerception[D, None]) -> PARReflection[None]:
        data = perception.data
        metrics = action.metrics
        improvements = []

        row_count = action.result["rowCount"]
        insert_rate = metrics.records_processed / row_count if row_count else 0.0
        fetch_rate = data.fetch_rate

        if data.fetch_errors:
            improvements.append(
                f"Failed to fetch {len(data.fetch_errors)} {self.item_label}: {', '.join(data.fetch_errors[:3])}"
            )
        if metrics.records_failed:
            improvements.append(f"Failed to insert {metrics.records_failed} records")

        success = insert_rate >= INSERT_SUCCESS_RATE
        if self.fetch_threshold is None:
            confidence = insert_rate
        else:
            success = success and fetch_rate >= self.fetch_threshold
            confidence = (fetch_rate + insert_rate) / 2

        if success:
            lesson = self.success_lesson(metrics.records_processed, data)
        else:
            lesson = (
                f"Partial success: {metrics.records_processed} records loaded, "
                f"{len(data.fetch_errors)} fetch errors"
            )

        return PARReflection(
            success=success,
            retry=not success and perception.iteration < self.max_iterations - 1,
            confidence=min(confidence, 1.0),
            improvements=improvements,
            lesson=lesson,
        )
