"""
Shared perceive/act/reflect for row-oriented workers.

csv_import, json_import and data_load all parse a source into rows, fan the
rows out through the MultiTargetLoader and score the load by success rate.
They differ only in how perceive() obtains the rows.
"""

import logging
import time
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ingestra.engine import BaseWorker
from ingestra.loader import ColumnType, infer_column_types, summarize
from ingestra.schemas import (
    ActionMetrics,
    LoadAdjustment,
    MultiTargetConfig,
    PARAction,
    PARPerception,
    PARReflection,
    StorageTargetConfig,
    TableTarget,
)
from ingestra.sources import ParsedData

logger = logging.getLogger(__name__)


@dataclass
class TabularData:
    """Perception payload for row-oriented workers."""
    parsed: ParsedData
    column_types: dict[str, ColumnType] = field(default_factory=dict)

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self.parsed.rows

    @property
    def headers(self) -> list[str]:
        return self.parsed.headers


class TabularWorker(BaseWorker[TabularData, LoadAdjustment]):
    """
    Base for workers that load parsed rows into storage targets.

    Reflection scores records processed against source rows. Success when
    that rate reaches the configured success_threshold with no errors; retry
    when not successful, iterations remain and the rate is below
    retry_threshold. A retry halves the batch size, switches to row-by-row
    fallback for failing batches and skips rows already loaded.
    """

    @abstractmethod
    def load_rows(self) -> ParsedData:
        """Obtain parsed rows for this job."""
        ...

    def storage_targets(self) -> list[StorageTargetConfig]:
        target = self.definition.target
        if isinstance(target, MultiTargetConfig):
            return list(target.targets)
        if isinstance(target, TableTarget):
            return [target.as_sql_target()]
        raise ValueError(f"{self.definition.job_type.value} job '{self.definition.name}' has no targetConfig")

    def perceive(self) -> PARPerception[TabularData, LoadAdjustment]:
        targets = self.storage_targets()
        parsed = self.load_rows()
        column_types = infer_column_types(parsed.rows, parsed.headers)

        context: dict[str, Any] = {
            "rowCount": parsed.row_count,
            "headers": list(parsed.headers),
            "detectedTypes": {h: t.value for h, t in column_types.items()},
            "targets": [t.to_dict() for t in targets],
        }
        if parsed.nested_paths:
            context["nestedPaths"] = list(parsed.nested_paths)

        if self.assist.available:
            plan = self.assist.plan_extraction(parsed.sample(), lessons=self.previous_lessons())
            if plan:
                context["extractionPlan"] = plan

        return PARPerception(data=TabularData(parsed=parsed, column_types=column_types), context=context)

    def act(self, perception: PARPerception[TabularData, LoadAdjustment]) -> PARAction:
        started = time.monotonic()
        data = perception.data
        results = self.context.loader().load(
            data.rows,
            data.headers,
            data.column_types,
            self.storage_targets(),
            adjustment=perception.previous_adjustment,
        )
        processed, failed, errors = summarize(results)
        return PARAction(
            result={"targets": results},
            metrics=ActionMetrics(
                records_processed=processed,
                records_failed=failed,
                duration_ms=int((time.monotonic() - started) * 1000),
            ),
            errors=errors,
        )

    def reflect(
        self,
        action: PARAction,
        perception: PARPerception[TabularData, LoadAdjustment],
    ) -> PARReflection[LoadAdjustment]:
        config = self.context.config
        metrics = action.metrics
        improvements: list[str] = []

        if perception.data.parsed.row_count == 0:
            return PARReflection(
                success=False,
                retry=False,
                confidence=0.0,
                improvements=["Source contained no rows"],
                lesson="Load skipped: source contained no rows",
            )

        # processed sums every target, so a fully loaded target alone reaches 1.0
        rate = min(metrics.records_processed / perception.data.parsed.row_count, 1.0)
        if action.errors:
            improvements.append(f"Encountered {len(action.errors)} errors during load")

        success = rate >= config.success_threshold and not action.errors
        retry = (
            not success
            and perception.iteration < self.max_iterations - 1
            and rate < config.retry_threshold
        )

        adjustment = None
        if retry:
            previous = perception.previous_adjustment
            current = (previous.batch_size if previous and previous.batch_size else config.sql_batch_size)
            adjustment = LoadAdjustment(
                batch_size=max(1, current // 2),
                skip_errors=True,
                loaded_rows={
                    position: frozenset(result.loaded_rows)
                    for position, result in enumerate(action.result["targets"])
                    if result.loaded_rows
                },
            )
            improvements.append(f"Reducing batch size to {adjustment.batch_size} for retry")

        if success:
            lesson = (
                f"Successfully loaded {metrics.records_processed} records "
                f"with {rate * 100:.1f}% success rate"
            )
        elif action.errors:
            lesson = "Load failed with errors: " + "; ".join(e.message for e in action.errors[:3])
        else:
            lesson = None

        return PARReflection(
            success=success,
            retry=retry,
            confidence=rate,
            adjustment=adjustment,
            improvements=improvements,
            lesson=lesson,
        )
