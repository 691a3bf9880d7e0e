"""
Schema definitions for ingestra.

- job_def: JobDefinition and its source/target/transform variants
- par: perceive-act-reflect types and record-level ETLError
- run_record: JobRecord, JobRunResult, KnowledgeRecord
"""

from ingestra.schemas.job_def import (
    ColumnTransform,
    DedupeConfig,
    FilterCondition,
    FilterConfig,
    DatabaseSource,
    InlineSource,
    JobDefinition,
    JobType,
    LoadMode,
    MultiTargetConfig,
    RemoteSource,
    ScheduleConfig,
    SearchIndexTarget,
    SourceConfig,
    SourceFormat,
    SqlTableTarget,
    StorageTargetConfig,
    TableTarget,
    TargetConfig,
    TargetKind,
    TransformConfig,
    VectorStoreTarget,
    is_multi_target,
)
from ingestra.schemas.par import (
    ActionMetrics,
    ETLError,
    LoadAdjustment,
    PARAction,
    PARPerception,
    PARReflection,
)
from ingestra.schemas.run_record import (
    JobRecord,
    JobRunResult,
    JobStatus,
    KnowledgeRecord,
)

__all__ = [
    "JobDefinition",
    "JobType",
    "LoadMode",
    "SourceFormat",
    "TargetKind",
    "InlineSource",
    "RemoteSource",
    "DatabaseSource",
    "SourceConfig",
    "TableTarget",
    "MultiTargetConfig",
    "SqlTableTarget",
    "VectorStoreTarget",
    "SearchIndexTarget",
    "StorageTargetConfig",
    "TargetConfig",
    "TransformConfig",
    "ColumnTransform",
    "FilterCondition",
    "FilterConfig",
    "DedupeConfig",
    "ScheduleConfig",
    "is_multi_target",
    "ActionMetrics",
    "ETLError",
    "LoadAdjustment",
    "PARAction",
    "PARPerception",
    "PARReflection",
    "JobRecord",
    "JobRunResult",
    "JobStatus",
    "KnowledgeRecord",
]
