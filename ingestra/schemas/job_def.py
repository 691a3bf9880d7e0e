"""
JobDefinition schema - the durable description of one unit of ingestion work.

A JobDefinition is created by a caller, persisted as a 'pending' job row,
and is immutable once a run starts (all dataclasses here are frozen).

Wire format (to_dict/from_dict) uses the submission payload keys:
    {
        "jobType": "data_load",
        "name": "customers",
        "sourceConfig": {"type": "csv", "fileContent": "..."},
        "targetConfig": {"targets": [{"type": "sql_table", "tableName": "customers"}]},
        "transformConfig": {...},      # optional
        "schedule": {...},             # optional
    }
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class JobType(str, Enum):
    """Closed set of job types a worker can be registered for."""
    CSV_IMPORT = "csv_import"
    JSON_IMPORT = "json_import"
    DATA_LOAD = "data_load"
    KG_BUILD = "kg_build"
    ECONOMIC_INDICATORS = "economic_indicators"
    PUBLIC_COMPANIES = "public_companies"
    INDUSTRY_STATISTICS = "industry_statistics"


class LoadMode(str, Enum):
    """Write mode for relational destinations."""
    INSERT = "insert"
    UPSERT = "upsert"
    REPLACE = "replace"


class SourceFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class TargetKind(str, Enum):
    """Tag for the storage target variants."""
    SQL_TABLE = "sql_table"
    VECTOR_STORE = "vector_store"
    SEARCH_INDEX = "search_index"


# Older payloads name the destinations after the backing product
TARGET_KIND_ALIASES = {
    "postgres_vector": TargetKind.VECTOR_STORE,
    "azure_search": TargetKind.SEARCH_INDEX,
}


# =============================================================================
# SOURCES
# =============================================================================


@dataclass(frozen=True)
class InlineSource:
    """Content uploaded with the job (CSV or JSON text)."""
    content: str
    format: SourceFormat = SourceFormat.CSV

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.format.value, "fileContent": self.content}


@dataclass(frozen=True)
class RemoteSource:
    """HTTP endpoint returning CSV or JSON."""
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
    format: SourceFormat = SourceFormat.JSON

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": "api",
            "format": self.format.value,
            "url": self.url,
            "method": self.method,
        }
        if self.headers:
            result["headers"] = dict(self.headers)
        if self.body is not None:
            result["body"] = self.body
        return result


@dataclass(frozen=True)
class DatabaseSource:
    """SQL query against a database (connection is a SQLite path)."""
    connection: str
    query: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "database", "connectionString": self.connection, "query": self.query}


SourceConfig = Union[InlineSource, RemoteSource, DatabaseSource]


def source_from_dict(data: Optional[dict[str, Any]]) -> Optional[SourceConfig]:
    """Parse a sourceConfig payload. An empty payload means 'no source'."""
    if not data:
        return None

    source_type = data.get("type", "csv")
    if data.get("fileContent") is not None:
        fmt = SourceFormat(source_type) if source_type in ("csv", "json") else SourceFormat.CSV
        return InlineSource(content=data["fileContent"], format=fmt)

    if data.get("url"):
        fmt = data.get("format") or ("csv" if source_type == "csv" else "json")
        return RemoteSource(
            url=data["url"],
            method=data.get("method", "GET").upper(),
            headers=dict(data.get("headers") or {}),
            body=data.get("body"),
            format=SourceFormat(fmt),
        )

    if data.get("connectionString") or data.get("query"):
        if not data.get("connectionString") or not data.get("query"):
            raise ValueError("database source requires both connectionString and query")
        return DatabaseSource(connection=data["connectionString"], query=data["query"])

    if data.get("filePath"):
        raise ValueError("filePath sources are not supported - provide fileContent directly")

    raise ValueError(f"Unrecognised sourceConfig: keys={sorted(data.keys())}")


# =============================================================================
# TARGETS
# =============================================================================


@dataclass(frozen=True)
class TableTarget:
    """Legacy single-destination target config."""
    table: str
    mode: LoadMode = LoadMode.INSERT
    key_column: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"table": self.table, "mode": self.mode.value}
        if self.key_column:
            result["keyColumn"] = self.key_column
        return result

    def as_sql_target(self) -> "SqlTableTarget":
        return SqlTableTarget(table_name=self.table, mode=self.mode, key_column=self.key_column)


@dataclass(frozen=True)
class SqlTableTarget:
    table_name: str = "imported_data"
    mode: LoadMode = LoadMode.INSERT
    key_column: Optional[str] = None
    name: Optional[str] = None
    kind: TargetKind = field(default=TargetKind.SQL_TABLE, init=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.kind.value,
            "tableName": self.table_name,
            "mode": self.mode.value,
        }
        if self.key_column:
            result["keyColumn"] = self.key_column
        if self.name:
            result["name"] = self.name
        return result


@dataclass(frozen=True)
class VectorStoreTarget:
    index_name: str = "vector_data"
    embedding_columns: tuple[str, ...] = ()
    chunk_size: int = 1000
    chunk_overlap: int = 200
    name: Optional[str] = None
    kind: TargetKind = field(default=TargetKind.VECTOR_STORE, init=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": self.kind.value,
            "indexName": self.index_name,
            "chunkSize": self.chunk_size,
            "chunkOverlap": self.chunk_overlap,
        }
        if self.embedding_columns:
            result["embeddingColumns"] = list(self.embedding_columns)
        if self.name:
            result["name"] = self.name
        return result


@dataclass(frozen=True)
class SearchIndexTarget:
    index_name: str = "search_data"
    embedding_columns: tuple[str, ...] = ()
    semantic_config_name: Optional[str] = None
    name: Optional[str] = None
    kind: TargetKind = field(default=TargetKind.SEARCH_INDEX, init=False)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.kind.value, "indexName": self.index_name}
        if self.embedding_columns:
            result["embeddingColumns"] = list(self.embedding_columns)
        if self.semantic_config_name:
            result["semanticConfigName"] = self.semantic_config_name
        if self.name:
            result["name"] = self.name
        return result


StorageTargetConfig = Union[SqlTableTarget, VectorStoreTarget, SearchIndexTarget]


@dataclass(frozen=True)
class MultiTargetConfig:
    targets: tuple[StorageTargetConfig, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"targets": [t.to_dict() for t in self.targets]}


TargetConfig = Union[TableTarget, MultiTargetConfig]


def storage_target_from_dict(data: dict[str, Any]) -> StorageTargetConfig:
    raw_kind = data.get("type")
    kind = TARGET_KIND_ALIASES.get(raw_kind) if raw_kind in TARGET_KIND_ALIASES else None
    if kind is None:
        try:
            kind = TargetKind(raw_kind)
        except ValueError:
            raise ValueError(f"Invalid target type: {raw_kind}")

    columns = tuple(data.get("embeddingColumns") or ())
    if kind == TargetKind.SQL_TABLE:
        return SqlTableTarget(
            table_name=data.get("tableName") or "imported_data",
            mode=LoadMode(data.get("mode", "insert")),
            key_column=data.get("keyColumn"),
            name=data.get("name"),
        )
    if kind == TargetKind.VECTOR_STORE:
        return VectorStoreTarget(
            index_name=data.get("indexName") or "vector_data",
            embedding_columns=columns,
            chunk_size=int(data.get("chunkSize", 1000)),
            chunk_overlap=int(data.get("chunkOverlap", 200)),
            name=data.get("name"),
        )
    return SearchIndexTarget(
        index_name=data.get("azureIndexName") or data.get("indexName") or "search_data",
        embedding_columns=columns,
        semantic_config_name=data.get("semanticConfigName") or data.get("azureSemanticConfigName"),
        name=data.get("name"),
    )


def target_from_dict(data: Optional[dict[str, Any]]) -> Optional[TargetConfig]:
    if not data:
        return None
    if isinstance(data.get("targets"), list):
        return MultiTargetConfig(targets=tuple(storage_target_from_dict(t) for t in data["targets"]))
    if "table" not in data:
        raise ValueError("targetConfig requires either 'targets' or 'table'")
    return TableTarget(
        table=data["table"],
        mode=LoadMode(data.get("mode", "insert")),
        key_column=data.get("keyColumn"),
    )


def is_multi_target(config: Optional[TargetConfig]) -> bool:
    return isinstance(config, MultiTargetConfig)


# =============================================================================
# TRANSFORM / SCHEDULE
# =============================================================================


COLUMN_OPERATIONS = ("rename", "cast", "default", "trim", "lowercase", "uppercase")
FILTER_OPERATORS = ("eq", "ne", "gt", "lt", "gte", "lte", "contains", "not_null")


@dataclass(frozen=True)
class ColumnTransform:
    column: str
    operation: str
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.operation not in COLUMN_OPERATIONS:
            raise ValueError(f"Unknown column operation: {self.operation}")
        if self.operation == "rename" and not self.params.get("to"):
            raise ValueError(f"rename of {self.column} requires params.to")


@dataclass(frozen=True)
class FilterCondition:
    column: str
    operator: str
    value: Any = None

    def __post_init__(self):
        if self.operator not in FILTER_OPERATORS:
            raise ValueError(f"Unknown filter operator: {self.operator}")


@dataclass(frozen=True)
class FilterConfig:
    conditions: tuple[FilterCondition, ...] = ()
    logic: str = "and"


@dataclass(frozen=True)
class DedupeConfig:
    columns: tuple[str, ...]
    keep_first: bool = True


@dataclass(frozen=True)
class TransformConfig:
    transforms: tuple[ColumnTransform, ...] = ()
    filter: Optional[FilterConfig] = None
    dedupe: Optional[DedupeConfig] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.transforms:
            result["transforms"] = [
                {"column": t.column, "operation": t.operation, "params": dict(t.params)}
                for t in self.transforms
            ]
        if self.filter is not None:
            result["filter"] = {
                "conditions": [
                    {"column": c.column, "operator": c.operator, "value": c.value}
                    for c in self.filter.conditions
                ],
                "logic": self.filter.logic,
            }
        if self.dedupe is not None:
            result["dedupe"] = {"columns": list(self.dedupe.columns), "keepFirst": self.dedupe.keep_first}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransformConfig":
        transforms = tuple(
            ColumnTransform(column=t["column"], operation=t["operation"], params=dict(t.get("params") or {}))
            for t in data.get("transforms", [])
        )
        filter_config = None
        if data.get("filter"):
            filter_config = FilterConfig(
                conditions=tuple(
                    FilterCondition(column=c["column"], operator=c["operator"], value=c.get("value"))
                    for c in data["filter"].get("conditions", [])
                ),
                logic=data["filter"].get("logic", "and"),
            )
        dedupe = None
        if data.get("dedupe"):
            dedupe = DedupeConfig(
                columns=tuple(data["dedupe"]["columns"]),
                keep_first=data["dedupe"].get("keepFirst", True),
            )
        return cls(transforms=transforms, filter=filter_config, dedupe=dedupe)


@dataclass(frozen=True)
class ScheduleConfig:
    """Stored with the job for external schedulers; ingestra does not schedule."""
    frequency: str = "manual"
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None

    def __post_init__(self):
        if self.frequency not in ("manual", "hourly", "daily", "weekly"):
            raise ValueError(f"Unknown schedule frequency: {self.frequency}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"frequency": self.frequency}
        if self.cron_expression:
            result["cronExpression"] = self.cron_expression
        if self.timezone:
            result["timezone"] = self.timezone
        return result


# =============================================================================
# JOB DEFINITION
# =============================================================================


KNOWN_KEYS = {
    "jobType", "name", "description", "sourceConfig", "targetConfig",
    "transformConfig", "schedule",
}


@dataclass(frozen=True)
class JobDefinition:
    """
    A job submission.

    Attributes:
        job_type: Which registered worker runs this job
        name: Human-readable job name (also keys the knowledge pattern)
        source: Where rows come from (None for workers that fetch their own)
        target: Legacy single table or multi-target fan-out
        description: Optional free text
        transform: Optional column transforms, filter and dedupe
        schedule: Optional schedule metadata
        extras: Worker-specific parameters (unknown top-level keys)
    """
    job_type: JobType
    name: str
    source: Optional[SourceConfig] = None
    target: Optional[TargetConfig] = None
    description: Optional[str] = None
    transform: Optional[TransformConfig] = None
    schedule: Optional[ScheduleConfig] = None
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def knowledge_pattern(self) -> str:
        return f"{self.job_type.value}:{self.name}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "jobType": self.job_type.value,
            "name": self.name,
            "sourceConfig": self.source.to_dict() if self.source else {},
            "targetConfig": self.target.to_dict() if self.target else {},
        }
        if self.description:
            result["description"] = self.description
        if self.transform is not None:
            result["transformConfig"] = self.transform.to_dict()
        if self.schedule is not None:
            result["schedule"] = self.schedule.to_dict()
        result.update(self.extras)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobDefinition":
        """
        Parse a submission payload.

        Raises:
            ValueError: On an unknown jobType, source, target or transform shape
        """
        if "jobType" not in data:
            raise ValueError("jobType is required")
        if not data.get("name"):
            raise ValueError("name is required")

        try:
            job_type = JobType(data["jobType"])
        except ValueError:
            valid = [t.value for t in JobType]
            raise ValueError(f"Unknown jobType: {data['jobType']}. Valid: {valid}")

        transform = None
        if data.get("transformConfig"):
            transform = TransformConfig.from_dict(data["transformConfig"])

        schedule = None
        if data.get("schedule"):
            s = data["schedule"]
            schedule = ScheduleConfig(
                frequency=s.get("frequency", "manual"),
                cron_expression=s.get("cronExpression"),
                timezone=s.get("timezone"),
            )

        return cls(
            job_type=job_type,
            name=data["name"],
            source=source_from_dict(data.get("sourceConfig")),
            target=target_from_dict(data.get("targetConfig")),
            description=data.get("description"),
            transform=transform,
            schedule=schedule,
            extras={k: v for k, v in data.items() if k not in KNOWN_KEYS},
        )
