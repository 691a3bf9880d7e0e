"""
Configuration management for ingestra.

Loads ~/.config/ingestra/config.yaml (or $INGESTRA_HOME/config.yaml) into an
IngestraConfig. An optional env_file is loaded with python-dotenv before
environment overrides are read.
"""

import importlib
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from dotenv import load_dotenv

from ingestra.errors import ConfigError


REQUIRED_KEYS = ("store_path", "warehouse_path", "index_path")
SQL_BACKENDS = ("sqlite", "bigquery")
LOG_FORMATS = ("pretty", "structured")
# Optional clients built from 'package.module:factory' paths
CLIENT_KEYS = ("embedding_client", "chat_client", "knowledge_graph")


def get_ingestra_home() -> Path:
    """Return the ingestra home directory ($INGESTRA_HOME or ~/.config/ingestra)."""
    home = os.environ.get("INGESTRA_HOME")
    if home:
        return Path(home)
    return Path("~/.config/ingestra").expanduser()


def _expand(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return str(Path(value).expanduser())


def _is_factory_path(path: Any) -> bool:
    if not isinstance(path, str):
        return False
    module_name, sep, attribute = path.partition(":")
    return bool(sep and module_name and attribute)


def resolve_factory(path: str) -> Callable[[], Any]:
    """
    Import the callable named by a 'package.module:factory' path.

    The factory is called with no arguments and reads its own credentials
    (typically from the environment populated by env_file).

    Raises:
        ConfigError: If the path is malformed, the module cannot be imported
            or the attribute is missing or not callable
    """
    if not _is_factory_path(path):
        raise ConfigError(f"Factory path must look like 'package.module:factory', got: {path}")
    module_name, _, attribute = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import {module_name} for {path}: {e}")
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigError(f"{path} does not name a callable")
    return factory


@dataclass
class IngestraConfig:
    """Runtime configuration shared by the orchestrator, workers and CLI."""

    store_path: str
    warehouse_path: str
    index_path: str
    sql_backend: str = "sqlite"
    bigquery_project: Optional[str] = None
    bigquery_dataset: Optional[str] = None
    max_iterations: int = 3
    sql_batch_size: int = 100
    embedding_batch_size: int = 50
    embedding_dimensions: int = 1536
    success_threshold: float = 0.95
    retry_threshold: float = 0.8
    log_level: str = "INFO"
    log_format: str = "pretty"
    env_file: Optional[str] = None
    fred_api_key: Optional[str] = None
    embedding_client: Optional[str] = None
    chat_client: Optional[str] = None
    knowledge_graph: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.store_path = _expand(self.store_path)
        self.warehouse_path = _expand(self.warehouse_path)
        self.index_path = _expand(self.index_path)
        self.env_file = _expand(self.env_file)

    def validate(self) -> None:
        """Validate value ranges and enumerations."""
        if self.sql_backend not in SQL_BACKENDS:
            raise ConfigError(
                f"sql_backend must be one of {SQL_BACKENDS}, got: {self.sql_backend}"
            )
        if self.sql_backend == "bigquery" and not (self.bigquery_project and self.bigquery_dataset):
            raise ConfigError("sql_backend 'bigquery' requires bigquery_project and bigquery_dataset")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {LOG_FORMATS}, got: {self.log_format}")
        if self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        if self.sql_batch_size < 1 or self.embedding_batch_size < 1:
            raise ConfigError("batch sizes must be positive")
        if not 0.0 <= self.retry_threshold <= self.success_threshold <= 1.0:
            raise ConfigError("thresholds must satisfy 0 <= retry_threshold <= success_threshold <= 1")
        for key in CLIENT_KEYS:
            path = getattr(self, key)
            if path is not None and not _is_factory_path(path):
                raise ConfigError(f"{key} must look like 'package.module:factory', got: {path}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IngestraConfig":
        missing = [k for k in REQUIRED_KEYS if not data.get(k)]
        if missing:
            raise ConfigError(f"config.yaml missing required keys: {missing}")
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)


def default_config_dict(home: Path) -> dict[str, Any]:
    """Default config.yaml contents written by `ingestra init`."""
    return {
        "store_path": str(home / "ingestra.db"),
        "warehouse_path": str(home / "warehouse.db"),
        "index_path": str(home / "indexes.db"),
        "sql_backend": "sqlite",
        "bigquery_project": None,
        "bigquery_dataset": None,
        "max_iterations": 3,
        "sql_batch_size": 100,
        "embedding_batch_size": 50,
        "log_level": "INFO",
        "log_format": "pretty",
        "env_file": str(home / ".env"),
        "embedding_client": None,
        "chat_client": None,
        "knowledge_graph": None,
    }


def load_config(config_path: Optional[Path] = None) -> IngestraConfig:
    """
    Load ingestra configuration.

    Args:
        config_path: Path to config file. Defaults to <ingestra home>/config.yaml

    Returns:
        Validated IngestraConfig

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the YAML is invalid or values fail validation
    """
    if config_path is None:
        config_path = get_ingestra_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"ingestra config.yaml not found at {config_path}. Run 'ingestra init'."
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    env_file = data.get("env_file")
    if env_file:
        env_path = Path(env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    if os.environ.get("FRED_API_KEY") and not data.get("fred_api_key"):
        data["fred_api_key"] = os.environ["FRED_API_KEY"]

    config = IngestraConfig.from_dict(data)
    config.validate()
    return config
