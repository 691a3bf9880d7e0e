"""
ingestra - Self-correcting tabular ingestion orchestrator

Runs registered workers through a bounded perceive/act/reflect loop and
fans parsed datasets out to SQL tables, vector stores and search indexes.
Job and run history is kept in a durable store for inspection.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = ["IngestraConfig", "load_config", "get_ingestra_home"]

from .config import IngestraConfig, load_config, get_ingestra_home
