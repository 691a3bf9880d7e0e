"""
Workers - one perceive/act/reflect implementation per job type.

Call register_default_workers() once at process start; the Orchestrator
never discovers workers on its own.
"""

from ingestra.registry import WorkerRegistry
from ingestra.schemas import JobType
from ingestra.workers.csv_import import CsvImportWorker
from ingestra.workers.data_load import DataLoadWorker
from ingestra.workers.economic_indicators import EconomicIndicatorsWorker
from ingestra.workers.industry_statistics import IndustryStatisticsWorker
from ingestra.workers.json_import import JsonImportWorker
from ingestra.workers.kg_build import KgBuildWorker
from ingestra.workers.public_companies import PublicCompaniesWorker
from ingestra.workers.public_data import PublicData, PublicDataWorker
from ingestra.workers.tabular import TabularData, TabularWorker

DEFAULT_WORKERS = {
    JobType.CSV_IMPORT: CsvImportWorker,
    JobType.JSON_IMPORT: JsonImportWorker,
    JobType.DATA_LOAD: DataLoadWorker,
    JobType.KG_BUILD: KgBuildWorker,
    JobType.ECONOMIC_INDICATORS: EconomicIndicatorsWorker,
    JobType.PUBLIC_COMPANIES: PublicCompaniesWorker,
    JobType.INDUSTRY_STATISTICS: IndustryStatisticsWorker,
}


def register_default_workers(registry: WorkerRegistry) -> WorkerRegistry:
    """Register every built-in worker. Safe to call more than once."""
    for job_type, worker_cls in DEFAULT_WORKERS.items():
        registry.register(job_type, worker_cls)
    return registry


__all__ = [
    "CsvImportWorker",
    "DataLoadWorker",
    "EconomicIndicatorsWorker",
    "IndustryStatisticsWorker",
    "JsonImportWorker",
    "KgBuildWorker",
    "PublicCompaniesWorker",
    "PublicData",
    "PublicDataWorker",
    "TabularData",
    "TabularWorker",
    "DEFAULT_WORKERS",
    "register_default_workers",
]
