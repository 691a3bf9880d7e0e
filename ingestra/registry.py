"""WorkerRegistry - dispatch from job type to worker factory.

Registration is explicit: ingestra.workers.register_default_workers() is
called once at process start by whoever builds the Orchestrator. There is no
module-level registry and no discovery.
"""

from typing import TYPE_CHECKING, Callable, Union

from ingestra.errors import WorkerNotRegisteredError
from ingestra.schemas import JobDefinition, JobType

if TYPE_CHECKING:
    from ingestra.engine import BaseWorker, WorkerContext


WorkerFactory = Callable[[JobDefinition, "WorkerContext"], "BaseWorker"]


def _key(job_type: Union[JobType, str]) -> str:
    return job_type.value if isinstance(job_type, JobType) else str(job_type)


class WorkerRegistry:
    """Registry for dispatching jobs to workers by job type."""

    def __init__(self) -> None:
        self._factories: dict[str, WorkerFactory] = {}

    def register(self, job_type: Union[JobType, str], factory: WorkerFactory) -> None:
        """Register a worker factory for a job type.

        Re-registering a job type replaces the previous factory.

        Args:
            job_type: Job type (enum member or its string value)
            factory: Callable building a worker from (definition, context)

        Raises:
            ValueError: If job_type is not a known JobType
        """
        self._factories[JobType(job_type).value] = factory

    def resolve(self, job_type: Union[JobType, str]) -> WorkerFactory:
        """Get the worker factory for a job type.

        Raises:
            WorkerNotRegisteredError: If job_type is unknown or not registered
        """
        key = _key(job_type)
        if key not in self._factories:
            raise WorkerNotRegisteredError(key, self.list_types())
        return self._factories[key]

    def is_registered(self, job_type: Union[JobType, str]) -> bool:
        return _key(job_type) in self._factories

    def list_types(self) -> list[str]:
        """List registered job types."""
        return list(self._factories.keys())
