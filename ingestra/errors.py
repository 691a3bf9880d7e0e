"""
Error classes for ingestra execution.

Two tiers of failure exist:
- Exceptions (this module): execution-level failures. Raised out of
  perceive/act/reflect or persistence, caught once at the top of the
  engine, and they end the run with status 'failed'.
- ETLError values (ingestra.schemas.par): record-level failures. Collected
  during act, never raised, and fed into reflection.

The loop retries only when a reflection asks for it, never on an exception.
"""


class IngestraError(Exception):
    """Base exception for ingestra."""
    pass


class ConfigError(IngestraError):
    """Configuration validation error."""
    pass


class WorkerNotRegisteredError(IngestraError, KeyError):
    """Raised when no worker is registered for a job type."""

    def __init__(self, job_type: str, registered: list[str]):
        self.job_type = job_type
        self.registered = registered
        super().__init__(
            f"No worker registered for job type: {job_type}. Registered: {registered}"
        )

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return self.args[0]


class JobNotFoundError(IngestraError):
    """Raised when a job id does not exist in the store."""
    pass


class JobAlreadyRunningError(IngestraError):
    """Raised when a job id is already executing in this orchestrator."""
    pass


class SourceError(IngestraError):
    """
    Source content could not be loaded or parsed.

    Raised from perceive(), so it aborts the run as EXECUTION_ERROR.
    """
    pass


class IdentifierError(IngestraError, ValueError):
    """Raised when a table or column name fails the identifier allow-list."""
    pass
