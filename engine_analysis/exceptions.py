# engine_analysis/exceptions.py
"""
Defines custom exceptions for the engine analysis core.

Centralizing exceptions in this module prevents circular dependencies between
the session, pool, analyzer and orchestration layers. Everything derives from
`EngineAnalysisBaseError` so callers can catch the whole family at once, while
the orchestrator can still tell transient engine faults apart from bad input.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from engine_analysis.types import EngineSession


class EngineAnalysisBaseError(Exception):
    """Base class for all application-specific, catchable errors."""
    pass


class EngineError(EngineAnalysisBaseError):
    """
    Base class for errors related to an engine subprocess.

    Attributes:
        engine: An optional reference to the failed session, allowing the pool
                to retire and replace it.
    """
    def __init__(self, message: str, engine: Optional["EngineSession"] = None):
        super().__init__(message)
        self.engine = engine


class EngineStartupError(EngineError):
    """
    Raised when an engine process fails to start or never acknowledges `isready`.

    This typically means the executable path is wrong, the binary is not a UCI
    engine, or the process exited during the handshake.
    """
    pass


class EngineCrashError(EngineError):
    """
    Raised when the engine pipe closes or breaks while a command is in flight.

    The session is dead afterwards. The pool replaces it on release; the job
    that was using it is retried according to its policy.
    """
    pass


class EngineUnavailableError(EngineError):
    """Raised when no session can be leased: the pool is closed or acquisition timed out."""
    pass


class AnalysisTimeout(EngineAnalysisBaseError):
    """Raised when a search produced no terminal `bestmove` within its ceiling."""
    pass


class InvalidPositionError(EngineAnalysisBaseError):
    """
    Raised for malformed position descriptors or illegal move lists.

    Detected before anything is sent to an engine, so retrying is pointless.
    """
    pass


class JobError(EngineAnalysisBaseError):
    """Base class for job orchestration errors."""
    pass


class JobRetryExhausted(JobError):
    """
    Raised (and set on the job outcome) once a job has used every attempt.

    Attributes:
        job_id: The identifier of the failed job.
        attempts: How many attempts were made.
        last_error: The exception raised by the final attempt.
    """
    def __init__(self, job_id: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(f"Job {job_id} failed after {attempts} attempt(s): {last_error}")
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error


class AnalysisUnavailableError(JobError):
    """The generic user-facing signal that a live hint could not be produced."""
    pass


class PersistenceError(EngineAnalysisBaseError):
    """Raised when the result store cannot be opened, read or written."""
    pass
