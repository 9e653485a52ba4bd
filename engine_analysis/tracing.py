# engine_analysis/tracing.py

"""
tracing
~~~~~~~

This module provides components for job-level traceability and
context-aware logging.
"""

import functools
from dataclasses import asdict, dataclass
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)

@dataclass(frozen=True, slots=True)
class CorrelationID:
    """Identifies one attempt of one job within an orchestrator run."""
    run_id: str
    job_id: str
    kind: str
    attempt: int

    @property
    def short_id(self) -> str:
        """A short, human-readable version of the full ID."""
        return f"{self.kind}:{self.job_id[:8]}#{self.attempt}"

    def as_dict(self) -> dict:
        """Returns the ID as a dictionary suitable for logging."""
        return asdict(self)


def trace_stage(func: Callable) -> Callable:
    """A decorator to add structured tracing around an async analysis stage."""
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        stage_name = f"{args[0].__class__.__name__}.{func.__name__}"
        logger.debug("Entering analysis stage.", stage=stage_name)
        result = await func(*args, **kwargs)
        logger.debug("Exiting analysis stage.", stage=stage_name)
        return result
    return wrapper
