# engine_analysis/analyzers/search_runner.py
"""
The one protocol exchange both analyzers are built from: set a position, run a
search, wait for its terminal event under a ceiling.
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Callable

from engine_analysis.exceptions import AnalysisTimeout, EngineCrashError
from engine_analysis.types import EngineSession, PositionDescriptor, SearchEvent, SearchResult

SearchStarter = Callable[[EngineSession], AsyncIterator[SearchEvent]]


async def run_search(
    session: EngineSession,
    descriptor: PositionDescriptor,
    start_search: SearchStarter,
    timeout_s: float,
) -> SearchResult:
    """
    Runs one search on a leased session and returns its `SearchResult`.

    On timeout (or cancellation) the search iterator is closed, which makes the
    session stop and drain the engine before the caller releases it.

    Raises:
        AnalysisTimeout: If no terminal event arrived within `timeout_s`.
        EngineCrashError: If the engine died mid-search.
    """
    async def _collect() -> SearchResult:
        await session.set_position(descriptor)
        async with aclosing(start_search(session)) as events:
            async for event in events:
                if isinstance(event, SearchResult):
                    return event
        raise EngineCrashError(f"Search on {session.name} ended without a best move.", engine=session)

    try:
        return await asyncio.wait_for(_collect(), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise AnalysisTimeout(f"No best move from {session.name} within {timeout_s}s.") from e
