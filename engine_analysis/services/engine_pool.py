# engine_analysis/services/engine_pool.py
"""
Provides a robust, asynchronous resource pool for engine sessions.

This module contains the `EnginePool`, an async context manager responsible for
the entire lifecycle of a fixed number of `EngineSession` instances. It hands
out exclusive leases through an `asyncio.Queue` of available sessions, starts
every session on startup, shuts them down on exit, and replaces sessions that
die during a run so that capacity is restored without the caller's help.
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Set, TYPE_CHECKING

import structlog

from engine_analysis.exceptions import EngineStartupError, EngineUnavailableError
from engine_analysis.types import EngineSession, SessionFactory
from engine_analysis.utils import metrics
from engine_analysis.utils.retry import delay_for_policy

if TYPE_CHECKING:
    from engine_analysis.config.settings import EnginePoolSettings

logger = structlog.get_logger(__name__)


class EnginePool:
    """
    An async context manager for a fixed-size pool of engine sessions.

    Every owned session is either in the available queue or in the leased set,
    never both, so at most `pool_size` sessions are ever leased and no session
    is leased to two callers at once. Waiting callers are eventually served,
    not strictly first-come first-served.
    """

    def __init__(self, settings: "EnginePoolSettings", session_factory: SessionFactory):
        """
        Initializes the EnginePool.

        Args:
            settings: Configuration for the pool, including size and engine settings.
            session_factory: An async callable (e.g., `UciSession.create`) that
                             starts and initializes one session.
        """
        self._settings = settings
        self._session_factory = session_factory
        self._available: asyncio.Queue[EngineSession] = asyncio.Queue(maxsize=settings.pool_size)
        self._instances: List[EngineSession] = []
        self._leased: Set[EngineSession] = set()
        self._replacements: Set[asyncio.Task] = set()
        self._slot_numbers = itertools.count(1)
        self._is_closed = True

    # --- Introspection ---

    @property
    def size(self) -> int:
        return self._settings.pool_size

    @property
    def available_count(self) -> int:
        return self._available.qsize()

    @property
    def leased_count(self) -> int:
        return len(self._leased)

    @property
    def live_count(self) -> int:
        """Sessions currently owned, leased or not. Lags `size` while a replacement is starting."""
        return len(self._instances)

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    # --- Lifecycle ---

    async def _create_new_instance(self) -> Optional[EngineSession]:
        """
        Internal factory method to create and initialize a single new session.

        Returns:
            A ready `EngineSession`, or `None` if creation fails.
        """
        name = f"engine-{next(self._slot_numbers)}"
        try:
            session = await self._session_factory(self._settings.engine_config, name=name)
            logger.info("New engine session created.", session=name, identifier=session.identifier)
            return session
        except Exception:
            logger.error("Failed to create new engine session.", session=name, exc_info=True)
            return None

    async def start(self) -> "EnginePool":
        """
        Starts every session concurrently.

        Slots that fail to start are retried in the background.

        Raises:
            EngineStartupError: If no session could be started at all.
        """
        if not self._is_closed:
            return self
        self._is_closed = False
        logger.info("Initializing engine pool.", size=self.size)

        results = await asyncio.gather(*[self._create_new_instance() for _ in range(self.size)])
        for session in results:
            if session is not None:
                self._instances.append(session)
                self._available.put_nowait(session)

        if not self._instances:
            self._is_closed = True
            raise EngineStartupError("Could not initialize any engine sessions for the pool. Aborting.")

        for _ in range(self.size - len(self._instances)):
            self._schedule_replacement(None)

        logger.info("Engine pool initialized.", active_sessions=len(self._instances), size=self.size)
        return self

    async def __aenter__(self) -> "EnginePool":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    async def shutdown(self) -> None:
        """Terminates all owned sessions. Safe to call more than once."""
        if self._is_closed:
            return
        self._is_closed = True
        logger.info("Closing engine pool and terminating all sessions.")

        for task in list(self._replacements):
            task.cancel()
        await asyncio.gather(*self._replacements, return_exceptions=True)

        instances, self._instances = self._instances, []
        await asyncio.gather(*(session.shutdown() for session in instances), return_exceptions=True)

        while not self._available.empty():
            self._available.get_nowait()
        self._leased.clear()
        metrics.ENGINE_SESSIONS_LEASED.set(0)
        logger.info("Engine pool closed.")

    # --- Leasing ---

    async def acquire(self, timeout: Optional[float] = None) -> EngineSession:
        """
        Leases a session, waiting if none are available.

        Args:
            timeout: Seconds to wait; defaults to the configured `acquire_timeout_s`.

        Raises:
            EngineUnavailableError: If the pool is closed or the wait timed out.

        Returns:
            A ready `EngineSession`, owned by the caller until `release`.
        """
        if self._is_closed:
            raise EngineUnavailableError("Cannot acquire an engine session from a closed pool.")
        self._refill()
        if timeout is None:
            timeout = self._settings.acquire_timeout_s

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            try:
                session = self._available.get_nowait()
            except asyncio.QueueEmpty:
                remaining = None if deadline is None else max(0.0, deadline - loop.time())
                try:
                    session = await asyncio.wait_for(self._available.get(), timeout=remaining)
                except asyncio.TimeoutError as e:
                    raise EngineUnavailableError(
                        f"No engine session became available within {timeout}s."
                    ) from e

            if self._is_closed:
                raise EngineUnavailableError("The engine pool was closed while waiting.")
            if session.is_dead:
                logger.warning("Discarding dead engine session found at checkout.", session=session.name)
                self._retire(session)
                continue

            self._leased.add(session)
            metrics.ENGINE_SESSIONS_LEASED.set(len(self._leased))
            return session

    def release(self, session: EngineSession) -> None:
        """
        Returns a leased session to the pool.

        A dead session is not made available again; a replacement is started
        in the background, so capacity comes back some time after this call.
        """
        if session not in self._leased:
            logger.warning("Ignoring release of an engine session that is not leased.", session=session.name)
            return
        self._leased.discard(session)
        metrics.ENGINE_SESSIONS_LEASED.set(len(self._leased))

        if self._is_closed:
            return # Don't re-add a session to a closed pool.
        if session.is_dead:
            self._retire(session)
            return
        self._available.put_nowait(session)

    @asynccontextmanager
    async def lease(self, timeout: Optional[float] = None) -> AsyncIterator[EngineSession]:
        """Scoped acquisition: the session is released on every exit path, cancellation included."""
        session = await self.acquire(timeout)
        try:
            yield session
        finally:
            self.release(session)

    # --- Replacement ---

    def _retire(self, session: EngineSession) -> None:
        try:
            self._instances.remove(session)
        except ValueError:
            return # Already retired.
        logger.warning("Retiring dead engine session.", session=session.name)
        self._schedule_replacement(session)

    def _refill(self) -> None:
        """Schedules a replacement for every slot left empty after an earlier replacement gave up."""
        missing = self.size - len(self._instances) - len(self._replacements)
        if missing > 0:
            logger.info("Refilling empty engine slots.", missing=missing)
        for _ in range(missing):
            self._schedule_replacement(None)

    def _schedule_replacement(self, dead_session: Optional[EngineSession]) -> None:
        task = asyncio.create_task(self._replace(dead_session))
        self._replacements.add(task)
        task.add_done_callback(self._replacements.discard)

    async def _replace(self, dead_session: Optional[EngineSession]) -> None:
        """
        Shuts down a dead session and starts a new one, with bounded retries.

        A slot whose replacement gives up stays empty until the next `acquire`,
        which schedules a fresh replacement for it.
        """
        if dead_session is not None:
            try:
                await dead_session.shutdown()
            except Exception:
                logger.error("Error during shutdown of dead engine session.", exc_info=True)

        policy = self._settings.replacement
        for attempt in range(1, policy.attempts + 1):
            if self._is_closed:
                return
            new_session = await self._create_new_instance()
            if new_session is not None:
                if self._is_closed:
                    await new_session.shutdown()
                    return
                self._instances.append(new_session)
                self._available.put_nowait(new_session)
                metrics.ENGINE_SESSIONS_REPLACED_TOTAL.labels(outcome="replaced").inc()
                logger.info("Engine session replaced.", session=new_session.name, live_sessions=len(self._instances))
                return
            if attempt < policy.attempts:
                await asyncio.sleep(delay_for_policy(policy, attempt))

        metrics.ENGINE_SESSIONS_REPLACED_TOTAL.labels(outcome="gave_up").inc()
        logger.error(
            "Failed to replace engine session. Slot stays empty until the next acquire.",
            live_sessions=len(self._instances),
        )

    async def wait_for_replacements(self) -> None:
        """Waits until every pending replacement has finished, successfully or not."""
        while self._replacements:
            await asyncio.gather(*list(self._replacements), return_exceptions=True)
