# tests/conftest.py
import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from engine_analysis.config.settings import EnginePoolSettings, EngineSettings, RetryPolicyModel
from engine_analysis.exceptions import EngineCrashError, EngineStartupError
from engine_analysis.types import CandidateLine, PositionDescriptor, SearchResult, SessionState

FAKE_ENGINE = Path(__file__).parent / "fixtures" / "fake_uci_engine.py"

Evaluator = Callable[[PositionDescriptor], float]


class ScriptedSession:
    """
    An in-process `EngineSession` whose evaluations come from a Python callable.

    `evaluator` maps the current position to a white-perspective evaluation in
    pawns. Searches yield one candidate line, optionally sleep, then yield the
    result; closing a search early counts as an aborted search.
    """

    def __init__(
        self,
        name: str = "engine-1",
        evaluator: Optional[Evaluator] = None,
        best_move: Optional[str] = "e2e4",
        lines: Tuple[CandidateLine, ...] = (),
        search_delay: float = 0.0,
        crash_on_search: bool = False,
    ):
        self.name = name
        self.evaluator = evaluator or (lambda descriptor: 0.0)
        self.best_move = best_move
        self.lines = lines
        self.search_delay = search_delay
        self.crash_on_search = crash_on_search
        self.positions: List[PositionDescriptor] = []
        self.searches: List[str] = []
        self.aborted_searches = 0
        self.shutdown_calls = 0
        self._state = SessionState.READY
        self._position: Optional[PositionDescriptor] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_dead(self) -> bool:
        return self._state is SessionState.DEAD

    @property
    def identifier(self) -> str:
        return f"ScriptedEngine@{self.name}"

    def kill(self) -> None:
        self._state = SessionState.DEAD

    async def set_position(self, descriptor: PositionDescriptor) -> None:
        if self.is_dead:
            raise EngineCrashError(f"{self.name} is dead.", engine=self)
        self._position = descriptor
        self.positions.append(descriptor)

    def search_to_depth(self, depth: int):
        return self._search(f"depth {depth}")

    def search_for_duration(self, duration_ms: int):
        return self._search(f"movetime {duration_ms}")

    async def _search(self, command: str):
        self.searches.append(command)
        if self.crash_on_search:
            self._state = SessionState.DEAD
            raise EngineCrashError(f"{self.name} crashed mid-search.", engine=self)

        self._state = SessionState.BUSY
        finished = False
        try:
            evaluation = float(self.evaluator(self._position))
            primary = CandidateLine(rank=1, depth=12, evaluation_pawns=evaluation, mate_in=None, pv=("e2e4", "e7e5"))
            lines = self.lines or (primary,)
            for line in lines:
                yield line
            if self.search_delay:
                await asyncio.sleep(self.search_delay)
            finished = True
            self._state = SessionState.READY
            yield SearchResult(
                best_move=self.best_move, ponder=None, evaluation_pawns=evaluation,
                depth_reached=12, lines=lines,
            )
        finally:
            if not finished and self._state is SessionState.BUSY:
                self.aborted_searches += 1
                self._state = SessionState.READY

    async def shutdown(self) -> None:
        self.shutdown_calls += 1
        self._state = SessionState.DEAD


class ScriptedSessionFactory:
    """An async session factory for `EnginePool`. Fails the next `fail_next` starts."""

    def __init__(self, **session_kwargs):
        self.session_kwargs = session_kwargs
        self.created: List[ScriptedSession] = []
        self.fail_next = 0
        self.start_delay = 0.0

    async def __call__(self, engine_config: EngineSettings, name: str = "engine") -> ScriptedSession:
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise EngineStartupError(f"Scripted startup failure for {name}.")
        session = ScriptedSession(name=name, **self.session_kwargs)
        self.created.append(session)
        return session


@pytest.fixture
def session_factory():
    return ScriptedSessionFactory()


@pytest.fixture
def make_session_factory():
    return ScriptedSessionFactory


@pytest.fixture
def make_session():
    return ScriptedSession


@pytest.fixture
def pool_settings():
    return EnginePoolSettings(
        pool_size=2,
        acquire_timeout_s=1.0,
        replacement=RetryPolicyModel(attempts=3, initial_backoff_s=0.01, max_backoff_s=0.01),
    )


@pytest.fixture
def fake_engine_settings():
    """Builds settings that launch the subprocess fake engine in a given mode."""
    def _build(mode: str = "normal", *extra_args: str, **overrides) -> EngineSettings:
        values = dict(
            path=sys.executable,
            args=[str(FAKE_ENGINE), "--mode", mode, *extra_args],
            startup_timeout_s=5.0,
            stop_timeout_s=1.0,
            quit_grace_s=1.0,
        )
        values.update(overrides)
        return EngineSettings(**values)
    return _build
