# engine_analysis/engine/session.py
"""
Provides `UciSession`, the owner of one running UCI engine process.

A background reader task turns every stdout line into a structured event and
puts it on a per-session queue. Whichever command is in flight consumes that
queue, guarded by an explicit state machine (`SessionState`). Any pipe failure
or end-of-file marks the session dead; the pool is responsible for replacing it.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Dict, Optional, TYPE_CHECKING

import structlog

from engine_analysis.engine import uci_protocol
from engine_analysis.exceptions import EngineCrashError, EngineStartupError
from engine_analysis.types import (BestMoveEvent, CandidateLine, EngineEvent, IdentityEvent,
                                   InfoEvent, PositionDescriptor, ReadyEvent, SearchEvent,
                                   SearchResult, SessionState)
from engine_analysis.utils import metrics

if TYPE_CHECKING:
    from engine_analysis.config.settings import EngineSettings

logger = structlog.get_logger(__name__)

# Put on the event queue by the reader once stdout is closed.
_PIPE_CLOSED = object()


class UciSession:
    """
    An asynchronous driver for a single engine subprocess.

    Commands on one session are strictly ordered and a session serves one
    caller at a time; exclusivity is provided by the `EnginePool` lease, and
    the state machine rejects commands that arrive out of turn.
    """

    def __init__(self, process: asyncio.subprocess.Process, settings: "EngineSettings", name: str = "engine"):
        """
        Private constructor. Use the `create` class method for safe instantiation.

        Args:
            process: A spawned engine process with piped stdin and stdout.
            settings: The engine configuration used for the handshake.
            name: A label for logs, e.g. the pool slot.
        """
        self.name = name
        self._process = process
        self._settings = settings
        self._events: "asyncio.Queue[object]" = asyncio.Queue()
        self._state = SessionState.STARTING
        self._reader_task: Optional[asyncio.Task] = None
        self._white_to_move = True
        self._engine_name: Optional[str] = None

    @classmethod
    async def create(cls, settings: "EngineSettings", name: str = "engine") -> "UciSession":
        """Spawns the engine process and completes the UCI handshake."""
        try:
            process = await asyncio.create_subprocess_exec(
                settings.path, *settings.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise EngineStartupError(f"Could not launch engine at {settings.path}: {e}") from e

        session = cls(process, settings, name)
        try:
            await session.initialize()
        except BaseException:
            await session.shutdown()
            raise
        metrics.ENGINE_SESSIONS_STARTED_TOTAL.inc()
        return session

    # --- Introspection ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_dead(self) -> bool:
        return self._state is SessionState.DEAD or self._process.returncode is not None

    @property
    def identifier(self) -> str:
        """A stable identifier for this engine configuration."""
        return f"{self._engine_name or self._settings.path}@{self.name}"

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    # --- Low-level I/O ---

    async def _read_loop(self) -> None:
        """Reads stdout line by line until EOF, queueing every recognized event."""
        assert self._process.stdout is not None
        try:
            while True:
                raw = await self._process.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                event = uci_protocol.parse_line(line)
                if event is not None:
                    self._events.put_nowait(event)
        except (OSError, ValueError) as e:
            # ValueError: a single line exceeded the stream buffer limit.
            logger.error("Engine stdout read failed.", session=self.name, error=str(e))
        finally:
            if self._state is not SessionState.DRAINING:
                logger.warning("Engine output closed unexpectedly.", session=self.name, state=self._state.value)
            self._mark_dead()
            self._events.put_nowait(_PIPE_CLOSED)

    def _mark_dead(self) -> None:
        # A session being shut down on purpose is not counted as a failure.
        if self._state not in (SessionState.DEAD, SessionState.DRAINING):
            metrics.ENGINE_SESSIONS_FAILED_TOTAL.inc()
        self._state = SessionState.DEAD

    async def _send(self, *commands: str) -> None:
        """Writes commands to stdin. A broken pipe kills the session."""
        stdin = self._process.stdin
        if stdin is None or self.is_dead:
            self._mark_dead()
            raise EngineCrashError(f"Engine session {self.name} is not running.", engine=self)
        try:
            for command in commands:
                logger.debug("Sending engine command.", session=self.name, command=command)
                stdin.write(f"{command}\n".encode("utf-8"))
            await stdin.drain()
        except (OSError, RuntimeError) as e:
            # ConnectionResetError/BrokenPipeError are OSErrors; RuntimeError if the transport is closed.
            self._mark_dead()
            raise EngineCrashError(f"Engine session {self.name} pipe failed: {e}", engine=self) from e

    async def _next_event(self) -> EngineEvent:
        event = await self._events.get()
        if event is _PIPE_CLOSED:
            # Leave the marker in place for anyone else still waiting.
            self._events.put_nowait(_PIPE_CLOSED)
            raise EngineCrashError(f"Engine session {self.name} exited.", engine=self)
        return event  # type: ignore[return-value]

    def _require_ready(self) -> None:
        if self.is_dead:
            self._mark_dead()
            raise EngineCrashError(f"Engine session {self.name} is dead.", engine=self)
        if self._state is not SessionState.READY:
            raise RuntimeError(f"Engine session {self.name} is {self._state.value}, not ready.")

    # --- Commands ---

    async def initialize(self) -> None:
        """
        Sends the handshake and configuration, then waits for `readyok`.

        Raises:
            EngineStartupError: If the process exits or does not become ready in time.
        """
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

        commands = ["uci"]
        commands += [uci_protocol.setoption_command(k, v) for k, v in self._settings.uci_options().items()]
        commands.append("isready")

        try:
            await self._send(*commands)
            await asyncio.wait_for(self._await_ready(), timeout=self._settings.startup_timeout_s)
        except asyncio.TimeoutError as e:
            self._mark_dead()
            raise EngineStartupError(
                f"Engine session {self.name} did not answer 'isready' within {self._settings.startup_timeout_s}s.",
                engine=self,
            ) from e
        except EngineCrashError as e:
            raise EngineStartupError(f"Engine session {self.name} exited during startup.", engine=self) from e

        self._state = SessionState.READY
        logger.info("Engine session ready.", session=self.name, engine=self._engine_name, pid=self.pid)

    async def _await_ready(self) -> None:
        while True:
            event = await self._next_event()
            if isinstance(event, IdentityEvent):
                self._engine_name = event.name
            elif isinstance(event, ReadyEvent):
                return

    async def set_position(self, descriptor: PositionDescriptor) -> None:
        """Writes the position-set command. The engine sends no reply."""
        self._require_ready()
        await self._send(uci_protocol.position_command(descriptor))
        self._white_to_move = descriptor.white_to_move

    def search_to_depth(self, depth: int) -> AsyncIterator[SearchEvent]:
        """Starts a depth-bounded search; see `_search` for the event stream."""
        return self._search(uci_protocol.go_depth_command(depth))

    def search_for_duration(self, duration_ms: int) -> AsyncIterator[SearchEvent]:
        """Starts a time-bounded search; see `_search` for the event stream."""
        return self._search(uci_protocol.go_movetime_command(duration_ms))

    async def _search(self, go_command: str) -> AsyncIterator[SearchEvent]:
        """
        Issues a `go` command and yields its events.

        Yields a `CandidateLine` for every scored info line, then exactly one
        `SearchResult` once `bestmove` arrives. If the consumer stops early or
        is cancelled, the search is stopped and drained before the session
        becomes ready again.
        """
        self._require_ready()
        self._state = SessionState.BUSY
        lines: Dict[int, CandidateLine] = {}
        last_score: Optional[float] = None
        depth_reached = 0
        finished = False

        try:
            await self._send(go_command)
            while True:
                event = await self._next_event()
                if isinstance(event, InfoEvent):
                    depth_reached = max(depth_reached, event.depth or 0)
                    if not event.has_score:
                        continue
                    evaluation = uci_protocol.score_to_pawns(
                        event.score_cp, event.score_mate, self._white_to_move, self._settings.mate_score_cp
                    )
                    last_score = evaluation
                    if event.bound:
                        continue
                    line = CandidateLine(
                        rank=event.multipv, depth=event.depth or 0, evaluation_pawns=evaluation,
                        mate_in=event.score_mate, pv=event.pv,
                    )
                    lines[line.rank] = line
                    yield line
                elif isinstance(event, BestMoveEvent):
                    finished = True
                    self._state = SessionState.READY
                    yield self._build_result(event, lines, last_score, depth_reached)
                    return
        finally:
            if not finished and not self.is_dead:
                await self._abort_search()

    @staticmethod
    def _build_result(
        event: BestMoveEvent,
        lines: Dict[int, CandidateLine],
        last_score: Optional[float],
        depth_reached: int,
    ) -> SearchResult:
        primary = lines.get(1)
        if primary is not None:
            evaluation = primary.evaluation_pawns
        else:
            evaluation = last_score if last_score is not None else 0.0
        best_move = None if event.move == uci_protocol.NO_MOVE else event.move
        return SearchResult(
            best_move=best_move,
            ponder=event.ponder,
            evaluation_pawns=evaluation,
            depth_reached=depth_reached,
            lines=tuple(lines[rank] for rank in sorted(lines)),
        )

    async def _abort_search(self) -> None:
        """Sends `stop` and discards events up to the terminal `bestmove`."""
        logger.info("Stopping in-flight search.", session=self.name)
        try:
            await self._send("stop")
            await asyncio.wait_for(self._drain_until_bestmove(), timeout=self._settings.stop_timeout_s)
        except (EngineCrashError, asyncio.TimeoutError):
            logger.warning("Engine did not acknowledge 'stop'; marking session dead.", session=self.name)
            self._mark_dead()
            return
        self._state = SessionState.READY

    async def _drain_until_bestmove(self) -> None:
        while not isinstance(await self._next_event(), BestMoveEvent):
            pass

    async def shutdown(self) -> None:
        """Sends `quit`, then forcibly terminates the process after the grace period."""
        if self._state is SessionState.DRAINING:
            return
        self._state = SessionState.DRAINING

        if self._process.returncode is None:
            with contextlib.suppress(EngineCrashError):
                await self._send("quit")
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._settings.quit_grace_s)
            except asyncio.TimeoutError:
                logger.warning("Engine ignored 'quit'; killing process.", session=self.name, pid=self.pid)
                with contextlib.suppress(ProcessLookupError):
                    self._process.kill()
                await self._process.wait()

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task

        self._state = SessionState.DEAD
        logger.info("Engine session shut down.", session=self.name)
