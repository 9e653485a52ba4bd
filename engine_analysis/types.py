# engine_analysis/types.py
"""
A central module for shared data structures and service interfaces (Protocols).
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import (Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol,
                    Tuple, TYPE_CHECKING, TypeAlias, Union, runtime_checkable)

if TYPE_CHECKING:
    from engine_analysis.config.settings import RetryPolicyModel

FEN: TypeAlias = str
UciMove: TypeAlias = str


class SessionState(str, Enum):
    """Lifecycle of one engine process. STARTING/READY/BUSY are the parser's awaiting-ready/idle/searching."""
    STARTING = "starting"; READY = "ready"; BUSY = "busy"
    DRAINING = "draining"; DEAD = "dead"

class MoveCategory(str, Enum):
    BEST = "best"; GOOD = "good"; INACCURACY = "inaccuracy"
    MISTAKE = "mistake"; BLUNDER = "blunder"

class JobKind(str, Enum):
    POSITION = "position"; GAME = "game"

class JobStatus(str, Enum):
    PENDING = "pending"; RUNNING = "running"; RETRY_WAIT = "retry_wait"
    SUCCEEDED = "succeeded"; FAILED = "failed"; CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PositionDescriptor:
    """
    A board state as the engine sees it: a starting FEN plus the moves played since.

    A `fen` of None stands for the standard starting position.
    """
    fen: Optional[FEN] = None
    moves: Tuple[UciMove, ...] = ()

    @property
    def white_to_move(self) -> bool:
        base_white = True
        if self.fen:
            fields = self.fen.split()
            base_white = len(fields) < 2 or fields[1] == "w"
        # Every played move hands the turn over.
        return base_white == (len(self.moves) % 2 == 0)

    def advance(self, move: UciMove) -> "PositionDescriptor":
        return PositionDescriptor(fen=self.fen, moves=self.moves + (move,))


# --- PROTOCOL EVENTS: parsed engine output lines ---

@dataclass(frozen=True, slots=True)
class ReadyEvent:
    pass

@dataclass(frozen=True, slots=True)
class UciOkEvent:
    pass

@dataclass(frozen=True, slots=True)
class IdentityEvent:
    name: str

@dataclass(frozen=True, slots=True)
class InfoEvent:
    """An `info` line. Scores are relative to the side to move, exactly as reported."""
    depth: Optional[int] = None
    seldepth: Optional[int] = None
    multipv: int = 1
    score_cp: Optional[int] = None
    score_mate: Optional[int] = None
    bound: Optional[str] = None
    pv: Tuple[UciMove, ...] = ()

    @property
    def has_score(self) -> bool:
        return self.score_cp is not None or self.score_mate is not None

@dataclass(frozen=True, slots=True)
class BestMoveEvent:
    move: str; ponder: Optional[str] = None

EngineEvent: TypeAlias = Union[ReadyEvent, UciOkEvent, IdentityEvent, InfoEvent, BestMoveEvent]


# --- SEARCH OUTPUT: what a session yields while searching ---

@dataclass(frozen=True, slots=True)
class CandidateLine:
    """One ranked candidate line, with the evaluation in white-perspective pawns."""
    rank: int; depth: int; evaluation_pawns: float
    mate_in: Optional[int]; pv: Tuple[UciMove, ...]

@dataclass(frozen=True, slots=True)
class SearchResult:
    """The terminal event of a search. `best_move` is None when the engine reports `(none)`."""
    best_move: Optional[UciMove]; ponder: Optional[UciMove]
    evaluation_pawns: float; depth_reached: int
    lines: Tuple[CandidateLine, ...] = ()

SearchEvent: TypeAlias = Union[CandidateLine, SearchResult]


# --- ANALYSIS RESULTS ---

@dataclass(frozen=True, slots=True)
class CandidateMove:
    move: UciMove; evaluation_pawns: float; continuation: str

@dataclass(frozen=True, slots=True)
class PositionAnalysis:
    """Standalone evaluation of one position. Evaluations are white-perspective pawns."""
    evaluation_pawns: float
    best_moves: Tuple[CandidateMove, ...]
    depth_reached: int
    best_move: Optional[UciMove] = None

@dataclass(frozen=True, slots=True)
class MoveRecord:
    """
    The verdict on one played ply.

    `move_number` is the 1-based ply index; `evaluation_pawns` is the position
    after the move, from the mover's point of view.
    """
    move_number: int; side: str; move_notation: str
    evaluation_pawns: float; best_move_notation: Optional[str]
    centipawn_loss: int; category: MoveCategory

    @property
    def full_move_number(self) -> int:
        return (self.move_number + 1) // 2

@dataclass(frozen=True)
class GameAnalysis:
    moves: List[MoveRecord]
    blunders: List[MoveRecord]
    mistakes: List[MoveRecord]
    inaccuracies: List[MoveRecord]
    average_centipawn_loss: float
    game_quality: float

    @property
    def move_count(self) -> int:
        return len(self.moves)


# --- JOBS ---

@dataclass(eq=False)
class AnalysisJob:
    """
    A unit of work for the orchestrator. Consumed exactly once.

    `sequence` is assigned at submission and kept across retries, so a retried
    job keeps its place among jobs of the same priority.
    """
    id: str
    kind: JobKind
    payload: Dict[str, Any]
    priority: int
    attempts_remaining: int
    retry_policy: "RetryPolicyModel"
    sequence: int = 0
    attempts_made: int = 0
    status: JobStatus = JobStatus.PENDING
    outcome: "asyncio.Future[Any]" = field(default=None, repr=False)  # type: ignore[assignment]
    last_error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


# --- PROTOCOLS: Abstract Interfaces for Services ---
# These define the "contracts" that concrete implementations must adhere to.
# They allow the pool and analyzers to be tested against in-process fakes.

@runtime_checkable
class EngineSession(Protocol):
    """A leased handle to one engine process."""
    name: str
    @property
    def state(self) -> SessionState: ...
    @property
    def is_dead(self) -> bool: ...
    @property
    def identifier(self) -> str: ...
    async def set_position(self, descriptor: PositionDescriptor) -> None: ...
    def search_to_depth(self, depth: int) -> AsyncIterator[SearchEvent]: ...
    def search_for_duration(self, duration_ms: int) -> AsyncIterator[SearchEvent]: ...
    async def shutdown(self) -> None: ...

# A factory that starts and initializes one session, e.g. `UciSession.create`.
SessionFactory = Callable[..., Awaitable[EngineSession]]

@runtime_checkable
class ResultSink(Protocol):
    """The read/write contract of the persistence collaborator."""
    async def store_position_analysis(self, job_id: str, fen: FEN, analysis: PositionAnalysis) -> None: ...
    async def store_game_analysis(self, job_id: str, game_id: Optional[str], analysis: GameAnalysis) -> None: ...
    async def record_failure(self, job_id: str, kind: JobKind, error: str) -> None: ...
