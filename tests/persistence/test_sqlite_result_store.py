# tests/persistence/test_sqlite_result_store.py
import pytest

from engine_analysis.core.summary_aggregator import aggregate_game_analysis
from engine_analysis.exceptions import PersistenceError
from engine_analysis.persistence.sqlite_result_store import SqliteResultStore
from engine_analysis.types import (CandidateMove, JobKind, MoveCategory, MoveRecord, PositionAnalysis,
                                   ResultSink)

FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


@pytest.mark.asyncio
async def test_store_is_a_result_sink(tmp_path):
    assert isinstance(SqliteResultStore(tmp_path / "results.db"), ResultSink)


@pytest.mark.asyncio
async def test_position_analysis_round_trip(tmp_path):
    analysis = PositionAnalysis(
        evaluation_pawns=0.31,
        best_moves=(CandidateMove(move="e2e4", evaluation_pawns=0.31, continuation="e2e4 e7e5 g1f3"),),
        depth_reached=20,
        best_move="e2e4",
    )

    async with SqliteResultStore(tmp_path / "nested" / "results.db") as store:
        await store.store_position_analysis("job-1", FEN, analysis)
        stored = await store.get_result("job-1")

    assert stored["kind"] == "position"
    assert stored["subject"] == FEN
    assert stored["result"]["evaluation_pawns"] == 0.31
    assert stored["result"]["best_moves"][0]["continuation"] == "e2e4 e7e5 g1f3"


@pytest.mark.asyncio
async def test_game_analysis_is_stored_with_categories(tmp_path):
    record = MoveRecord(
        move_number=1, side="white", move_notation="f3", evaluation_pawns=-3.0,
        best_move_notation="Nf3", centipawn_loss=350, category=MoveCategory.BLUNDER,
    )
    analysis = aggregate_game_analysis([record])

    async with SqliteResultStore(tmp_path / "results.db") as store:
        await store.store_game_analysis("job-2", "game-42", analysis)
        stored = await store.get_result("job-2")

    assert stored["subject"] == "game-42"
    assert stored["result"]["move_count"] == 1
    assert stored["result"]["blunders"][0]["category"] == "blunder"
    assert stored["result"]["game_quality"] == 0.0


@pytest.mark.asyncio
async def test_results_survive_reconnect(tmp_path):
    db_path = tmp_path / "results.db"
    async with SqliteResultStore(db_path) as store:
        await store.record_failure("job-3", JobKind.GAME, "Job job-3 failed after 3 attempt(s)")

    async with SqliteResultStore(db_path) as store:
        failure = await store.get_failure("job-3")
        assert await store.get_result("job-3") is None

    assert failure["kind"] == "game"
    assert "3 attempt(s)" in failure["error"]


@pytest.mark.asyncio
async def test_unknown_job_has_no_result(tmp_path):
    async with SqliteResultStore(tmp_path / "results.db") as store:
        assert await store.get_result("missing") is None
        assert await store.get_failure("missing") is None


@pytest.mark.asyncio
async def test_use_before_connect_raises(tmp_path):
    store = SqliteResultStore(tmp_path / "results.db")
    with pytest.raises(PersistenceError):
        await store.get_result("job-1")
