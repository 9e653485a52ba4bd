# tests/engine/test_session.py
"""Drives `UciSession` against a real subprocess: tests/fixtures/fake_uci_engine.py."""
import asyncio
from contextlib import aclosing

import pytest

from engine_analysis.engine.session import UciSession
from engine_analysis.exceptions import EngineCrashError, EngineStartupError
from engine_analysis.types import CandidateLine, PositionDescriptor, SearchResult, SessionState

BLACK_TO_MOVE_FEN = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


async def collect(events):
    async with aclosing(events) as stream:
        return [event async for event in stream]


@pytest.mark.asyncio
async def test_handshake_reaches_ready(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings(), name="engine-t")
    try:
        assert session.state is SessionState.READY
        assert not session.is_dead
        assert session.identifier == "FakeFish 1.0@engine-t"
    finally:
        await session.shutdown()
    assert session.state is SessionState.DEAD


@pytest.mark.asyncio
async def test_depth_search_yields_lines_then_result(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings(), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        events = await collect(session.search_to_depth(2))
    finally:
        await session.shutdown()

    assert all(isinstance(event, CandidateLine) for event in events[:-1])
    result = events[-1]
    assert isinstance(result, SearchResult)
    assert result.best_move == "e2e4"
    assert result.ponder == "e7e5"
    assert result.depth_reached == 2
    # The lowerbound line (cp 999) is not the final evaluation.
    assert result.evaluation_pawns == pytest.approx(0.25)
    assert [line.rank for line in result.lines] == [1, 2, 3]
    assert result.lines[0].pv[:2] == ("e2e4", "e7e5")
    assert result.lines[1].evaluation_pawns == pytest.approx(-0.05)


@pytest.mark.asyncio
async def test_scores_are_white_perspective(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("normal", "--score", "40"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor(fen=BLACK_TO_MOVE_FEN))
        events = await collect(session.search_for_duration(50))
    finally:
        await session.shutdown()

    # The engine reports +40 for black, the side to move.
    assert events[-1].evaluation_pawns == pytest.approx(-0.40)


@pytest.mark.asyncio
async def test_mate_scores_are_scaled(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("normal", "--mate", "2"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        events = await collect(session.search_to_depth(2))
    finally:
        await session.shutdown()

    result = events[-1]
    assert result.evaluation_pawns == pytest.approx(99.8)
    assert result.lines[0].mate_in == 2


@pytest.mark.asyncio
async def test_search_without_score_or_move(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("no_score"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        events = await collect(session.search_to_depth(2))
    finally:
        await session.shutdown()

    (result,) = events
    assert result.best_move is None
    assert result.evaluation_pawns == 0.0
    assert result.lines == ()


@pytest.mark.asyncio
async def test_bound_only_score_falls_back_to_last_known(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("bound_only", "--score", "40"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor(fen=BLACK_TO_MOVE_FEN))
        events = await collect(session.search_for_duration(50))
    finally:
        await session.shutdown()

    (result,) = events
    assert result.best_move == "e2e4"
    assert result.lines == ()
    # Upperbound +40 for black, the side to move.
    assert result.evaluation_pawns == pytest.approx(-0.40)


@pytest.mark.asyncio
async def test_session_is_reusable_after_a_search(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings(), name="engine-t")
    try:
        for moves in [(), ("e2e4",), ("e2e4", "e7e5")]:
            await session.set_position(PositionDescriptor(moves=moves))
            events = await collect(session.search_for_duration(10))
            assert isinstance(events[-1], SearchResult)
            assert session.state is SessionState.READY
    finally:
        await session.shutdown()


@pytest.mark.asyncio
async def test_silent_engine_fails_startup(fake_engine_settings):
    with pytest.raises(EngineStartupError):
        await UciSession.create(fake_engine_settings("silent", startup_timeout_s=0.5), name="engine-t")


@pytest.mark.asyncio
async def test_missing_executable_fails_startup(fake_engine_settings):
    settings = fake_engine_settings(path="/nonexistent/engine-binary", args=[])
    with pytest.raises(EngineStartupError):
        await UciSession.create(settings, name="engine-t")


@pytest.mark.asyncio
async def test_engine_exit_mid_search_marks_session_dead(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("crash_on_go"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        with pytest.raises(EngineCrashError):
            await collect(session.search_to_depth(5))
        assert session.is_dead
        with pytest.raises(EngineCrashError):
            await session.set_position(PositionDescriptor())
    finally:
        await session.shutdown()


@pytest.mark.asyncio
async def test_closing_a_search_early_stops_and_drains(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("hang"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        async with aclosing(session.search_to_depth(30)) as events:
            first = await events.__anext__()
            assert isinstance(first, CandidateLine)
            assert session.state is SessionState.BUSY

        # The aborted search's bestmove was consumed; the session takes commands again.
        assert session.state is SessionState.READY
        await session.set_position(PositionDescriptor(moves=("e2e4",)))
    finally:
        await session.shutdown()


@pytest.mark.asyncio
async def test_timeout_while_searching_stops_the_engine(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("hang"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(collect(session.search_to_depth(30)), timeout=0.3)
        assert session.state is SessionState.READY
    finally:
        await session.shutdown()


@pytest.mark.asyncio
async def test_engine_ignoring_stop_is_marked_dead(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("ignore_stop", stop_timeout_s=0.3), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(collect(session.search_to_depth(30)), timeout=0.3)
        assert session.is_dead
    finally:
        await session.shutdown()


@pytest.mark.asyncio
async def test_shutdown_kills_an_engine_that_ignores_quit(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("ignore_quit", quit_grace_s=0.3), name="engine-t")
    await session.shutdown()
    assert session.is_dead
    assert session.state is SessionState.DEAD
    # Idempotent.
    await session.shutdown()


@pytest.mark.asyncio
async def test_search_requires_ready_state(fake_engine_settings):
    session = await UciSession.create(fake_engine_settings("hang"), name="engine-t")
    try:
        await session.set_position(PositionDescriptor())
        async with aclosing(session.search_to_depth(30)) as events:
            await events.__anext__()
            with pytest.raises(RuntimeError):
                await session.set_position(PositionDescriptor())
    finally:
        await session.shutdown()
