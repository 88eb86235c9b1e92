"""Shared test fixtures with dual-mode support (mocked vs real Stockfish).

Usage:
    pytest tests/                  # Fast, mocked engine (no Stockfish)
    pytest tests/ --e2e            # Real Stockfish for integration tests

Fixtures:
    mock_chess_engine  - MagicMock standing in for ChessEngine; plays the
                         first legal move and scores every position +0.25.
    instant_sleep      - Awaitable sleep that only yields to the loop.
    fast_settings      - Settings with short feedback and no latency.
    session            - GameSession wired to the fixtures above.
    real_engine        - Warmed-up ChessEngine. Skipped without --e2e.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import replace
from unittest.mock import MagicMock

import chess
import pytest

from chess_trainer.config import Settings
from chess_trainer.engine import ChessEngine
from chess_trainer.models import HistoryEntry
from chess_trainer.session import GameSession


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no mocks).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_history(ucis: list[str], start_fen: str = chess.STARTING_FEN) -> list[HistoryEntry]:
    """Build history entries by playing UCI moves from start_fen."""
    board = chess.Board(start_fen)
    entries: list[HistoryEntry] = []
    for uci in ucis:
        move = chess.Move.from_uci(uci)
        san = board.san(move)
        board.push(move)
        entries.append(HistoryEntry(
            uci=uci,
            san=san,
            fen=board.fen(),
            from_square=move.from_square,
            to_square=move.to_square,
        ))
    return entries


def _make_mock_engine() -> MagicMock:
    """Create a mock ChessEngine that returns valid moves."""
    mock = MagicMock(spec=ChessEngine)

    def _choose_move(board: chess.Board, level):
        """Return the first legal move from the board."""
        legal = list(board.legal_moves)
        if not legal:
            raise ValueError("No legal moves available")
        return legal[0]

    mock.choose_move.side_effect = _choose_move
    mock.evaluate_position.return_value = 25
    mock.warm_up.return_value = None
    return mock


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_chess_engine():
    return _make_mock_engine()


@pytest.fixture()
def instant_sleep():
    """Sleep replacement: yields once instead of waiting."""
    async def _sleep(seconds: float) -> None:
        await asyncio.sleep(0)
    return _sleep


@pytest.fixture()
def fast_settings():
    return replace(
        Settings(),
        feedback_seconds=0.01,
        response_latency_seconds=0.0,
        deferral_interval_seconds=0.0,
        max_engine_deferrals=2,
    )


@pytest.fixture()
def session(mock_chess_engine, fast_settings, instant_sleep):
    """A session playing White against the mocked engine."""
    game = GameSession(
        engine=mock_chess_engine,
        settings=fast_settings,
        rng=random.Random(0),
        sleep=instant_sleep,
    )
    yield game
    game.close()


@pytest.fixture()
def real_engine(request):
    """Warmed-up Stockfish. Only available with --e2e."""
    if not request.config.getoption("--e2e"):
        pytest.skip("requires --e2e")
    engine = ChessEngine()
    engine.warm_up()
    yield engine
    engine.close()
