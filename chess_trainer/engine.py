"""Stockfish wrapper for Chess Trainer.

Wraps Stockfish via the python-chess UCI interface. Provides:
- One-time warm-up that must succeed before the opponent may move
- Level-based move choice (sub-1320 Elo blends random moves with a
  depth-limited search, stronger levels use UCI_Elo)
- Full-strength position evaluation for the coach
"""

from __future__ import annotations

import logging
import random
import shutil
from pathlib import Path

import chess
import chess.engine

from chess_trainer.errors import EngineUnavailable
from chess_trainer.models import DifficultyLevel

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

_MATE_SCORE = 10000

# Stockfish refuses UCI_Elo below this value
_UCI_ELO_FLOOR = 1320


def find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        EngineUnavailable: If Stockfish is not found anywhere.
    """
    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise EngineUnavailable(
        "Stockfish not found. Install it or set CHESS_TRAINER_STOCKFISH."
    )


def random_blend(elo: int) -> float:
    """Probability of playing a random legal move at the given Elo."""
    if elo >= _UCI_ELO_FLOOR:
        return 0.0
    return max(0.0, 0.85 - (elo / _UCI_ELO_FLOOR) * 0.85)


class ChessEngine:
    """Stockfish process with level-based play and full-strength analysis."""

    def __init__(
        self,
        stockfish_path: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Prepare the wrapper. The process starts in warm_up().

        Args:
            stockfish_path: Explicit path to Stockfish binary.
                If None, auto-detects from known locations on warm-up.
            rng: Random source for the low-Elo random blend.
        """
        self._stockfish_path = stockfish_path
        self._engine: chess.engine.SimpleEngine | None = None
        self._rng = rng or random.Random()
        self._level: DifficultyLevel | None = None

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    def _open_engine(self) -> chess.engine.SimpleEngine:
        """Open a fresh Stockfish process.

        Raises:
            EngineUnavailable: If the binary is missing or fails to start.
        """
        path = self._stockfish_path or find_stockfish()
        try:
            return chess.engine.SimpleEngine.popen_uci(path)
        except (OSError, chess.engine.EngineError) as exc:
            raise EngineUnavailable(f"Failed launching engine at '{path}': {exc}") from exc

    def _ensure_engine(self) -> chess.engine.SimpleEngine:
        """Ensure engine process is alive, restart once if terminated."""
        if self._engine is None:
            raise EngineUnavailable("Engine has not been warmed up")
        try:
            self._engine.ping()
        except chess.engine.EngineTerminatedError:
            logger.warning("Stockfish terminated, restarting")
            self._engine = self._open_engine()
            if self._level is not None:
                self._configure(self._level)
        return self._engine

    def warm_up(self) -> None:
        """Start Stockfish and run a shallow search so later calls are fast.

        Raises:
            EngineUnavailable: If Stockfish cannot be started or answered badly.
        """
        if self._engine is None:
            self._engine = self._open_engine()
        try:
            self._engine.analyse(chess.Board(), chess.engine.Limit(depth=1))
        except chess.engine.EngineError as exc:
            raise EngineUnavailable(f"Engine warm-up failed: {exc}") from exc
        logger.debug("Stockfish warm-up complete")

    def _configure(self, level: DifficultyLevel) -> None:
        if self._engine is None:
            raise EngineUnavailable("Engine has not been warmed up")
        if level.elo >= _UCI_ELO_FLOOR:
            self._engine.configure({"UCI_LimitStrength": True, "UCI_Elo": level.elo})
        else:
            self._engine.configure({"UCI_LimitStrength": False})

    def set_level(self, level: DifficultyLevel) -> None:
        """Configure engine strength for opponent moves."""
        self._ensure_engine()
        if level == self._level:
            return
        try:
            self._configure(level)
        except chess.engine.EngineError as exc:
            raise EngineUnavailable(f"Could not configure engine: {exc}") from exc
        self._level = level

    def choose_move(self, board: chess.Board, level: DifficultyLevel) -> chess.Move:
        """Pick the opponent's move at the given level.

        For sub-1320 levels: plays a random legal move with the blend
        probability, otherwise a search limited to the level's depth.
        Stronger levels search to depth with UCI_Elo limiting.

        Raises:
            ValueError: If the game is already over.
            EngineUnavailable: If Stockfish fails twice in a row.
        """
        if board.is_game_over():
            raise ValueError("Game is already over")

        self.set_level(level)
        if self._rng.random() < random_blend(level.elo):
            return self._rng.choice(list(board.legal_moves))

        limit = chess.engine.Limit(depth=level.search_depth)
        try:
            result = self._ensure_engine().play(board, limit)
        except chess.engine.EngineTerminatedError:
            self._engine = self._open_engine()
            self._configure(level)
            try:
                result = self._engine.play(board, limit)
            except chess.engine.EngineError as exc:
                raise EngineUnavailable(f"Engine failed to move: {exc}") from exc
        except chess.engine.EngineError as exc:
            raise EngineUnavailable(f"Engine failed to move: {exc}") from exc

        if result.move is None:
            raise EngineUnavailable("Engine returned no move")
        return result.move

    def evaluate_position(self, fen: str, depth: int = 12) -> int:
        """Full-strength evaluation in centipawns from White's point of view.

        Mate scores are mapped to +/-10000.

        Raises:
            EngineUnavailable: If Stockfish cannot analyse the position.
        """
        board = chess.Board(fen)
        try:
            info = self._ensure_engine().analyse(board, chess.engine.Limit(depth=depth))
        except chess.engine.EngineError as exc:
            raise EngineUnavailable(f"Engine analysis failed: {exc}") from exc
        return info["score"].white().score(mate_score=_MATE_SCORE)

    def close(self) -> None:
        """Clean up Stockfish process."""
        if self._engine is None:
            return
        try:
            self._engine.quit()
        except chess.engine.EngineTerminatedError:
            pass
        self._engine = None
