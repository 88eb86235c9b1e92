"""Shared data models for Chess Trainer.

SessionState is the single owned record of a game in progress.
HistoryEntry, EvaluationResult and ChatMessage are immutable values
handed between the session, the evaluator and the response selector.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace

import chess


class HighlightKind(str, enum.Enum):
    """Visual hint category for a highlighted square."""

    LEGAL_DESTINATION = "legal-destination"
    INVALID_ATTEMPT = "invalid-attempt"
    MANUAL_MARK = "manual-mark"


@dataclass(frozen=True)
class DifficultyLevel:
    """One opponent strength tier."""

    name: str
    elo: int
    description: str
    search_depth: int


DIFFICULTY_LEVELS: tuple[DifficultyLevel, ...] = (
    DifficultyLevel("Beginner", 400, "Learning how the pieces move", 1),
    DifficultyLevel("Novice", 800, "Knows the rules, misses simple tactics", 2),
    DifficultyLevel("Casual", 1000, "Plays for fun, occasional blunders", 3),
    DifficultyLevel("Intermediate", 1200, "Understands basic opening principles", 5),
    DifficultyLevel("Club Player", 1500, "Solid tactics and piece play", 8),
    DifficultyLevel("Advanced", 1800, "Strong positional understanding", 10),
    DifficultyLevel("Expert", 2100, "Tournament strength", 14),
    DifficultyLevel("Master", 2500, "Deep calculation, few mistakes", 18),
)


@dataclass(frozen=True)
class HistoryEntry:
    """An accepted move and the position it produced."""

    uci: str
    san: str
    fen: str
    from_square: chess.Square
    to_square: chess.Square

    @property
    def move(self) -> chess.Move:
        return chess.Move.from_uci(self.uci)


@dataclass(frozen=True)
class CriticalPosition:
    """A turning point in the move history."""

    move: str
    description: str


@dataclass(frozen=True)
class EvaluationResult:
    """Heuristic assessment of one position."""

    material_balance: int
    threats: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    critical_positions: tuple[CriticalPosition, ...] = ()


@dataclass(frozen=True)
class ChatMessage:
    """One line of the coach transcript."""

    text: str
    sender: str  # "user" | "assistant"


@dataclass
class SessionState:
    """Full state of the game owned by a GameSession."""

    start_fen: str = chess.STARTING_FEN
    current_fen: str = chess.STARTING_FEN
    history: list[HistoryEntry] = field(default_factory=list)
    player_color: chess.Color = chess.WHITE
    opponent_color: chess.Color = chess.BLACK
    thinking_time_seconds: float = 2.0
    difficulty_index: int = 1
    engine_ready: bool = False
    engine_failed: bool = False  # warm-up gave up; play on without an opponent
    is_thinking: bool = False
    last_error: Exception | None = None

    @property
    def side_to_move(self) -> chess.Color:
        return chess.Board(self.current_fen).turn

    @property
    def difficulty(self) -> DifficultyLevel:
        return DIFFICULTY_LEVELS[self.difficulty_index]

    def snapshot(self) -> SessionState:
        """Return a copy whose history can no longer be appended to."""
        return replace(self, history=tuple(self.history))
