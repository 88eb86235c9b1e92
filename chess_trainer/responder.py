"""Canned, phase-aware coach replies.

A question is classified by ordered keyword rules (first match wins)
and routed to a generator that describes the position in plain
language. Questions that match no rule get a phase template picked
at random from a fixed set; the random source is injected so tests
can seed it. Every reply waits a simulated latency first.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from typing import Awaitable, Callable, Protocol, Sequence

import chess

from chess_trainer import rules
from chess_trainer.config import SETTINGS
from chess_trainer.errors import EngineUnavailable
from chess_trainer.evaluator import (
    ENDGAME_MATERIAL,
    color_name,
    doubled_pawn_files,
    hanging_pieces,
    isolated_pawns,
    mate_in_one,
    non_pawn_material,
    passed_pawns,
    piece_value,
)
from chess_trainer.models import EvaluationResult, HistoryEntry

logger = logging.getLogger(__name__)


class Intent(str, enum.Enum):
    BEST_MOVE = "best-move-request"
    EXPLAIN_LAST_MOVE = "explain-last-move"
    PAWN_STRUCTURE = "pawn-structure"
    TACTICAL = "tactical-opportunity"
    SUMMARY = "default-summary"


class Phase(str, enum.Enum):
    OPENING = "opening"
    MIDDLEGAME = "middlegame"
    ENDGAME = "endgame"


def _any_of(*words: str) -> Callable[[str], bool]:
    return lambda text: any(word in text for word in words)


def _all_of(*words: str) -> Callable[[str], bool]:
    return lambda text: all(word in text for word in words)


# Order matters: the first matching rule decides the intent
INTENT_RULES: tuple[tuple[Intent, Callable[[str], bool]], ...] = (
    (Intent.BEST_MOVE, _any_of("what should i do", "best move")),
    (Intent.EXPLAIN_LAST_MOVE, _all_of("why", "bad")),
    (Intent.PAWN_STRUCTURE, _any_of("pawn structure", "pawns")),
    (Intent.TACTICAL, _any_of("attack", "tactical")),
)

PHASE_TEMPLATES: dict[Phase, tuple[str, ...]] = {
    Phase.OPENING: (
        "Focus on developing your pieces and controlling the center.",
        "Consider castling to protect your king.",
        "Try to avoid moving the same piece multiple times in the opening.",
    ),
    Phase.MIDDLEGAME: (
        "Look for tactical opportunities and piece coordination.",
        "Create and exploit weaknesses in the opponent's position.",
        "Maintain control of key squares and open files.",
    ),
    Phase.ENDGAME: (
        "Activate your king and centralize your pieces.",
        "Push passed pawns when possible.",
        "Focus on piece coordination and king safety.",
    ),
}

# Full moves counted as opening when the question gives no phase hint
_OPENING_FULLMOVES = 10


class PositionAnalyst(Protocol):
    """Deep-analysis collaborator; ChessEngine satisfies it."""

    def evaluate_position(self, fen: str, depth: int = ...) -> int: ...


def classify_question(question: str) -> Intent:
    """Map a free-text question to an intent, case-insensitively."""
    text = question.lower()
    for intent, matches in INTENT_RULES:
        if matches(text):
            return intent
    return Intent.SUMMARY


def classify_phase(context: str = "", board: chess.Board | None = None) -> Phase:
    """Classify the game phase from text hints, then from the board.

    An explicit "opening" or "endgame" in the context wins. Without a
    hint, few non-pawn pieces means endgame and an early move number
    means opening.
    """
    text = context.lower()
    if "opening" in text:
        return Phase.OPENING
    if "endgame" in text:
        return Phase.ENDGAME
    if board is None:
        return Phase.MIDDLEGAME
    if non_pawn_material(board) <= ENDGAME_MATERIAL:
        return Phase.ENDGAME
    if board.fullmove_number <= _OPENING_FULLMOVES:
        return Phase.OPENING
    return Phase.MIDDLEGAME


def _format_balance(balance: int) -> str:
    if balance == 0:
        return "Material is level."
    leader = "White" if balance > 0 else "Black"
    points = abs(balance)
    return f"{leader} is ahead by {points} point{'s' if points != 1 else ''} of material."


def _format_score(centipawns: int) -> str:
    if abs(centipawns) >= 10000:
        return "a forced mate for " + ("White" if centipawns > 0 else "Black")
    return f"{centipawns / 100.0:+.2f}"


def _candidate_move(board: chess.Board) -> chess.Move | None:
    """Pick a reasonable move without an engine.

    Prefers mate, then the most valuable safe capture, then a check,
    then development of a minor piece.
    """
    mates = mate_in_one(board)
    if mates:
        return mates[0]

    best_capture: chess.Move | None = None
    best_gain = 0
    for move in board.legal_moves:
        if not board.is_capture(move):
            continue
        victim = board.piece_type_at(move.to_square) or chess.PAWN
        attacker = board.piece_type_at(move.from_square) or chess.PAWN
        gain = piece_value(victim)
        if board.is_attacked_by(not board.turn, move.to_square):
            gain -= piece_value(attacker)
        if gain > best_gain:
            best_capture, best_gain = move, gain
    if best_capture is not None:
        return best_capture

    for move in board.legal_moves:
        if board.gives_check(move) and not board.is_attacked_by(not board.turn, move.to_square):
            return move

    home_rank = 0 if board.turn == chess.WHITE else 7
    for move in board.legal_moves:
        piece_type = board.piece_type_at(move.from_square)
        if (
            piece_type in (chess.KNIGHT, chess.BISHOP)
            and chess.square_rank(move.from_square) == home_rank
            and not board.is_attacked_by(not board.turn, move.to_square)
        ):
            return move
    return None


class ResponseSelector:
    """Produces one coach reply at a time."""

    def __init__(
        self,
        analyst: PositionAnalyst | None = None,
        rng: random.Random | None = None,
        latency_seconds: float = SETTINGS.response_latency_seconds,
        analysis_depth: int = SETTINGS.analysis_depth,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._analyst = analyst
        self._rng = rng or random.Random()
        self._latency = latency_seconds
        self._depth = analysis_depth
        self._sleep = sleep
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def respond(
        self,
        question: str,
        evaluation: EvaluationResult,
        history: Sequence[HistoryEntry],
        start_fen: str = chess.STARTING_FEN,
    ) -> str | None:
        """Answer a question about the position the history leads to.

        Returns:
            The reply, or None if another reply is still being generated.

        Raises:
            AnalysisError: If the history cannot be replayed from start_fen.
        """
        if self._busy:
            logger.debug("Response already in progress, ignoring question")
            return None
        self._busy = True
        try:
            board = rules.replay(start_fen, [entry.uci for entry in history])
            await self._sleep(self._latency)
            intent = classify_question(question)
            logger.debug("Question classified as %s", intent.value)
            if intent is Intent.BEST_MOVE:
                return await self._strategy_advice(board, evaluation)
            if intent is Intent.EXPLAIN_LAST_MOVE:
                return self._explain_last_move(history, start_fen)
            if intent is Intent.PAWN_STRUCTURE:
                return self._pawn_structure(board)
            if intent is Intent.TACTICAL:
                return self._tactical_opportunities(board)
            return self._position_summary(question, board, evaluation)
        finally:
            self._busy = False

    # ------------------------------------------------------------------
    # Generators
    # ------------------------------------------------------------------

    async def _engine_score(self, fen: str) -> int | None:
        if self._analyst is None:
            return None
        try:
            return await asyncio.to_thread(self._analyst.evaluate_position, fen, self._depth)
        except EngineUnavailable as exc:
            logger.warning("Engine evaluation unavailable: %s", exc)
            return None

    async def _strategy_advice(self, board: chess.Board, evaluation: EvaluationResult) -> str:
        if board.is_game_over():
            return f"The game is over ({board.result()}). Start a new game to keep practising."

        lines: list[str] = []
        candidate = _candidate_move(board)
        side = color_name(board.turn).capitalize()
        if candidate is not None:
            lines.append(f"{side} could consider {board.san(candidate)}.")
        else:
            lines.append(f"There is no forcing move for {side}; improve your worst-placed piece.")

        lines.extend(evaluation.threats)
        lines.extend(evaluation.suggestions)

        score = await self._engine_score(board.fen())
        if score is not None:
            lines.append(f"Engine evaluation: {_format_score(score)}.")
        lines.append(_format_balance(evaluation.material_balance))
        return "\n".join(lines)

    def _explain_last_move(self, history: Sequence[HistoryEntry], start_fen: str) -> str:
        if not history:
            return "No moves have been played yet, so there is nothing to explain."

        last = history[-1]
        before = rules.replay(start_fen, [entry.uci for entry in history[:-1]])
        mover = color_name(before.turn)
        move = last.move
        after = before.copy(stack=False)
        after.push(move)

        lines = [f"The last move was {last.san} by {mover}."]
        moved = after.piece_at(move.to_square)
        if moved is not None and move.to_square in hanging_pieces(after, moved.color):
            lines.append(
                f"It left the {chess.piece_name(moved.piece_type)} on "
                f"{chess.square_name(move.to_square)} exposed to capture."
            )
        opponent_mates = mate_in_one(after)
        if opponent_mates:
            lines.append(f"It allows mate with {after.san(opponent_mates[0])}.")
        left_hanging = [
            sq for sq in hanging_pieces(after, before.turn)
            if sq != move.to_square and sq not in hanging_pieces(before, before.turn)
        ]
        for sq in left_hanging:
            lines.append(
                f"It stopped protecting the {chess.piece_name(after.piece_type_at(sq))} "
                f"on {chess.square_name(sq)}."
            )
        if len(lines) == 1:
            lines.append("It does not lose material directly; the problem is more positional.")
        return "\n".join(lines)

    def _pawn_structure(self, board: chess.Board) -> str:
        lines: list[str] = []
        for color in (chess.WHITE, chess.BLACK):
            name = color_name(color).capitalize()
            notes: list[str] = []
            doubled = doubled_pawn_files(board, color)
            if doubled:
                notes.append(f"doubled pawns on {', '.join(doubled)}")
            isolated = isolated_pawns(board, color)
            if isolated:
                notes.append("isolated pawns on " + ", ".join(chess.square_name(sq) for sq in isolated))
            passed = passed_pawns(board, color)
            if passed:
                notes.append("passed pawns on " + ", ".join(chess.square_name(sq) for sq in passed))
            if notes:
                lines.append(f"{name}: " + "; ".join(notes) + ".")
            else:
                lines.append(f"{name}: a healthy pawn structure.")
        return "\n".join(lines)

    def _tactical_opportunities(self, board: chess.Board) -> str:
        lines: list[str] = []
        mates = mate_in_one(board)
        if mates:
            lines.append(f"There is mate in one: {board.san(mates[0])}!")
        for sq in hanging_pieces(board, not board.turn):
            lines.append(
                f"The {chess.piece_name(board.piece_type_at(sq))} on "
                f"{chess.square_name(sq)} can be attacked or won."
            )
        checks = [board.san(move) for move in board.legal_moves if board.gives_check(move)]
        if checks:
            lines.append("Checks to consider: " + ", ".join(checks[:5]) + ".")
        if not lines:
            return "No immediate tactics stand out. Improve your pieces and wait for a chance."
        return "\n".join(lines)

    def _position_summary(
        self,
        question: str,
        board: chess.Board,
        evaluation: EvaluationResult,
    ) -> str:
        phase = classify_phase(question, board)
        template = self._rng.choice(PHASE_TEMPLATES[phase])
        lines = [
            "Based on the current position:",
            template,
            "",
            _format_balance(evaluation.material_balance),
        ]
        if evaluation.critical_positions:
            last = evaluation.critical_positions[-1]
            lines.append(f"Key moment: {last.move} ({last.description}).")
        lines.append("Consider the specific features of this position and adjust your strategy accordingly.")
        return "\n".join(lines)
