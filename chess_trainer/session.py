"""Game session: the owned state of one game and its upward interface.

A GameSession holds the SessionState, the coach transcript and the
single all-or-nothing move-application path. It wires the board
interaction, the opponent scheduler and the response selector
together and exposes what a front end needs:

    submit_human_move / click / drag      move input
    get_highlight_map / get_session_state read-only views
    reset_session / set_difficulty / set_thinking_time
    ask                                   coach questions

Resetting bumps the session generation; late completions from the
previous game compare generations and are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import chess

from chess_trainer import evaluator, rules
from chess_trainer.config import SETTINGS, Settings
from chess_trainer.engine import ChessEngine
from chess_trainer.errors import AnalysisError
from chess_trainer.interaction import BoardInteraction
from chess_trainer.models import (
    ChatMessage,
    EvaluationResult,
    HighlightKind,
    HistoryEntry,
    SessionState,
)
from chess_trainer.responder import ResponseSelector
from chess_trainer.scheduler import OpponentScheduler

logger = logging.getLogger(__name__)


class GameSession:
    """One game against the simulated opponent, plus the coach chat."""

    def __init__(
        self,
        engine: ChessEngine | None = None,
        player_color: chess.Color = chess.WHITE,
        settings: Settings = SETTINGS,
        start_fen: str = chess.STARTING_FEN,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Create a session. Call start() inside the event loop to warm up.

        Args:
            engine: Stockfish wrapper; created from settings if omitted.
            player_color: Side the human plays.
            settings: Tuning knobs (thinking time, latencies, deferrals).
            start_fen: Initial position.
            rng: Random source for coach templates.
            sleep: Awaitable sleep, replaced by tests to skip delays.

        Raises:
            AnalysisError: If start_fen is not a valid position.
            ConfigurationError: If the default difficulty or thinking time is out of range.
        """
        rules.parse_position(start_fen)
        self.settings = settings
        self.engine = engine or ChessEngine(settings.stockfish_path)
        self.generation = 0
        self.state = SessionState(
            start_fen=start_fen,
            current_fen=start_fen,
            player_color=player_color,
            opponent_color=not player_color,
        )
        self.transcript: list[ChatMessage] = []
        self.interaction = BoardInteraction(
            self, orientation=player_color, feedback_seconds=settings.feedback_seconds
        )
        self.scheduler = OpponentScheduler(
            self, self.interaction, self.engine, settings=settings, sleep=sleep
        )
        self.scheduler.configure(settings.difficulty_index, settings.thinking_time_seconds)
        self.responder = ResponseSelector(
            analyst=self.engine,
            rng=rng,
            latency_seconds=settings.response_latency_seconds,
            analysis_depth=settings.analysis_depth,
            sleep=sleep,
        )
        self._response_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Warm up the engine and let the opponent move if it opens the game."""
        self.position_changed()
        return await self.scheduler.warm_up()

    def reset_session(self, player_color: chess.Color | None = None) -> None:
        """Discard the current game and start a new one from the start position.

        Outstanding opponent and coach computations are cancelled. Engine
        readiness and the difficulty settings carry over.
        """
        if player_color is None:
            player_color = self.state.player_color
        self.generation += 1
        self.scheduler.cancel()
        if self._response_task is not None and not self._response_task.done():
            self._response_task.cancel()

        previous = self.state
        self.state = SessionState(
            start_fen=previous.start_fen,
            current_fen=previous.start_fen,
            player_color=player_color,
            opponent_color=not player_color,
            thinking_time_seconds=previous.thinking_time_seconds,
            difficulty_index=previous.difficulty_index,
            engine_ready=previous.engine_ready,
            engine_failed=previous.engine_failed,
        )
        self.transcript = []
        self.interaction.reset(orientation=player_color)
        logger.debug("Session reset, player is %s", evaluator.color_name(player_color))
        self.position_changed()

    def close(self) -> None:
        self.generation += 1
        self.scheduler.cancel()
        if self._response_task is not None and not self._response_task.done():
            self._response_task.cancel()
        self.engine.close()

    # ------------------------------------------------------------------
    # Move acceptance
    # ------------------------------------------------------------------

    def apply_move(self, move: chess.Move) -> HistoryEntry:
        """Apply a move to the position and history together.

        Raises:
            IllegalMoveError: If the rules engine rejects the move. Nothing
                is changed in that case.
        """
        fen_before = self.state.current_fen
        fen_after = rules.apply_move(fen_before, move)
        entry = HistoryEntry(
            uci=move.uci(),
            san=rules.to_notation(fen_before, move),
            fen=fen_after,
            from_square=move.from_square,
            to_square=move.to_square,
        )
        self.state.history.append(entry)
        self.state.current_fen = fen_after
        return entry

    def position_changed(self) -> None:
        self.scheduler.on_position_changed(self)

    def retry_opponent(self) -> bool:
        """Ask the opponent to move again after a failed computation."""
        self.state.last_error = None
        return self.scheduler.on_position_changed(self)

    # ------------------------------------------------------------------
    # Upward interface
    # ------------------------------------------------------------------

    async def submit_human_move(self, move: chess.Move) -> bool:
        """Submit a complete move from the human; True if it was applied."""
        piece = rules.piece_at(self.state.current_fen, move.from_square)
        if piece is None:
            return False
        return await self.interaction.drag_move(
            move.from_square, move.to_square, piece, promotion=move.promotion
        )

    def get_highlight_map(self) -> dict[chess.Square, HighlightKind]:
        return self.interaction.highlight_map()

    def get_session_state(self) -> SessionState:
        return self.state.snapshot()

    def set_difficulty(self, index: int) -> None:
        self.scheduler.configure(index, self.state.thinking_time_seconds)

    def set_thinking_time(self, seconds: float) -> None:
        self.scheduler.configure(self.state.difficulty_index, seconds)

    # ------------------------------------------------------------------
    # Replay and status
    # ------------------------------------------------------------------

    def replay(self, ply: int | None = None) -> chess.Board:
        """Rebuild the position after `ply` half-moves (all of them by default).

        Raises:
            AnalysisError: If ply is out of range or the history does not replay.
        """
        history = self.state.history
        if ply is None:
            ply = len(history)
        if not 0 <= ply <= len(history):
            raise AnalysisError(f"Ply {ply} is outside the game (0-{len(history)})")
        return rules.replay(self.state.start_fen, [entry.uci for entry in history[:ply]])

    def position_at(self, ply: int) -> str:
        return self.replay(ply).fen()

    def status(self) -> str:
        fen = self.state.current_fen
        if rules.is_checkmate(fen):
            return "Checkmate!"
        if rules.is_draw(fen):
            return "Draw"
        if rules.is_check(fen):
            return "Check!"
        return "In progress"

    def winner(self) -> chess.Color | None:
        """Color that delivered mate, if the game ended in checkmate."""
        if not rules.is_checkmate(self.state.current_fen):
            return None
        return not self.state.side_to_move

    # ------------------------------------------------------------------
    # Coach
    # ------------------------------------------------------------------

    def evaluate(self, ply: int | None = None) -> EvaluationResult:
        """Heuristic evaluation of the current position or of an earlier ply."""
        if ply is None:
            ply = len(self.state.history)
        fen = self.position_at(ply)
        return evaluator.evaluate(fen, tuple(self.state.history[:ply]), self.state.start_fen)

    @property
    def responding(self) -> bool:
        return self.responder.busy or (
            self._response_task is not None and not self._response_task.done()
        )

    async def ask(self, question: str, ply: int | None = None) -> str | None:
        """Ask the coach about the current position or an earlier ply.

        The question and exactly one assistant reply are added to the
        transcript. A malformed position produces an apology instead of
        a reply.

        Returns:
            The reply, or None if the question was empty, another answer
            is still pending, or the session was reset meanwhile.
        """
        if not question.strip() or self.responding:
            return None

        generation = self.generation
        self.transcript.append(ChatMessage(question, "user"))
        task: asyncio.Future | None = None
        try:
            if ply is None:
                ply = len(self.state.history)
            evaluation = self.evaluate(ply)
            history = tuple(self.state.history[:ply])
            task = asyncio.ensure_future(
                self.responder.respond(question, evaluation, history, self.state.start_fen)
            )
            self._response_task = task
            reply = await task
        except AnalysisError as exc:
            logger.warning("Analysis error: %s", exc)
            reply = "Sorry, I encountered an error analyzing this position."
        except asyncio.CancelledError:
            if generation != self.generation:
                return None
            self.transcript.append(ChatMessage("The analysis was cancelled.", "assistant"))
            raise
        finally:
            if self._response_task is task:
                self._response_task = None

        if generation != self.generation:
            logger.debug("Discarding reply for a finished session")
            return None
        if reply is None:
            reply = "I'm still thinking about your previous question."
        self.transcript.append(ChatMessage(reply, "assistant"))
        return reply
