"""Opponent turn scheduler.

Watches for the opponent's turn, simulates thinking time and submits
the engine's move through the board's acceptance path, the same path
a human move takes. Only one opponent computation may be outstanding;
calls that arrive while it runs are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

import chess.engine

from chess_trainer import rules
from chess_trainer.config import MAX_THINKING_TIME, MIN_THINKING_TIME, SETTINGS, Settings
from chess_trainer.errors import ChessTrainerError, ConfigurationError, EngineUnavailable, IllegalMoveError
from chess_trainer.models import DIFFICULTY_LEVELS

if TYPE_CHECKING:
    from chess_trainer.engine import ChessEngine
    from chess_trainer.interaction import BoardInteraction
    from chess_trainer.session import GameSession

logger = logging.getLogger(__name__)


def thinking_delay(difficulty_index: int, thinking_time_seconds: float) -> float:
    """Seconds to wait before moving; stronger levels use more of the budget."""
    top = len(DIFFICULTY_LEVELS) - 1
    return thinking_time_seconds * (0.5 + 0.5 * difficulty_index / top)


class OpponentScheduler:
    """Schedules the simulated opponent's moves for one session."""

    def __init__(
        self,
        session: GameSession,
        interaction: BoardInteraction,
        engine: ChessEngine,
        settings: Settings = SETTINGS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._interaction = interaction
        self._engine = engine
        self._settings = settings
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def configure(self, difficulty_index: int, thinking_time_seconds: float) -> None:
        """Set strength and thinking time for future opponent moves.

        Raises:
            ConfigurationError: If either value is out of range. The
                previous configuration is kept.
        """
        if not 0 <= difficulty_index < len(DIFFICULTY_LEVELS):
            raise ConfigurationError(
                f"Difficulty must be between 0 and {len(DIFFICULTY_LEVELS) - 1}, "
                f"got {difficulty_index}"
            )
        if not MIN_THINKING_TIME <= thinking_time_seconds <= MAX_THINKING_TIME:
            raise ConfigurationError(
                f"Thinking time must be between {MIN_THINKING_TIME:g} and "
                f"{MAX_THINKING_TIME:g} seconds, got {thinking_time_seconds}"
            )
        state = self._session.state
        state.difficulty_index = difficulty_index
        state.thinking_time_seconds = float(thinking_time_seconds)

    async def warm_up(self) -> bool:
        """Start the engine once; the opponent cannot move before this succeeds."""
        try:
            await asyncio.to_thread(self._engine.warm_up)
        except EngineUnavailable as exc:
            logger.warning("Engine warm-up failed: %s", exc)
            self._session.state.engine_ready = False
            self._session.state.engine_failed = True
            self._session.state.last_error = exc
            return False
        self._session.state.engine_ready = True
        self._session.state.engine_failed = False
        return True

    def on_position_changed(self, session: GameSession) -> bool:
        """Start the opponent's move if it is their turn.

        Returns:
            True if a new computation was started.
        """
        state = session.state
        if state.is_thinking or self.pending:
            logger.debug("Opponent already thinking, ignoring position change")
            return False
        if state.side_to_move != state.opponent_color:
            return False
        if rules.is_game_over(state.current_fen):
            return False

        loop = asyncio.get_running_loop()
        state.is_thinking = True
        state.last_error = None
        self._task = loop.create_task(self._think(session.generation))
        return True

    async def _wait_until_ready(self) -> None:
        deferrals = 0
        while not self._session.state.engine_ready:
            if deferrals >= self._settings.max_engine_deferrals:
                raise EngineUnavailable(
                    f"Engine not ready after {deferrals} deferrals, dropping opponent move"
                )
            deferrals += 1
            await self._sleep(self._settings.deferral_interval_seconds)

    async def _think(self, generation: int) -> None:
        state = self._session.state

        def stale() -> bool:
            return self._session.generation != generation

        try:
            await self._wait_until_ready()
            await self._sleep(thinking_delay(state.difficulty_index, state.thinking_time_seconds))
            if stale():
                return

            board = rules.parse_position(state.current_fen)
            if not any(board.legal_moves):
                raise EngineUnavailable("No legal moves in a position that is not over")
            move = await asyncio.to_thread(self._engine.choose_move, board, state.difficulty)
            if stale():
                logger.debug("Discarding opponent move for a finished session")
                return

            if not self._interaction.accept(move):
                raise IllegalMoveError(move.uci(), "engine proposed an illegal move")
        except (ChessTrainerError, ValueError, chess.engine.EngineError) as exc:
            if not stale():
                logger.warning("Opponent move failed: %s", exc)
                state.last_error = exc
        finally:
            if not stale():
                state.is_thinking = False

    def cancel(self) -> None:
        """Cancel the outstanding computation, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def join(self) -> None:
        """Wait for the outstanding computation to finish."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
