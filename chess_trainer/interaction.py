"""Move interaction state machine for one board.

Turns square clicks and piece drags into moves, keeps the highlight
map in sync with the pending selection, and flashes rejected targets
for a short interval. Both human moves and opponent moves go through
accept(), the single path into the session.

States:
    IDLE            no origin selected
    PIECE_SELECTED  origin chosen, legal destinations highlighted

A rejected move starts a feedback timer on top of either state. The
timer carries the selection generation it was started under, so it
does nothing once a new selection or a reset has happened.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

import chess

from chess_trainer import rules
from chess_trainer.config import SETTINGS
from chess_trainer.errors import IllegalMoveError
from chess_trainer.models import HighlightKind

if TYPE_CHECKING:
    from chess_trainer.session import GameSession

logger = logging.getLogger(__name__)


class SelectionState(enum.Enum):
    IDLE = "idle"
    PIECE_SELECTED = "piece-selected"


class BoardInteraction:
    """Selection, highlighting and move submission for a GameSession."""

    def __init__(
        self,
        session: GameSession,
        orientation: chess.Color | None = None,
        feedback_seconds: float = SETTINGS.feedback_seconds,
    ) -> None:
        """Bind the state machine to a session.

        Args:
            session: Owner of the position and the move-acceptance contract.
            orientation: When set, only pieces of this color may be moved.
            feedback_seconds: How long a rejected target stays flagged.
        """
        self._session = session
        self.orientation = orientation
        self._feedback_seconds = feedback_seconds
        self._origin: chess.Square | None = None
        self._options: dict[chess.Square, HighlightKind] = {}
        self._marks: set[chess.Square] = set()
        self._generation = 0
        self._feedback_timer: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SelectionState:
        if self._origin is None:
            return SelectionState.IDLE
        return SelectionState.PIECE_SELECTED

    @property
    def origin(self) -> chess.Square | None:
        return self._origin

    @property
    def feedback_active(self) -> bool:
        return self._feedback_timer is not None

    def highlight_map(self) -> dict[chess.Square, HighlightKind]:
        """Current highlights; manual marks win over move hints."""
        highlights = dict(self._options)
        for square in self._marks:
            highlights[square] = HighlightKind.MANUAL_MARK
        return highlights

    def is_enabled(self) -> bool:
        """False while the opponent thinks, during warm-up, or after the game ends.

        A failed warm-up leaves the board usable without an opponent.
        """
        state = self._session.state
        if state.is_thinking:
            return False
        if not state.engine_ready and not state.engine_failed:
            return False
        return not rules.is_game_over(state.current_fen)

    def _may_move(self, color: chess.Color) -> bool:
        if color != self._session.state.side_to_move:
            return False
        return self.orientation is None or color == self.orientation

    def _destinations(self, origin: chess.Square) -> dict[chess.Square, HighlightKind]:
        return {
            move.to_square: HighlightKind.LEGAL_DESTINATION
            for move in rules.legal_moves(self._session.state.current_fen, origin)
        }

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _new_generation(self) -> None:
        self._generation += 1
        if self._feedback_timer is not None:
            self._feedback_timer.cancel()
            self._feedback_timer = None

    def _clear_selection(self) -> None:
        self._new_generation()
        self._origin = None
        self._options = {}

    def reset(self, orientation: chess.Color | None = None) -> None:
        """Drop every selection, mark and pending timer."""
        self._clear_selection()
        self._marks.clear()
        self.orientation = orientation

    def select_square(self, square: chess.Square) -> bool:
        """Select an origin square.

        Clicking the current origin again deselects it. Clicking another
        movable piece switches the origin. Empty squares and opponent
        pieces leave the state untouched.

        Returns:
            True if a piece is selected afterwards.
        """
        self._marks.clear()
        if not self.is_enabled():
            return False

        if square == self._origin:
            self._clear_selection()
            return False

        piece = rules.piece_at(self._session.state.current_fen, square)
        if piece is None or not self._may_move(piece.color):
            return self._origin is not None

        self._new_generation()
        self._origin = square
        self._options = self._destinations(square)
        return True

    # ------------------------------------------------------------------
    # Manual marks
    # ------------------------------------------------------------------

    def mark_square(self, square: chess.Square) -> None:
        self._marks.add(square)

    def unmark_square(self, square: chess.Square) -> None:
        self._marks.discard(square)

    def toggle_mark(self, square: chess.Square) -> None:
        if square in self._marks:
            self._marks.discard(square)
        else:
            self._marks.add(square)

    # ------------------------------------------------------------------
    # Move submission
    # ------------------------------------------------------------------

    def build_move(
        self,
        from_square: chess.Square,
        to_square: chess.Square,
        promotion: chess.PieceType | None = None,
    ) -> chess.Move:
        """Build a move, promoting to a queen when a pawn reaches its last rank."""
        if promotion is None and rules.needs_promotion(
            self._session.state.current_fen, from_square, to_square
        ):
            promotion = chess.QUEEN
        return chess.Move(from_square, to_square, promotion=promotion)

    def accept(self, move: chess.Move) -> bool:
        """Forward a move to the session and clear the board on success.

        This is the only way moves reach the session; the opponent
        scheduler uses it exactly like a human move.
        """
        try:
            self._session.apply_move(move)
        except IllegalMoveError as exc:
            logger.debug("Move rejected: %s", exc)
            return False
        self._clear_selection()
        self._session.position_changed()
        return True

    def _flash(self, square: chess.Square) -> None:
        """Mark a rejected target, then restore the origin's destinations."""
        self._new_generation()
        self._options = {square: HighlightKind.INVALID_ATTEMPT}
        loop = asyncio.get_running_loop()
        self._feedback_timer = loop.call_later(
            self._feedback_seconds, self._end_feedback, self._generation
        )

    def _end_feedback(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._feedback_timer = None
        if self._origin is None:
            self._options = {}
        else:
            self._options = self._destinations(self._origin)

    async def submit_move(self, to_square: chess.Square) -> bool:
        """Play the selected piece to `to_square`.

        On rejection the target flashes as an invalid attempt and the
        origin stays selected so the user can retry.
        """
        if self._origin is None:
            return False
        if not self.is_enabled():
            logger.debug("Submission ignored, board disabled")
            return False

        move = self.build_move(self._origin, to_square)
        if self.accept(move):
            return True
        self._flash(to_square)
        return False

    async def drag_move(
        self,
        from_square: chess.Square,
        to_square: chess.Square,
        piece: chess.Piece,
        promotion: chess.PieceType | None = None,
    ) -> bool:
        """Select and submit in one step. Never raises.

        Pieces of the wrong color are refused before the rules engine
        is consulted. A rejected drop flashes and returns to IDLE.
        """
        try:
            if not self.is_enabled() or not self._may_move(piece.color):
                return False
            self._marks.clear()
            self._clear_selection()
            move = self.build_move(from_square, to_square, promotion)
            if self.accept(move):
                return True
            self._flash(to_square)
            return False
        except Exception:
            logger.exception("Move error during drag %s-%s", from_square, to_square)
            return False

    async def click(self, square: chess.Square) -> bool:
        """Dispatch a click: select, deselect, switch origin, or submit.

        Returns:
            True if the click selected a piece or played a move.
        """
        if self._origin is None or square == self._origin:
            return self.select_square(square)
        piece = rules.piece_at(self._session.state.current_fen, square)
        if piece is not None and self._may_move(piece.color):
            return self.select_square(square)
        return await self.submit_move(square)
