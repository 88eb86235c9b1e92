"""Heuristic position evaluation for the coach.

Scores material and runs a set of independent detectors for threats,
suggestions and critical moments. Every detector is a plain function
over a board (and, for critical moments, the move history) returning
a possibly empty list. Nothing here talks to Stockfish.
"""

from __future__ import annotations

from typing import Callable, Sequence

import chess

from chess_trainer import rules
from chess_trainer.errors import AnalysisError
from chess_trainer.models import CriticalPosition, EvaluationResult, HistoryEntry

# Canonical material values; the king carries no material weight
_PIECE_VALUES: dict[int, int] = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}

# Plies after which pieces left at home count as undeveloped
_DEVELOPMENT_PLIES = 12

# Total non-pawn material (both sides) at or below which it is an endgame
ENDGAME_MATERIAL = 20

_MINOR_HOME_SQUARES = {
    chess.WHITE: (chess.B1, chess.G1, chess.C1, chess.F1),
    chess.BLACK: (chess.B8, chess.G8, chess.C8, chess.F8),
}


def piece_value(piece_type: int) -> int:
    """Return the standard piece value for a piece type."""
    return _PIECE_VALUES.get(piece_type, 0)


def color_name(color: chess.Color) -> str:
    return "white" if color == chess.WHITE else "black"


def _describe(piece: chess.Piece, square: chess.Square) -> str:
    return f"{chess.piece_name(piece.piece_type)} on {chess.square_name(square)}"


def material_balance(board: chess.Board) -> int:
    """Sum of piece values, positive for White and negative for Black."""
    total = 0
    for piece in board.piece_map().values():
        value = piece_value(piece.piece_type)
        total += value if piece.color == chess.WHITE else -value
    return total


def non_pawn_material(board: chess.Board) -> int:
    """Knights, bishops, rooks and queens of both sides."""
    return sum(
        piece_value(piece.piece_type)
        for piece in board.piece_map().values()
        if piece.piece_type not in (chess.PAWN, chess.KING)
    )


# ---------------------------------------------------------------------------
# Pawn structure
# ---------------------------------------------------------------------------


def doubled_pawn_files(board: chess.Board, color: chess.Color) -> list[str]:
    """File letters holding two or more pawns of `color`."""
    files: list[str] = []
    pawns = board.pieces(chess.PAWN, color)
    for file in range(8):
        if len(pawns & chess.BB_FILES[file]) >= 2:
            files.append(chess.FILE_NAMES[file])
    return files


def isolated_pawns(board: chess.Board, color: chess.Color) -> list[chess.Square]:
    """Pawns of `color` with no friendly pawn on an adjacent file."""
    pawns = board.pieces(chess.PAWN, color)
    isolated: list[chess.Square] = []
    for square in pawns:
        file = chess.square_file(square)
        neighbours = 0
        for adjacent in (file - 1, file + 1):
            if 0 <= adjacent <= 7:
                neighbours |= chess.BB_FILES[adjacent]
        if not pawns & neighbours:
            isolated.append(square)
    return isolated


def passed_pawns(board: chess.Board, color: chess.Color) -> list[chess.Square]:
    """Pawns of `color` with no enemy pawn ahead on the same or adjacent files."""
    enemy_pawns = board.pieces(chess.PAWN, not color)
    passed: list[chess.Square] = []
    for square in board.pieces(chess.PAWN, color):
        file = chess.square_file(square)
        rank = chess.square_rank(square)
        blocked = False
        for enemy in enemy_pawns:
            if abs(chess.square_file(enemy) - file) > 1:
                continue
            enemy_rank = chess.square_rank(enemy)
            if (color == chess.WHITE and enemy_rank > rank) or (
                color == chess.BLACK and enemy_rank < rank
            ):
                blocked = True
                break
        if not blocked:
            passed.append(square)
    return passed


def detect_weak_pawn_structure(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    """Doubled and isolated pawns of the side to move."""
    color = board.turn
    findings: list[str] = []
    doubled = doubled_pawn_files(board, color)
    if doubled:
        findings.append(
            f"Consider strengthening your pawn structure: doubled pawns on the "
            f"{', '.join(doubled)}-file"
        )
    isolated = isolated_pawns(board, color)
    if isolated:
        names = ", ".join(chess.square_name(sq) for sq in isolated)
        findings.append(
            f"Consider strengthening your pawn structure: isolated pawns on {names}"
        )
    return findings


# ---------------------------------------------------------------------------
# Development and king safety
# ---------------------------------------------------------------------------


def undeveloped_pieces(board: chess.Board, color: chess.Color) -> list[chess.Square]:
    """Minor pieces of `color` still on their starting squares."""
    home: list[chess.Square] = []
    for square in _MINOR_HOME_SQUARES[color]:
        piece = board.piece_at(square)
        if (
            piece is not None
            and piece.color == color
            and piece.piece_type in (chess.KNIGHT, chess.BISHOP)
        ):
            home.append(square)
    return home


def detect_undeveloped_pieces(
    board: chess.Board,
    history: Sequence[HistoryEntry] = (),
) -> list[str]:
    """Two or more minor pieces still at home once the opening is over."""
    if len(history) < _DEVELOPMENT_PLIES and board.fullmove_number <= _DEVELOPMENT_PLIES // 2:
        return []
    home = undeveloped_pieces(board, board.turn)
    if len(home) < 2:
        return []
    return [
        f"Focus on developing your remaining pieces ({len(home)} minor pieces "
        "still on their starting squares)"
    ]


def detect_uncastled_king(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    """King still in the centre with castling available after the early moves."""
    if len(history) < 8 and board.fullmove_number <= 4:
        return []
    color = board.turn
    if board.has_castling_rights(color) and board.king(color) in (chess.E1, chess.E8):
        return ["Consider castling to protect your king"]
    return []


# ---------------------------------------------------------------------------
# Hanging pieces and threats
# ---------------------------------------------------------------------------


def _attacker_value(piece_type: int | None) -> int:
    # A king can only capture undefended pieces
    return 100 if piece_type == chess.KING else piece_value(piece_type or 0)


def hanging_pieces(board: chess.Board, color: chess.Color) -> list[chess.Square]:
    """Pieces of `color` attacked and either undefended or attacked by a cheaper piece."""
    hanging: list[chess.Square] = []
    for square, piece in board.piece_map().items():
        if piece.color != color or piece.piece_type == chess.KING:
            continue
        attackers = board.attackers(not color, square)
        if not attackers:
            continue
        defenders = board.attackers(color, square)
        cheapest = min(_attacker_value(board.piece_type_at(sq)) for sq in attackers)
        if not defenders or cheapest < piece_value(piece.piece_type):
            hanging.append(square)
    return hanging


def mate_in_one(board: chess.Board) -> list[chess.Move]:
    """Moves for the side to move that deliver immediate checkmate."""
    mates: list[chess.Move] = []
    for move in board.legal_moves:
        board.push(move)
        try:
            if board.is_checkmate():
                mates.append(move)
        finally:
            board.pop()
    return mates


def detect_check(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    if board.is_checkmate():
        return ["Your king has been checkmated"]
    if board.is_check():
        return ["Your king is in check"]
    return []


def detect_hanging_own_pieces(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    return [
        f"Your {_describe(board.piece_at(sq), sq)} is under attack"
        for sq in hanging_pieces(board, board.turn)
    ]


def detect_mate_threat(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    """Opponent mate-in-one if the side to move passed."""
    if board.is_check():
        return []
    passed = board.copy(stack=False)
    passed.push(chess.Move.null())
    mates = mate_in_one(passed)
    if not mates:
        return []
    return [f"Your opponent threatens mate with {passed.san(mates[0])}"]


def detect_hanging_enemy_pieces(board: chess.Board, history: Sequence[HistoryEntry] = ()) -> list[str]:
    return [
        f"The {color_name(not board.turn)} {_describe(board.piece_at(sq), sq)} can be won"
        for sq in hanging_pieces(board, not board.turn)
    ]


# ---------------------------------------------------------------------------
# Critical positions
# ---------------------------------------------------------------------------


def _is_fork(board_after: chess.Board, to_square: chess.Square) -> bool:
    """The moved piece attacks two or more enemy pieces worth at least a knight."""
    moved = board_after.piece_at(to_square)
    if moved is None:
        return False
    targets = 0
    for sq in board_after.attacks(to_square):
        victim = board_after.piece_at(sq)
        if victim is None or victim.color == moved.color:
            continue
        if victim.piece_type == chess.KING or piece_value(victim.piece_type) >= 3:
            targets += 1
    return targets >= 2


def describe_move(board: chess.Board, move: chess.Move) -> str | None:
    """Describe why a move was a turning point, or None for a quiet move.

    Args:
        board: Position BEFORE the move. Not modified.
        move: A legal move in that position.
    """
    mover = color_name(board.turn).capitalize()
    captured = board.piece_at(move.to_square)
    if board.is_en_passant(move):
        captured = chess.Piece(chess.PAWN, not board.turn)

    after = board.copy(stack=False)
    after.push(move)

    if after.is_checkmate():
        return f"{mover} delivers checkmate"
    if move.promotion is not None:
        return f"{mover} promotes to a {chess.piece_name(move.promotion)}"
    if _is_fork(after, move.to_square):
        return f"{mover} forks two pieces"
    if captured is not None and piece_value(captured.piece_type) >= 3:
        return f"{mover} wins a {chess.piece_name(captured.piece_type)}"
    if after.is_check():
        return f"{mover} gives check"
    return None


def find_critical_positions(
    history: Sequence[HistoryEntry],
    start_fen: str = chess.STARTING_FEN,
) -> list[CriticalPosition]:
    """Turning points in the history, in play order."""
    critical: list[CriticalPosition] = []
    board = rules.parse_position(start_fen)
    for entry in history:
        try:
            move = entry.move
        except ValueError as exc:
            raise AnalysisError(f"Malformed move in history: {entry.uci}") from exc
        if move not in board.legal_moves:
            raise AnalysisError(f"History does not replay at {entry.san}")
        description = describe_move(board, move)
        if description is not None:
            critical.append(CriticalPosition(move=entry.san, description=description))
        board.push(move)
    return critical


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

Detector = Callable[[chess.Board, Sequence[HistoryEntry]], list[str]]

SUGGESTION_DETECTORS: tuple[Detector, ...] = (
    detect_weak_pawn_structure,
    detect_undeveloped_pieces,
    detect_uncastled_king,
    detect_hanging_enemy_pieces,
)

THREAT_DETECTORS: tuple[Detector, ...] = (
    detect_check,
    detect_hanging_own_pieces,
    detect_mate_threat,
)


def evaluate(
    fen: str,
    history: Sequence[HistoryEntry] = (),
    start_fen: str = chess.STARTING_FEN,
) -> EvaluationResult:
    """Evaluate a position with every registered detector.

    Args:
        fen: Position to evaluate.
        history: Moves that led to the position, oldest first.
        start_fen: Position the history starts from.

    Returns:
        EvaluationResult; lists are empty when a detector finds nothing.

    Raises:
        AnalysisError: If the FEN or the history cannot be parsed.
    """
    board = rules.parse_position(fen)

    suggestions: list[str] = []
    for detector in SUGGESTION_DETECTORS:
        suggestions.extend(detector(board.copy(stack=False), history))

    threats: list[str] = []
    for detector in THREAT_DETECTORS:
        threats.extend(detector(board.copy(stack=False), history))

    return EvaluationResult(
        material_balance=material_balance(board),
        threats=tuple(threats),
        suggestions=tuple(suggestions),
        critical_positions=tuple(find_critical_positions(history, start_fen)),
    )
