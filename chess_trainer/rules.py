"""Rules collaborator over python-chess.

Positions are FEN strings so every value handed around is immutable;
each call parses a fresh chess.Board and never keeps it.
"""

from __future__ import annotations

import chess

from chess_trainer.errors import AnalysisError, IllegalMoveError


def parse_position(fen: str) -> chess.Board:
    """Parse a FEN into a board.

    Raises:
        AnalysisError: If the FEN is malformed or describes an invalid position.
    """
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise AnalysisError(f"Invalid FEN: {exc}") from exc
    if not board.is_valid():
        raise AnalysisError(f"Invalid FEN position: {fen}")
    return board


def legal_moves(fen: str, square: chess.Square | None = None) -> list[chess.Move]:
    """Legal moves in the position, optionally only those leaving `square`."""
    board = parse_position(fen)
    if square is None:
        return list(board.legal_moves)
    return list(board.generate_legal_moves(from_mask=chess.BB_SQUARES[square]))


def apply_move(fen: str, move: chess.Move) -> str:
    """Return the FEN after playing `move`.

    Raises:
        IllegalMoveError: If the move is not legal in the position.
    """
    board = parse_position(fen)
    if move not in board.legal_moves:
        raise IllegalMoveError(move.uci())
    board.push(move)
    return board.fen()


def to_notation(fen: str, move: chess.Move) -> str:
    """SAN for a legal move in the position."""
    return parse_position(fen).san(move)


def side_to_move(fen: str) -> chess.Color:
    return parse_position(fen).turn


def piece_at(fen: str, square: chess.Square) -> chess.Piece | None:
    return parse_position(fen).piece_at(square)


def is_check(fen: str) -> bool:
    return parse_position(fen).is_check()


def is_checkmate(fen: str) -> bool:
    return parse_position(fen).is_checkmate()


def is_draw(fen: str) -> bool:
    """Stalemate, insufficient material, or a claimable/automatic draw."""
    board = parse_position(fen)
    return (
        board.is_stalemate()
        or board.is_insufficient_material()
        or board.is_seventyfive_moves()
        or board.can_claim_fifty_moves()
    )


def is_game_over(fen: str) -> bool:
    return is_checkmate(fen) or is_draw(fen)


def needs_promotion(fen: str, from_square: chess.Square, to_square: chess.Square) -> bool:
    """True when a pawn on `from_square` would land on its last rank."""
    piece = piece_at(fen, from_square)
    if piece is None or piece.piece_type != chess.PAWN:
        return False
    last_rank = 7 if piece.color == chess.WHITE else 0
    return chess.square_rank(to_square) == last_rank


def replay(start_fen: str, ucis: list[str] | tuple[str, ...]) -> chess.Board:
    """Replay UCI moves from `start_fen`, returning the final board.

    Raises:
        AnalysisError: If any move is malformed or illegal.
    """
    board = parse_position(start_fen)
    for ply, uci in enumerate(ucis, 1):
        try:
            move = chess.Move.from_uci(uci)
        except (ValueError, chess.InvalidMoveError) as exc:
            raise AnalysisError(f"Malformed move at ply {ply}: {uci}") from exc
        if move not in board.legal_moves:
            raise AnalysisError(f"Illegal move at ply {ply}: {uci}")
        board.push(move)
    return board
