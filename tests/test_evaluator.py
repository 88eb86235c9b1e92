"""Pytest tests for the heuristic evaluator.

Covers: material counting, pawn structure, hanging pieces, checks,
mate threats and critical-position detection over a move history.
"""

from __future__ import annotations

import chess
import pytest

from chess_trainer import evaluator
from chess_trainer.errors import AnalysisError
from chess_trainer.models import HistoryEntry

from conftest import make_history

_SCHOLARS_MATE = ["e2e4", "e7e5", "f1c4", "b8c6", "d1h5", "g8f6", "h5f7"]


class TestMaterial:

    def test_starting_position_is_level(self):
        result = evaluator.evaluate(chess.STARTING_FEN)
        assert result.material_balance == 0

    def test_white_up_a_rook(self):
        board = chess.Board("4k3/8/8/8/8/8/8/R3K3 w Q - 0 1")
        assert evaluator.material_balance(board) == 5

    def test_black_up_a_queen(self):
        board = chess.Board("3qk3/8/8/8/8/8/8/4K3 w - - 0 1")
        assert evaluator.material_balance(board) == -9

    def test_king_has_no_value(self):
        assert evaluator.piece_value(chess.KING) == 0
        assert evaluator.piece_value(chess.QUEEN) == 9

    def test_starting_position_is_quiet(self):
        result = evaluator.evaluate(chess.STARTING_FEN)
        assert result.threats == ()
        assert result.suggestions == ()
        assert result.critical_positions == ()


class TestPawnStructure:

    def test_doubled_pawns(self):
        board = chess.Board("4k3/8/8/8/8/4P3/4P3/4K3 w - - 0 1")
        assert evaluator.doubled_pawn_files(board, chess.WHITE) == ["e"]

    def test_isolated_pawns(self):
        board = chess.Board("4k3/8/8/8/8/8/P2P1PP1/4K3 w - - 0 1")
        isolated = evaluator.isolated_pawns(board, chess.WHITE)
        assert isolated == [chess.A2, chess.D2]

    def test_passed_pawn(self):
        board = chess.Board("4k3/p7/8/8/8/8/P6P/4K3 w - - 0 1")
        assert evaluator.passed_pawns(board, chess.WHITE) == [chess.H2]

    def test_weak_structure_suggestion(self):
        board = chess.Board("4k3/8/8/8/8/4P3/4P3/4K3 w - - 0 1")
        findings = evaluator.detect_weak_pawn_structure(board)
        assert any("doubled pawns on the e-file" in f for f in findings)


class TestThreats:

    def test_check_reported(self):
        result = evaluator.evaluate("4k3/8/8/8/8/8/4r3/4K3 w - - 0 1")
        assert "Your king is in check" in result.threats
        assert result.material_balance == -5

    def test_checkmate_reported(self):
        fen = "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"
        result = evaluator.evaluate(fen)
        assert "Your king has been checkmated" in result.threats

    def test_mate_threat(self):
        fen = "r1bqkbnr/pppp1ppp/2n5/4p2Q/2B1P3/8/PPPP1PPP/RNB1K1NR b KQkq - 3 3"
        result = evaluator.evaluate(fen)
        assert "Your opponent threatens mate with Qxf7#" in result.threats

    def test_hanging_enemy_piece(self):
        fen = "rnbqkb1r/pppppppp/8/4n3/3P4/8/PPP1PPPP/RNBQKBNR w KQkq - 1 3"
        result = evaluator.evaluate(fen)
        assert "The black knight on e5 can be won" in result.suggestions

    def test_hanging_own_piece(self):
        fen = "rnbqkb1r/pppppppp/8/4n3/3P4/8/PPP1PPPP/RNBQKBNR b KQkq - 0 3"
        result = evaluator.evaluate(fen)
        assert "Your knight on e5 is under attack" in result.threats

    def test_pawn_hanging_until_defended(self):
        board = chess.Board("4k3/8/8/3p4/4P3/8/8/4K3 b - - 0 1")
        assert evaluator.hanging_pieces(board, chess.BLACK) == [chess.D5]
        board = chess.Board("4k3/8/2p5/3p4/4P3/8/8/4K3 b - - 0 1")
        assert evaluator.hanging_pieces(board, chess.BLACK) == []

    def test_piece_attacked_only_by_king_and_defended(self):
        board = chess.Board("8/8/8/8/8/3n4/1n6/K6k w - - 0 1")
        assert chess.B2 not in evaluator.hanging_pieces(board, chess.BLACK)


class TestDevelopment:

    def test_skipped_early_in_game(self):
        board = chess.Board()
        assert evaluator.detect_undeveloped_pieces(board, ()) == []

    def test_reported_after_opening(self):
        history = make_history([
            "e2e4", "e7e5", "d2d4", "d7d5", "a2a3", "a7a6",
            "b2b3", "b7b6", "h2h3", "h7h6", "g2g3", "g7g6",
        ])
        board = chess.Board(history[-1].fen)
        findings = evaluator.detect_undeveloped_pieces(board, history)
        assert findings and "Focus on developing" in findings[0]

    def test_uncastled_king(self):
        history = make_history(["e2e4", "e7e5", "g1f3", "b8c6", "f1c4", "f8c5", "d2d3", "d7d6"])
        board = chess.Board(history[-1].fen)
        assert evaluator.detect_uncastled_king(board, history) == [
            "Consider castling to protect your king"
        ]


class TestCriticalPositions:

    def test_checkmate_is_critical(self):
        history = make_history(_SCHOLARS_MATE)
        critical = evaluator.find_critical_positions(history)
        assert [(c.move, c.description) for c in critical] == [
            ("Qxf7#", "White delivers checkmate"),
        ]

    def test_piece_capture_is_critical(self):
        history = make_history(["e2e4", "g8f6", "b1c3", "f6e4", "c3e4"])
        critical = evaluator.find_critical_positions(history)
        assert [c.description for c in critical] == ["White wins a knight"]

    def test_promotion_is_critical(self):
        fen = "4k3/P7/8/8/8/8/8/4K3 w - - 0 1"
        history = make_history(["a7a8q"], start_fen=fen)
        critical = evaluator.find_critical_positions(history, start_fen=fen)
        assert critical[0].description == "White promotes to a queen"

    def test_malformed_history_raises(self):
        bad = [HistoryEntry(uci="xx", san="??", fen="", from_square=0, to_square=0)]
        with pytest.raises(AnalysisError):
            evaluator.find_critical_positions(bad)

    def test_illegal_history_raises(self):
        bad = [HistoryEntry(uci="e2e5", san="e5", fen="", from_square=chess.E2, to_square=chess.E5)]
        with pytest.raises(AnalysisError):
            evaluator.evaluate(chess.STARTING_FEN, bad)

    def test_evaluate_reports_critical_positions(self):
        history = make_history(_SCHOLARS_MATE)
        result = evaluator.evaluate(history[-1].fen, history)
        assert len(result.critical_positions) == 1
        assert "Your king has been checkmated" in result.threats
