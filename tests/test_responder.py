"""Tests for question classification and canned coach replies."""

from __future__ import annotations

import asyncio
import random
from unittest.mock import MagicMock

import chess
import pytest

from chess_trainer import evaluator
from chess_trainer.errors import AnalysisError, EngineUnavailable
from chess_trainer.models import HistoryEntry
from chess_trainer.responder import (
    PHASE_TEMPLATES,
    Intent,
    Phase,
    ResponseSelector,
    classify_phase,
    classify_question,
)

from conftest import make_history


async def _no_wait(seconds: float) -> None:
    return None


def _selector(**kwargs) -> ResponseSelector:
    kwargs.setdefault("rng", random.Random(7))
    return ResponseSelector(sleep=_no_wait, **kwargs)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassifyQuestion:

    @pytest.mark.parametrize("question", [
        "What is the best move?",
        "BEST MOVE please",
        "what should I do now",
    ])
    def test_best_move(self, question):
        assert classify_question(question) is Intent.BEST_MOVE

    def test_explain_needs_both_words(self):
        assert classify_question("Why was that so bad?") is Intent.EXPLAIN_LAST_MOVE
        assert classify_question("Why?") is Intent.SUMMARY

    def test_pawn_structure(self):
        assert classify_question("How is my pawn structure?") is Intent.PAWN_STRUCTURE
        assert classify_question("what about the pawns") is Intent.PAWN_STRUCTURE

    def test_tactics(self):
        assert classify_question("Can I attack?") is Intent.TACTICAL
        assert classify_question("Any tactical ideas") is Intent.TACTICAL

    def test_first_rule_wins(self):
        assert classify_question("why is the best move bad") is Intent.BEST_MOVE
        assert classify_question("why are pawns bad") is Intent.EXPLAIN_LAST_MOVE

    def test_default(self):
        assert classify_question("hello coach") is Intent.SUMMARY


class TestClassifyPhase:

    def test_keyword_wins(self):
        assert classify_phase("help with the opening", chess.Board("4k3/8/8/8/8/8/8/4K3 w - - 0 40")) is Phase.OPENING
        assert classify_phase("endgame tips", chess.Board()) is Phase.ENDGAME

    def test_start_position_is_opening(self):
        assert classify_phase("", chess.Board()) is Phase.OPENING

    def test_few_pieces_is_endgame(self):
        assert classify_phase("", chess.Board("4k3/pp6/8/8/8/8/PP6/R3K3 w - - 0 30")) is Phase.ENDGAME

    def test_full_board_late_is_middlegame(self):
        board = chess.Board()
        board.fullmove_number = 20
        assert classify_phase("", board) is Phase.MIDDLEGAME

    def test_no_board_defaults_to_middlegame(self):
        assert classify_phase("") is Phase.MIDDLEGAME


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------


class TestReplies:

    @pytest.mark.asyncio
    async def test_summary_uses_phase_template(self):
        result = evaluator.evaluate(chess.STARTING_FEN)
        reply = await _selector().respond("hello", result, ())
        lines = reply.split("\n")
        assert lines[0] == "Based on the current position:"
        assert lines[1] in PHASE_TEMPLATES[Phase.OPENING]
        assert "Material is level." in reply

    @pytest.mark.asyncio
    async def test_summary_is_reproducible_with_seed(self):
        result = evaluator.evaluate(chess.STARTING_FEN)
        first = await _selector(rng=random.Random(3)).respond("hi", result, ())
        second = await _selector(rng=random.Random(3)).respond("hi", result, ())
        assert first == second

    @pytest.mark.asyncio
    async def test_summary_mentions_key_moment(self):
        history = make_history(["e2e4", "g8f6", "b1c3", "f6e4", "c3e4"])
        result = evaluator.evaluate(history[-1].fen, history)
        reply = await _selector().respond("overview", result, history)
        assert "Key moment: Nxe4 (White wins a knight)." in reply
        assert "White is ahead by 2 points of material." in reply

    @pytest.mark.asyncio
    async def test_best_move_with_engine(self):
        analyst = MagicMock()
        analyst.evaluate_position.return_value = 35
        result = evaluator.evaluate(chess.STARTING_FEN)
        reply = await _selector(analyst=analyst).respond("What's the best move?", result, ())
        assert "White could consider" in reply
        assert "Engine evaluation: +0.35." in reply

    @pytest.mark.asyncio
    async def test_best_move_finds_mate(self):
        history = make_history(["e2e4", "e7e5", "f1c4", "b8c6", "d1h5", "g8f6"])
        result = evaluator.evaluate(history[-1].fen, history)
        reply = await _selector().respond("best move?", result, history)
        assert reply.startswith("White could consider Qxf7#.")

    @pytest.mark.asyncio
    async def test_best_move_without_engine(self):
        analyst = MagicMock()
        analyst.evaluate_position.side_effect = EngineUnavailable("gone")
        result = evaluator.evaluate(chess.STARTING_FEN)
        reply = await _selector(analyst=analyst).respond("best move", result, ())
        assert "Engine evaluation" not in reply

    @pytest.mark.asyncio
    async def test_explain_without_history(self):
        result = evaluator.evaluate(chess.STARTING_FEN)
        reply = await _selector().respond("why was that bad", result, ())
        assert reply.startswith("No moves have been played yet")

    @pytest.mark.asyncio
    async def test_explain_blunder(self):
        history = make_history(["e2e4", "e7e5", "f1c4", "b8c6", "d1h5", "a7a6"])
        result = evaluator.evaluate(history[-1].fen, history)
        reply = await _selector().respond("why is a6 bad?", result, history)
        assert "The last move was a6 by black." in reply
        assert "It allows mate with Qxf7#." in reply

    @pytest.mark.asyncio
    async def test_pawn_structure_reply(self):
        fen = "4k3/p7/8/8/8/4P3/4P3/4K3 w - - 0 1"
        result = evaluator.evaluate(fen, start_fen=fen)
        reply = await _selector().respond("my pawns?", result, (), start_fen=fen)
        assert "White: doubled pawns on e" in reply
        assert "Black: isolated pawns on a7; passed pawns on a7." in reply

    @pytest.mark.asyncio
    async def test_tactics_reply(self):
        fen = "rnbqkb1r/pppppppp/8/4n3/3P4/8/PPP1PPPP/RNBQKBNR w KQkq - 1 3"
        result = evaluator.evaluate(fen, start_fen=fen)
        reply = await _selector().respond("any attack?", result, (), start_fen=fen)
        assert "The knight on e5 can be attacked or won." in reply

    @pytest.mark.asyncio
    async def test_unreplayable_history_raises(self):
        bad = [HistoryEntry(uci="e2e5", san="e5", fen="", from_square=chess.E2, to_square=chess.E5)]
        result = evaluator.evaluate(chess.STARTING_FEN)
        with pytest.raises(AnalysisError):
            await _selector().respond("hello", result, bad)


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_second_question_refused_while_busy(self):
        gate = asyncio.Event()

        async def gated_sleep(seconds: float) -> None:
            await gate.wait()

        selector = ResponseSelector(rng=random.Random(0), sleep=gated_sleep)
        result = evaluator.evaluate(chess.STARTING_FEN)
        first = asyncio.ensure_future(selector.respond("hello", result, ()))
        await asyncio.sleep(0)

        assert selector.busy
        assert await selector.respond("again", result, ()) is None

        gate.set()
        assert (await first).startswith("Based on the current position:")
        assert not selector.busy
