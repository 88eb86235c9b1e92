"""Error taxonomy for Chess Trainer.

Every error raised by the game-session core derives from
ChessTrainerError so front ends can catch the family at once.
"""

from __future__ import annotations


class ChessTrainerError(Exception):
    """Base class for all Chess Trainer errors."""


class IllegalMoveError(ChessTrainerError):
    """A move was rejected by shape checks or by the rules engine.

    Recovered locally as highlight feedback, never fatal.
    """

    def __init__(self, move: str, reason: str = "illegal move") -> None:
        super().__init__(f"{reason}: {move}")
        self.move = move
        self.reason = reason


class ConfigurationError(ChessTrainerError):
    """Difficulty or thinking time outside the allowed range."""


class EngineUnavailable(ChessTrainerError):
    """Analysis engine missing, crashed, or not ready in time."""


class AnalysisError(ChessTrainerError):
    """Position or move history could not be parsed or replayed."""
