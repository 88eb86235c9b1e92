"""Environment-driven settings for Chess Trainer.

Values are read once from CHESS_TRAINER_* environment variables.
Malformed values fall back to the defaults so a bad shell export
never prevents the trainer from starting.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable

MIN_THINKING_TIME = 1.0
MAX_THINKING_TIME = 10.0


def _get(name: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    """Read an environment variable, casting it or returning the default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Tuning knobs for the game session core."""

    stockfish_path: str | None = None
    thinking_time_seconds: float = 2.0
    difficulty_index: int = 1
    feedback_seconds: float = 0.3
    response_latency_seconds: float = 1.5
    max_engine_deferrals: int = 5
    deferral_interval_seconds: float = 0.5
    analysis_depth: int = 12
    log_level: str = "WARNING"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    defaults = Settings()
    return Settings(
        stockfish_path=_get("CHESS_TRAINER_STOCKFISH", defaults.stockfish_path),
        thinking_time_seconds=_get(
            "CHESS_TRAINER_THINKING_TIME", defaults.thinking_time_seconds, float
        ),
        difficulty_index=_get(
            "CHESS_TRAINER_DIFFICULTY", defaults.difficulty_index, int
        ),
        feedback_seconds=_get(
            "CHESS_TRAINER_FEEDBACK_MS", defaults.feedback_seconds * 1000, float
        ) / 1000.0,
        response_latency_seconds=_get(
            "CHESS_TRAINER_RESPONSE_LATENCY", defaults.response_latency_seconds, float
        ),
        max_engine_deferrals=_get(
            "CHESS_TRAINER_MAX_DEFERRALS", defaults.max_engine_deferrals, int
        ),
        deferral_interval_seconds=_get(
            "CHESS_TRAINER_DEFERRAL_INTERVAL", defaults.deferral_interval_seconds, float
        ),
        analysis_depth=_get(
            "CHESS_TRAINER_ANALYSIS_DEPTH", defaults.analysis_depth, int
        ),
        log_level=_get("CHESS_TRAINER_LOG_LEVEL", defaults.log_level).upper(),
    )


SETTINGS = load_settings()
