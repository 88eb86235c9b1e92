"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from chess_trainer.config import Settings, load_settings


class TestLoadSettings:

    def test_defaults(self, monkeypatch):
        for name in (
            "CHESS_TRAINER_STOCKFISH",
            "CHESS_TRAINER_THINKING_TIME",
            "CHESS_TRAINER_DIFFICULTY",
            "CHESS_TRAINER_FEEDBACK_MS",
            "CHESS_TRAINER_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = load_settings()
        assert settings.stockfish_path is None
        assert settings.thinking_time_seconds == 2.0
        assert settings.difficulty_index == 1
        assert settings.feedback_seconds == pytest.approx(0.3)
        assert settings.log_level == "WARNING"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CHESS_TRAINER_STOCKFISH", "/opt/sf")
        monkeypatch.setenv("CHESS_TRAINER_THINKING_TIME", "5")
        monkeypatch.setenv("CHESS_TRAINER_DIFFICULTY", "6")
        monkeypatch.setenv("CHESS_TRAINER_FEEDBACK_MS", "500")
        monkeypatch.setenv("CHESS_TRAINER_LOG_LEVEL", "debug")
        settings = load_settings()
        assert settings.stockfish_path == "/opt/sf"
        assert settings.thinking_time_seconds == 5.0
        assert settings.difficulty_index == 6
        assert settings.feedback_seconds == pytest.approx(0.5)
        assert settings.log_level == "DEBUG"

    def test_malformed_values_fall_back(self, monkeypatch):
        monkeypatch.setenv("CHESS_TRAINER_DIFFICULTY", "hard")
        monkeypatch.setenv("CHESS_TRAINER_RESPONSE_LATENCY", "soon")
        monkeypatch.setenv("CHESS_TRAINER_MAX_DEFERRALS", "   ")
        settings = load_settings()
        defaults = Settings()
        assert settings.difficulty_index == defaults.difficulty_index
        assert settings.response_latency_seconds == defaults.response_latency_seconds
        assert settings.max_engine_deferrals == defaults.max_engine_deferrals

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            Settings().difficulty_index = 3
