"""Tests for configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from atomchat.models.config import (
    DEFAULT_SYSTEM_PROMPT,
    AtomchatConfig,
    ContextConfig,
    ModelConfig,
    StoreConfig,
)


class TestDefaults:
    def test_default_values(self):
        config = AtomchatConfig.default()
        assert config.model.model == "gpt-4o"
        assert config.model.temperature == 0.7
        assert config.model.max_tokens == 500
        assert config.model.timeout_secs == 300.0
        assert config.context.max_history_turns == 20
        assert config.context.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert config.tally.points_per_correct == 1_000
        assert config.store.delete_batch_size == 500
        assert config.logging.format == "json"


class TestBounds:
    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ModelConfig(timeout_secs=0)

    def test_temperature_range(self):
        with pytest.raises(ValidationError):
            ModelConfig(temperature=3.0)

    def test_history_window_non_negative(self):
        with pytest.raises(ValidationError):
            ContextConfig(max_history_turns=-1)

    def test_delete_batch_size_minimum(self):
        with pytest.raises(ValidationError):
            StoreConfig(delete_batch_size=0)


class TestFromEnv:
    def test_empty_environment_gives_defaults(self):
        assert AtomchatConfig.from_env({}) == AtomchatConfig()

    def test_reads_variables(self):
        config = AtomchatConfig.from_env(
            {
                "ATOMCHAT_MODEL": "openai/gpt-4o-mini",
                "ATOMCHAT_MODEL_TIMEOUT": "45",
                "OPENAI_API_KEY": "sk-test",
                "ATOMCHAT_DB_PATH": "/tmp/chat.db",
                "ATOMCHAT_ANSWER_KEY": "/etc/key.csv",
                "ATOMCHAT_LOG_LEVEL": "DEBUG",
                "ATOMCHAT_LOG_FORMAT": "console",
            }
        )
        assert config.model.model == "openai/gpt-4o-mini"
        assert config.model.timeout_secs == 45.0
        assert config.model.api_key == "sk-test"
        assert config.store.db_path == "/tmp/chat.db"
        assert config.tally.answer_key_path == "/etc/key.csv"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "console"

    def test_invalid_value_raises(self):
        with pytest.raises(ValidationError):
            AtomchatConfig.from_env({"ATOMCHAT_MODEL_TIMEOUT": "-1"})

    def test_defaults_to_process_environment(self, monkeypatch):
        monkeypatch.setenv("ATOMCHAT_MODEL", "from-process-env")
        assert AtomchatConfig.from_env().model.model == "from-process-env"
