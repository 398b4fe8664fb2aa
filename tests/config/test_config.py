"""Tests for config/config.py."""
import json

import pytest
from pydantic import ValidationError

from config.config import AppConfig, AttentionConfig, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("DISPATCH_CONFIG_FILE", "DISPATCH_LOG_LEVEL", "DISPATCH_CATALOG_PATH",
                "DISPATCH_REASONING_ENDPOINT", "DISPATCH_REASONING_MODEL", "DISPATCH_MAX_TURNS"):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_reference_values(self):
        config = AppConfig()

        assert config.attention.default_namespace_threshold == 0.6
        assert config.attention.default_tool_threshold == 0.5
        assert config.attention.threshold_step == 0.05
        assert config.decision.semantic_weight == 0.6
        assert config.decision.statistical_weight == 0.4
        assert config.orchestration.max_turns == 3
        assert config.embeddings.dimension == 384

    def test_default_threshold_depends_on_name(self):
        attention = AttentionConfig()

        assert attention.default_threshold_for("task") == 0.6
        assert attention.default_threshold_for("task.create") == 0.5


class TestLoadConfig:
    def test_without_file_uses_defaults(self):
        assert load_config() == AppConfig()

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"orchestration": {"max_turns": 5}, "log_level": "debug"}))

        config = load_config(str(path))

        assert config.orchestration.max_turns == 5
        assert config.log_level == "DEBUG"

    def test_config_file_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"reasoning": {"model": "local-model"}}))
        monkeypatch.setenv("DISPATCH_CONFIG_FILE", str(path))

        assert load_config().reasoning.model == "local-model"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"orchestration": {"max_turns": 5}}))
        monkeypatch.setenv("DISPATCH_MAX_TURNS", "7")
        monkeypatch.setenv("DISPATCH_REASONING_ENDPOINT", "http://localhost:11434/v1/chat/completions")

        config = load_config(str(path))

        assert config.orchestration.max_turns == 7
        assert config.reasoning.endpoint == "http://localhost:11434/v1/chat/completions"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.json"))

    @pytest.mark.parametrize("data", [
        {"orchestration": {"max_turns": 0}},
        {"log_level": "chatty"},
        {"attention": {"threshold_floor": 0.8, "threshold_ceiling": 0.2}},
        {"reasoning": {"timeout": -1}},
    ])
    def test_invalid_values_are_rejected(self, tmp_path, data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))

        with pytest.raises(ValidationError):
            load_config(str(path))
