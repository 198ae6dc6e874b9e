"""Tests for the configuration layer."""

from pathlib import Path

import pytest

from dispatch_core.config import (
    DispatchCoreConfig,
    DispatcherConfig,
    ModerationConfig,
    load_config,
)


class TestDispatcherConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DISPATCH_WORKER_COUNT", raising=False)
        monkeypatch.delenv("DISPATCH_RESULTS_PATH", raising=False)
        monkeypatch.delenv("DISPATCH_CACHE_MAX_SIZE", raising=False)

        config = DispatcherConfig()

        assert config.worker_count == 1
        assert config.poll_interval_seconds == 0.1
        assert config.cache_max_size == 1000
        assert config.results_path is None
        config.validate()

    def test_timeouts_per_capability(self):
        config = DispatcherConfig()

        assert config.timeout_for("image_generation") == 30.0
        assert config.timeout_for("content_moderation") == 5.0
        assert config.timeout_for("voice_recognition") == 10.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"poll_interval_seconds": 0.5},
            {"poll_interval_seconds": 0},
            {"worker_count": 0},
            {"moderation_timeout_seconds": -1},
        ],
    )
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            DispatcherConfig(**overrides).validate()

    def test_from_dict_coerces_strings(self):
        config = DispatcherConfig.from_dict({
            "worker_count": "3",
            "combine_moderation": "false",
            "poll_interval_seconds": "0.05",
            "results_path": "/tmp/results.jsonl",
            "not_a_field": 1,
        })

        assert config.worker_count == 3
        assert config.combine_moderation is False
        assert config.poll_interval_seconds == 0.05
        assert config.results_path == Path("/tmp/results.jsonl")

    def test_env_interpolation(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_TEST_WORKERS", "4")
        monkeypatch.delenv("DISPATCH_TEST_MISSING", raising=False)

        config = DispatcherConfig.from_dict({
            "worker_count": "${DISPATCH_TEST_WORKERS}",
            "cache_max_size": "${DISPATCH_TEST_MISSING:-250}",
        })

        assert config.worker_count == 4
        assert config.cache_max_size == 250

    def test_missing_required_variable(self, monkeypatch):
        monkeypatch.delenv("DISPATCH_TEST_MISSING", raising=False)

        with pytest.raises(ValueError):
            DispatcherConfig.from_dict({"worker_count": "${DISPATCH_TEST_MISSING}"})

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_WORKER_COUNT", "2")
        monkeypatch.setenv("DISPATCH_ENHANCE_PROMPTS", "no")

        config = DispatcherConfig.from_env()

        assert config.worker_count == 2
        assert config.enhance_prompts is False

    def test_merge(self):
        config = ModerationConfig().merge({"nsfw_threshold": "0.5"})

        assert config.nsfw_threshold == 0.5
        assert config.batch_max_concurrent == 5


class TestLoadConfig:

    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "dispatch.yaml"
        path.write_text(
            "dispatcher:\n"
            "  worker_count: 2\n"
            "  cache_max_size: 10\n"
            "moderation:\n"
            "  nsfw_threshold: 0.6\n"
            "voice:\n"
            "  vad_threshold: 0.02\n"
            "api:\n"
            "  port: 9000\n"
            "log_level: DEBUG\n"
        )

        config = load_config(path)

        assert isinstance(config, DispatchCoreConfig)
        assert config.dispatcher.worker_count == 2
        assert config.dispatcher.cache_max_size == 10
        assert config.moderation.nsfw_threshold == 0.6
        assert config.voice.vad_threshold == 0.02
        assert config.api.port == 9000
        assert config.log_level == "DEBUG"

    def test_invalid_yaml_values_rejected(self, tmp_path):
        path = tmp_path / "dispatch.yaml"
        path.write_text("dispatcher:\n  poll_interval_seconds: 1.0\n")

        with pytest.raises(ValueError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_each_call_is_independent(self):
        first = load_config()
        second = load_config()

        assert first is not second
        assert first.dispatcher is not second.dispatcher
