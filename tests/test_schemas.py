"""Tests for configuration: validated deliberation schemas and the user config file."""

import json

import pytest

from quorum import config
from quorum.schemas import (
    AIConfig,
    ConfigurationError,
    DeliberationConfig,
    ExpertConfig,
    MetaModeratorConfig,
    QualityMonitorConfig,
)


def _experts(*ids):
    return tuple(ExpertConfig(id=i, name=i.upper()) for i in ids)


class TestDeliberationConfig:

    def test_defaults(self):
        cfg = DeliberationConfig.create(id="d", topic="t", experts=_experts("a"))

        assert cfg.max_rounds == 5
        assert cfg.consensus_threshold == 70
        assert cfg.consensus_target == pytest.approx(0.7)
        assert cfg.parallel_experts is False
        assert cfg.quality_monitor is None
        assert cfg.meta_moderator is None

    @pytest.mark.parametrize("field,value", [
        ("max_rounds", 0),
        ("max_rounds", 21),
        ("consensus_threshold", -0.1),
        ("consensus_threshold", 100.5),
        ("topic", ""),
        ("id", ""),
    ])
    def test_rejects_out_of_range(self, field, value):
        data = {"id": "d", "topic": "t", "experts": _experts("a"), field: value}
        with pytest.raises(ConfigurationError) as exc_info:
            DeliberationConfig.create(**data)
        assert field in str(exc_info.value)

    def test_bounds_are_inclusive(self):
        cfg = DeliberationConfig.create(
            id="d", topic="t", experts=_experts("a"), max_rounds=20, consensus_threshold=100
        )
        assert cfg.max_rounds == 20

    def test_empty_panel_rejected(self):
        with pytest.raises(ConfigurationError, match="must not be empty"):
            DeliberationConfig.create(id="d", topic="t", experts=())

    def test_duplicate_expert_ids_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicate expert ids: a"):
            DeliberationConfig.create(id="d", topic="t", experts=_experts("a", "b", "a"))

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_experts_accept_dicts(self):
        cfg = DeliberationConfig.create(
            id="d", topic="t", experts=[{"id": "a", "name": "A", "role": "critic"}]
        )
        assert cfg.experts[0].role == "critic"
        assert cfg.experts[0].ai_config.model == config.DEFAULT_EXPERT_MODEL

    def test_is_frozen(self):
        cfg = DeliberationConfig.create(id="d", topic="t", experts=_experts("a"))
        with pytest.raises(Exception):
            cfg.max_rounds = 3


class TestComponentConfigs:

    def test_quality_monitor_defaults(self):
        cfg = QualityMonitorConfig()

        assert cfg.enabled is True
        assert cfg.min_confidence_threshold == 0.5
        assert cfg.coherence_threshold == 0.6
        assert cfg.relevance_threshold == 0.7
        assert cfg.ai_config.temperature == 0.2

    def test_meta_moderator_defaults(self):
        cfg = MetaModeratorConfig()

        assert cfg.intervention_threshold == 0.7
        assert cfg.summary_style == "detailed"

    def test_summary_style_is_restricted(self):
        with pytest.raises(ValueError):
            MetaModeratorConfig(summary_style="verbose")

    @pytest.mark.parametrize("kwargs", [
        {"temperature": -0.1},
        {"temperature": 2.5},
        {"max_tokens": 0},
    ])
    def test_ai_config_ranges(self, kwargs):
        with pytest.raises(ValueError):
            AIConfig(model="m", **kwargs)


@pytest.fixture
def user_config_file(tmp_path, monkeypatch):
    path = tmp_path / "user_config.json"
    monkeypatch.setattr(config, "USER_CONFIG_FILE", str(path))
    return path


class TestUserConfig:

    def test_missing_file_gives_defaults(self, user_config_file):
        assert config.load_user_config() == {}
        assert config.get_expert_panel() is None
        assert config.get_moderator_model() == config.DEFAULT_MODERATOR_MODEL
        assert config.get_quality_model() == config.DEFAULT_QUALITY_MODEL

    def test_unreadable_file_is_ignored(self, user_config_file):
        user_config_file.write_text("{not json")
        assert config.load_user_config() == {}

    def test_update_panel_config_persists(self, user_config_file):
        panel = [{"id": "x", "name": "X"}]

        config.update_panel_config(experts=panel, moderator_model="m/mod")

        assert json.loads(user_config_file.read_text())["experts"] == panel
        assert config.get_expert_panel() == panel
        assert config.get_moderator_model() == "m/mod"
        assert config.get_quality_model() == config.DEFAULT_QUALITY_MODEL

    def test_update_keeps_unspecified_fields(self, user_config_file):
        config.update_panel_config(quality_model="m/q")
        config.update_panel_config(moderator_model="m/mod")

        assert config.get_quality_model() == "m/q"

    def test_reload_config_reads_environment(self, user_config_file, monkeypatch):
        monkeypatch.setattr(config, "load_dotenv", lambda **kwargs: None)
        monkeypatch.setattr(config, "OPENROUTER_API_KEY", config.OPENROUTER_API_KEY)
        monkeypatch.setattr(config, "OPENROUTER_API_URL", config.OPENROUTER_API_URL)
        monkeypatch.setenv("OPENROUTER_API_KEY", "reloaded-key")

        status = config.reload_config()

        assert config.OPENROUTER_API_KEY == "reloaded-key"
        assert status["status"] == "reloaded"
        assert status["custom_panel"] is False
