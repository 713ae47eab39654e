"""Tests for configuration loading, validation and serialization."""

import os

import yaml

from streamchat.config import (
    CONFIG_FIELDS,
    DEFAULT_TOKEN_CEILINGS,
    Config,
    _validate_bool,
    _validate_enum,
    _validate_int_range,
    _validate_url,
    validate_config_value,
)


class TestConfigLoad:
    """Config.load() from YAML files and the environment."""

    def test_load_from_yaml(self, config_yaml_file, tmp_dir, clean_env):
        config = Config.load(str(tmp_dir))
        assert config.api_base == "http://localhost:9000/v1"
        assert config.model == "test-model"
        assert config.reasoning_level == "high"
        assert config.max_iterations == 4
        assert config.context_window == 6
        assert config.language == "es"
        assert config.search_max_results == 3
        assert config._config_source == str(config_yaml_file)

    def test_token_ceilings_merge_with_defaults(self, config_yaml_file, tmp_dir, clean_env):
        config = Config.load(str(tmp_dir))
        assert config.max_tokens_for("high") == 16000
        assert config.max_tokens_for("low") == DEFAULT_TOKEN_CEILINGS["low"]
        assert config.max_tokens_for() == 16000

    def test_env_overrides_file(self, config_yaml_file, tmp_dir, clean_env, monkeypatch):
        monkeypatch.setenv("STREAMCHAT_MODEL", "env-model")
        monkeypatch.setenv("STREAMCHAT_REASONING", "instant")
        monkeypatch.setenv("STREAMCHAT_API_BASE", "http://gpu-box:8000/v1/")
        monkeypatch.setenv("SERPAPI_KEY", "serp")
        config = Config.load(str(tmp_dir))
        assert config.model == "env-model"
        assert config.reasoning_level == "instant"
        assert config.chat_url == "http://gpu-box:8000/v1/chat/completions"
        assert config.serpapi_key == "serp"

    def test_dotenv_file(self, tmp_dir, clean_env):
        (tmp_dir / ".env").write_text("STREAMCHAT_MODEL=dotenv-model\n")
        (tmp_dir / ".streamchat.yml").write_text("model: file-model\n")
        try:
            config = Config.load(str(tmp_dir))
        finally:
            os.environ.pop("STREAMCHAT_MODEL", None)
        assert config.model == "dotenv-model"

    def test_invalid_values_fall_back(self, tmp_dir, clean_env):
        (tmp_dir / ".streamchat.yml").write_text(yaml.dump({
            "reasoning-level": "extreme",
            "language": "klingon",
            "max-iterations": "lots",
            "context-window": 0,
        }))
        config = Config.load(str(tmp_dir))
        assert config.reasoning_level == "medium"
        assert config.language == "en"
        assert config.max_iterations == 5
        assert config.context_window == 1

    def test_save_round_trip(self, tmp_dir, clean_env):
        config = Config(model="saved-model", reasoning_level="low", serpapi_key="k")
        target = tmp_dir / ".streamchat.yml"
        config.save(str(target))
        loaded = Config.load(str(tmp_dir))
        assert loaded.model == "saved-model"
        assert loaded.reasoning_level == "low"
        assert loaded.serpapi_key == "k"


class TestDerivedValues:

    def test_api_key_from_named_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "from-env")
        assert Config(api_key_env="MY_KEY").resolve_api_key() == "from-env"
        assert Config(api_key="direct", api_key_env="MY_KEY").resolve_api_key() == "direct"
        assert Config().resolve_api_key() is None

    def test_summary_hides_key(self):
        summary = Config(api_key="secret").summary()
        assert summary["api_key"] == "set"
        assert "secret" not in str(summary.values())


class TestValidation:

    def test_int_range(self):
        assert _validate_int_range("7", 1, 10) == (True, 7, "")
        ok, coerced, _ = _validate_int_range(50, 1, 10)
        assert not ok and coerced == 10
        assert not _validate_int_range("x", 1, 10)[0]

    def test_enum(self):
        assert _validate_enum(" HIGH ", {"high", "low"}) == (True, "high", "")
        assert not _validate_enum("mid", {"high", "low"})[0]

    def test_bool(self):
        assert _validate_bool("yes") == (True, True, "")
        assert _validate_bool(False) == (True, False, "")
        assert not _validate_bool("maybe")[0]

    def test_url(self):
        assert _validate_url("https://api.example.com/v1/") == (True, "https://api.example.com/v1", "")
        assert not _validate_url("ftp://x")[0]

    def test_unknown_key(self):
        ok, _, error = validate_config_value("colour", "blue")
        assert not ok and "Unknown" in error

    def test_every_field_has_matching_attribute(self):
        config = Config()
        for spec in CONFIG_FIELDS.values():
            assert hasattr(config, spec.field_name)

    def test_set_config_value_persists(self, tmp_dir, clean_env):
        config = Config.load(str(tmp_dir))
        config._config_source = str(tmp_dir / ".streamchat.yml")
        ok, message = config.set_config_value("reasoning-level", "HIGH")
        assert ok, message
        assert Config.load(str(tmp_dir)).reasoning_level == "high"

        before = config.max_iterations
        ok, message = config.set_config_value("max-iterations", 99)
        assert not ok
        assert config.max_iterations == before
