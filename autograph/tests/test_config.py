"""Tests for autograph configuration."""

import pytest

from autograph.config import (
    ConfigError,
    GraphConfig,
    find_config,
    get_default_config,
    load_config,
    validate_config,
    write_config,
)
from autograph.scanner import DEFAULT_EXCLUDE, DEFAULT_INCLUDE


class TestLoadConfig:
    """Tests for load_config."""

    def test_none_returns_defaults(self):
        config = load_config(None)

        assert config.include == DEFAULT_INCLUDE
        assert config.exclude == DEFAULT_EXCLUDE
        assert config.db_path == ".autograph/graph.sqlite"

    def test_missing_file_returns_defaults(self, tmp_path):
        assert load_config(tmp_path / "nope.yaml") == get_default_config()

    def test_empty_file_returns_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == get_default_config()

    def test_values_merged_with_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "include:\n"
            "  - 'src/**/*.ts'\n"
            "max_file_size: 2048\n"
            "log_level: DEBUG\n"
        )

        config = load_config(path)

        assert config.include == ["src/**/*.ts"]
        assert config.exclude == DEFAULT_EXCLUDE
        assert config.max_file_size == 2048
        assert config.log_level == "debug"

    def test_invalid_yaml_reports_line(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("include: ['src/**/*.ts'\n")

        with pytest.raises(ConfigError) as excinfo:
            load_config(path)

        assert excinfo.value.file == str(path)
        assert excinfo.value.line is not None
        assert "Invalid YAML" in excinfo.value.message

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)


class TestValidateConfig:
    """Tests for validate_config."""

    def test_defaults_valid(self):
        validate_config(get_default_config())

    @pytest.mark.parametrize("overrides,message", [
        ({"include": "**/*.ts"}, "must be a list"),
        ({"include": []}, "at least one pattern"),
        ({"exclude": [""]}, "non-empty string"),
        ({"exclude": ["src/[abc"]}, "unclosed bracket"),
        ({"max_file_size": 0}, "positive integer"),
        ({"max_file_size": "big"}, "positive integer"),
        ({"db_path": " "}, "db_path"),
        ({"log_level": "loud"}, "Unknown log level"),
    ])
    def test_invalid(self, overrides, message):
        config = GraphConfig(**overrides)

        with pytest.raises(ConfigError, match=message):
            validate_config(config, "autograph.yaml")


class TestConfigError:
    def test_to_json(self):
        error = ConfigError("bad", file="a.yaml", line=3)

        assert error.to_json() == {
            "error": "config_invalid",
            "message": "bad",
            "file": "a.yaml",
            "line": 3,
        }
        assert str(error) == "bad | file: a.yaml | line: 3"

    def test_minimal(self):
        error = ConfigError("bad")

        assert error.to_json() == {"error": "config_invalid", "message": "bad"}
        assert str(error) == "bad"


class TestFindConfig:
    """Tests for config file discovery."""

    def test_default_location_first(self, tmp_path):
        (tmp_path / ".autograph").mkdir()
        (tmp_path / ".autograph" / "config.yaml").write_text("")
        (tmp_path / "autograph.yaml").write_text("")

        assert find_config(tmp_path) == tmp_path / ".autograph" / "config.yaml"

    def test_fallback(self, tmp_path):
        (tmp_path / "autograph.yaml").write_text("")

        assert find_config(tmp_path) == tmp_path / "autograph.yaml"

    def test_none_found(self, tmp_path):
        assert find_config(tmp_path) is None

    def test_explicit_relative(self, tmp_path):
        (tmp_path / "custom.yaml").write_text("")

        assert find_config(tmp_path, "custom.yaml") == tmp_path / "custom.yaml"

    def test_explicit_missing(self, tmp_path):
        """A named config file that is not there is an error, not a silent default."""
        with pytest.raises(ConfigError) as excinfo:
            find_config(tmp_path, "missing.yaml")

        assert excinfo.value.error_type == "config_not_found"
        assert excinfo.value.file == str(tmp_path / "missing.yaml")


class TestWriteConfig:
    def test_round_trip(self, tmp_path):
        config = GraphConfig(include=["lib/**/*.js"], max_file_size=10)

        path = write_config(config, tmp_path / ".autograph" / "config.yaml")

        assert load_config(path) == config
