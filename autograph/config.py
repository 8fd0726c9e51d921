"""Configuration loading and validation for autograph."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from autograph.scanner import DEFAULT_EXCLUDE, DEFAULT_INCLUDE, DEFAULT_MAX_FILE_SIZE


class ConfigError(Exception):
    """Error in autograph configuration."""

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
        error_type: str = "config_invalid",
    ):
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line
        self.error_type = error_type

    def to_json(self) -> dict[str, Any]:
        """Serialize error to JSON format for machine parsing."""
        result: dict[str, Any] = {
            "error": self.error_type,
            "message": self.message,
        }
        if self.file:
            result["file"] = self.file
        if self.line:
            result["line"] = self.line
        return result

    def __str__(self) -> str:
        parts = [self.message]
        if self.file:
            parts.append(f"file: {self.file}")
        if self.line:
            parts.append(f"line: {self.line}")
        return " | ".join(parts)


DEFAULT_CONFIG_PATH = ".autograph/config.yaml"
FALLBACK_CONFIG_PATH = "autograph.yaml"
DEFAULT_DB_PATH = ".autograph/graph.sqlite"

LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class GraphConfig:
    """Complete autograph configuration."""

    version: str = "1.0"
    include: list[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE))
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    db_path: str = DEFAULT_DB_PATH
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    log_level: str = "warning"

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "include": list(self.include),
            "exclude": list(self.exclude),
            "db_path": self.db_path,
            "max_file_size": self.max_file_size,
            "log_level": self.log_level,
        }


def get_default_config() -> GraphConfig:
    """Return the default configuration."""
    return GraphConfig()


def find_config(root: Path | str, explicit: Optional[Path | str] = None) -> Optional[Path]:
    """Locate the config file for a workspace.

    Search order: ``explicit``, ``.autograph/config.yaml``, ``autograph.yaml``.

    Raises:
        ConfigError: If ``explicit`` is given but does not exist.
    """
    root = Path(root)
    if explicit is not None:
        explicit = Path(explicit)
        path = explicit if explicit.is_absolute() else root / explicit
        if not path.exists():
            raise ConfigError(
                "Config file not found",
                file=str(path),
                error_type="config_not_found",
            )
        return path

    for candidate in (DEFAULT_CONFIG_PATH, FALLBACK_CONFIG_PATH):
        path = root / candidate
        if path.exists():
            return path
    return None


def _validate_glob(pattern: Any, config_file: Optional[str] = None) -> None:
    """Validate a glob pattern."""
    if not isinstance(pattern, str) or not pattern.strip():
        raise ConfigError(
            f"Invalid glob pattern {pattern!r}: must be a non-empty string",
            file=config_file,
            error_type="config_invalid",
        )
    if pattern.count("[") != pattern.count("]"):
        raise ConfigError(
            f"Invalid glob pattern '{pattern}': unclosed bracket",
            file=config_file,
            error_type="config_invalid",
        )


def _validate_patterns(name: str, value: Any, config_file: Optional[str] = None) -> None:
    if not isinstance(value, list):
        raise ConfigError(
            f"'{name}' must be a list of glob patterns",
            file=config_file,
            error_type="config_invalid",
        )
    for pattern in value:
        _validate_glob(pattern, config_file)


def validate_config(config: GraphConfig, config_file: Optional[str] = None) -> None:
    """Validate configuration values.

    Raises:
        ConfigError: If configuration is invalid.
    """
    _validate_patterns("include", config.include, config_file)
    _validate_patterns("exclude", config.exclude, config_file)

    if not config.include:
        raise ConfigError(
            "'include' must contain at least one pattern",
            file=config_file,
            error_type="config_invalid",
        )

    if not isinstance(config.max_file_size, int) or config.max_file_size <= 0:
        raise ConfigError(
            f"'max_file_size' must be a positive integer, got {config.max_file_size!r}",
            file=config_file,
            error_type="config_invalid",
        )

    if not isinstance(config.db_path, str) or not config.db_path.strip():
        raise ConfigError(
            "'db_path' must be a non-empty string",
            file=config_file,
            error_type="config_invalid",
        )

    if config.log_level not in LOG_LEVELS:
        raise ConfigError(
            f"Unknown log level '{config.log_level}'. Must be one of: {', '.join(LOG_LEVELS)}",
            file=config_file,
            error_type="config_invalid",
        )


def load_config(config_path: Optional[Path | str]) -> GraphConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the config file, or None for defaults.

    Returns:
        GraphConfig with loaded values merged with defaults.

    Raises:
        ConfigError: If the file exists but contains invalid configuration.
    """
    defaults = get_default_config()

    if config_path is None:
        return defaults

    config_path = Path(config_path)
    config_file = str(config_path)

    if not config_path.exists():
        return defaults

    try:
        content = config_path.read_text(encoding="utf-8")
        if not content.strip():
            return defaults

        data = yaml.safe_load(content)
        if not data:
            return defaults
        if not isinstance(data, dict):
            raise ConfigError(
                "Top-level autograph config must be a mapping",
                file=config_file,
                error_type="config_invalid",
            )

    except yaml.YAMLError as e:
        line = None
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            line = mark.line + 1
        raise ConfigError(
            f"Invalid YAML: {e}",
            file=config_file,
            line=line,
            error_type="config_invalid",
        )

    config = GraphConfig(
        version=str(data.get("version", defaults.version)),
        include=data.get("include", defaults.include),
        exclude=data.get("exclude", defaults.exclude),
        db_path=data.get("db_path", defaults.db_path),
        max_file_size=data.get("max_file_size", defaults.max_file_size),
        log_level=str(data.get("log_level", defaults.log_level)).lower(),
    )

    validate_config(config, config_file)

    return config


def write_config(config: GraphConfig, config_path: Path | str) -> Path:
    """Write ``config`` as YAML, creating parent directories."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False),
        encoding="utf-8",
    )
    return config_path
