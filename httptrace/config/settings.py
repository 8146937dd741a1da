import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from httptrace.core.logging import get_logger
from httptrace.exceptions import ConfigurationError

from .http import HTTPSettings
from .logging import LoggingSettings
from .utils import find_toml_config_file


__all__ = ["Settings", "ConfigurationError", "get_settings"]


ENV_PREFIX = "HTTPTRACE_"
ENV_NESTED_DELIMITER = "__"


class Settings(BaseSettings):
    """
    Configuration settings for http-trace.

    Settings are loaded from environment variables (prefixed ``HTTPTRACE_``),
    .env files and an optional TOML configuration file. Precedence, highest
    first: explicit overrides (command-line options), environment variables,
    the TOML file, defaults.
    TOML configuration files are looked up in the following order:
    1. the file named by HTTPTRACE_CONFIG_FILE
    2. .httptrace.toml in current directory
    3. config.toml in XDG_CONFIG_HOME/httptrace/
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter=ENV_NESTED_DELIMITER,
    )

    http: HTTPSettings = Field(
        default_factory=HTTPSettings,
        description="HTTP client configuration settings",
    )

    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Diagnostic logging configuration",
    )

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Load configuration from a TOML file."""
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read TOML config file {toml_path}: {e}"
            ) from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls,
        config_path: Path | str | None = None,
        **overrides: Any,
    ) -> "Settings":
        """Create Settings from a TOML file, the environment and overrides."""
        if isinstance(config_path, str):
            config_path = Path(config_path)

        if config_path is None:
            config_path = find_toml_config_file()
        elif not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        config_data: dict[str, Any] = {}
        if config_path and config_path.exists():
            suffix = config_path.suffix.lower()
            if suffix != ".toml":
                raise ConfigurationError(
                    f"Unsupported config file format: {suffix}. "
                    "Only TOML (.toml) files are supported."
                )
            config_data = cls.load_toml_config(config_path)
            get_logger(__name__).debug(
                "config_file_loaded",
                path=str(config_path),
                category="config",
            )

        data = _deep_merge(_without_env_overrides(config_data), overrides)

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def _env_is_set(*parts: str) -> bool:
    env_key = ENV_PREFIX + ENV_NESTED_DELIMITER.join(parts)
    return os.getenv(env_key.upper()) is not None


def _without_env_overrides(config_data: dict[str, Any]) -> dict[str, Any]:
    """Drop file values that an environment variable already provides."""
    filtered: dict[str, Any] = {}
    for key, value in config_data.items():
        if isinstance(value, dict):
            filtered[key] = {
                nested_key: nested_value
                for nested_key, nested_value in value.items()
                if not _env_is_set(key, nested_key)
            }
        elif not _env_is_set(key):
            filtered[key] = value
    return filtered


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_settings(config_path: Path | str | None = None, **overrides: Any) -> Settings:
    """Load the settings for one invocation."""
    return Settings.from_config(config_path=config_path, **overrides)
