"""Configuration file discovery utilities."""

import os
from pathlib import Path


CONFIG_FILE_ENV = "HTTPTRACE_CONFIG_FILE"


def get_xdg_config_home() -> Path:
    """Get the XDG_CONFIG_HOME directory.

    Returns:
        Path to the XDG config directory. Falls back to ~/.config if not set.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home)
    return Path.home() / ".config"


def get_httptrace_config_dir() -> Path:
    """Get the http-trace configuration directory within XDG_CONFIG_HOME."""
    return get_xdg_config_home() / "httptrace"


def find_toml_config_file() -> Path | None:
    """Find the TOML configuration file for http-trace.

    Searches in the following order:
    1. The path named by HTTPTRACE_CONFIG_FILE
    2. .httptrace.toml in current directory
    3. config.toml in XDG_CONFIG_HOME/httptrace/

    Returns:
        Path to the first found configuration file, or None if not found.
    """
    env_config = os.environ.get(CONFIG_FILE_ENV)
    if env_config:
        return Path(env_config)

    current_dir_config = Path.cwd() / ".httptrace.toml"
    if current_dir_config.exists():
        return current_dir_config

    xdg_config = get_httptrace_config_dir() / "config.toml"
    if xdg_config.exists():
        return xdg_config

    return None
