# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for cuealign.
Handles loading and saving settings from a YAML config file.
"""

import logging
from pathlib import Path
from typing import Any, TypedDict

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME: str = ".cuealign.yaml"


class SessionSettings(TypedDict):
    """Type definition for session/retry configuration settings."""
    max_retries: int
    backoff_step: float  # Seconds added per consecutive failure
    backoff_cap: float  # Longest delay between restarts
    jump_restart_delay: float  # Delay before restarting after a jump


class MatchingSettings(TypedDict):
    """Type definition for progress matching configuration settings."""
    resync_window: int


class DictationSettings(TypedDict):
    """Type definition for dictation configuration settings."""
    highlight_clear_seconds: float


class Config(TypedDict):
    """Type definition for the complete configuration."""
    session: SessionSettings
    matching: MatchingSettings
    dictation: DictationSettings
    debug_log: bool


# Default configuration values
DEFAULT_CONFIG: Config = {
    "session": {
        "max_retries": 10,
        "backoff_step": 0.5,
        "backoff_cap": 1.5,
        # Give the audio system time to release before re-acquiring it
        "jump_restart_delay": 0.1,
    },
    "matching": {
        "resync_window": 3,
    },
    "dictation": {
        "highlight_clear_seconds": 1.0,
    },
    "debug_log": False,
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    config: dict[str, Any] = _deep_merge({}, DEFAULT_CONFIG)

    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
                elif file_config is not None:
                    logger.warning("Ignoring config %s: top level is not a mapping",
                                   config_path)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not load config from %s: %s", config_path, e)

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error saving config to %s: %s", config_path, e)
        return False


def get_session_settings(config: Config) -> SessionSettings:
    """Extract session/retry settings from config."""
    return config.get("session", DEFAULT_CONFIG["session"]).copy()  # type: ignore[return-value]


def get_matching_settings(config: Config) -> MatchingSettings:
    """Extract progress matching settings from config."""
    return config.get("matching", DEFAULT_CONFIG["matching"]).copy()  # type: ignore[return-value]


def get_dictation_settings(config: Config) -> DictationSettings:
    """Extract dictation settings from config."""
    return config.get("dictation",
                      DEFAULT_CONFIG["dictation"]
                      ).copy()  # type: ignore[return-value]
