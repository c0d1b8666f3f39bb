"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .config_models import SystemConfig

DEFAULT_CONFIG_PATH = Path(".clt/config.yml")


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """
    Load and validate system configuration.

    Args:
        config_path: Path to the configuration file. Defaults to .clt/config.yml

    Returns:
        Validated SystemConfig instance

    Raises:
        ConfigurationError: If configuration loading or validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_data: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML config: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    # Environment wins over the file so CI jobs can tune a shared config
    env_overrides = _load_env_overrides()
    if env_overrides:
        _deep_update(config_data, env_overrides)

    try:
        return SystemConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _deep_update(target: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def _load_env_overrides() -> dict:
    """Load configuration overrides from environment variables."""
    overrides: dict = {}

    env_mappings = {
        "CLT_LOG_LEVEL": ("logging", "level"),
        "CLT_LOG_DIR": ("paths", "log_dir"),
        "CLT_PATTERNS_FILE": ("paths", "patterns_file"),
        "CLT_DELAY": ("replay", "inter_step_delay_ms"),
        "CLT_STEP_TIMEOUT": ("replay", "step_timeout"),
        "CLT_TARGET": ("default_target",),
        "CLT_LAYOUT": ("compare", "layout"),
    }

    for env_var, config_path in env_mappings.items():
        value = os.getenv(env_var)
        if value is not None:
            current = overrides
            for key in config_path[:-1]:
                if key not in current:
                    current[key] = {}
                current = current[key]
            current[config_path[-1]] = value

    # NO_COLOR is a cross-tool convention, CLT_NO_COLOR is ours
    if os.getenv("NO_COLOR") or os.getenv("CLT_NO_COLOR"):
        overrides.setdefault("compare", {})["color"] = False

    return overrides


def create_example_config(output_path: Path = Path(".clt/config.yml.example")) -> None:
    """Create an example configuration file."""
    example_config = {
        "paths": {
            "log_dir": ".clt/logs",
            "patterns_file": ".clt/patterns"
        },
        "logging": {
            "level": "WARNING"
        },
        "targets": {
            "local": {
                "command": ["bash", "--noprofile", "--norc", "-i"]
            },
            "ubuntu": {
                "command": ["docker", "run", "--rm", "-it", "ubuntu:24.04", "bash", "--norc", "-i"]
            }
        },
        "default_target": "local",
        "replay": {
            "inter_step_delay_ms": 5,
            "step_timeout": 30,
            "fail_fast": False
        },
        "compare": {
            "color": True,
            "layout": "inline"
        }
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
