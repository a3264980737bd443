"""Config Loader - Loads executor configuration from YAML.

The file is optional; an Executor built without one uses ExecutorConfig
defaults. Example:

    timeout: 15
    max_redirects: 5
    ca_bundle: /etc/ssl/internal-ca.pem
    user_agent: my-app/1.0
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from http_dispatch.models import ExecutorConfig


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_executor_config(config_path: Path) -> ExecutorConfig:
    """Load executor configuration from a YAML mapping.

    An empty file yields the defaults. A relative ca_bundle is resolved
    against the config file's directory.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    return resolve_ca_bundle_path(config_path, parse_executor_config(raw_config))


def parse_executor_config(raw_config: dict) -> ExecutorConfig:
    """Validate an already-parsed mapping into an ExecutorConfig."""
    try:
        return ExecutorConfig.model_validate(raw_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def resolve_ca_bundle_path(config_path: Path, config: ExecutorConfig) -> ExecutorConfig:
    """Resolve a relative ca_bundle against the config file's directory.

    Absolute paths and configs without a bundle pass through unchanged.
    """
    if not config.ca_bundle:
        return config
    bundle = Path(config.ca_bundle)
    if bundle.is_absolute():
        return config
    resolved = (config_path.parent / bundle).resolve()
    return config.model_copy(update={"ca_bundle": str(resolved)})
