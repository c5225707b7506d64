"""Config Loader - Loads runtime configuration and resolves endpoints.

The YAML file may reference environment variables as ${NAME} in any string
value. Base URLs given on the command line take precedence over the file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from path_parity.models import RuntimeConfig, TargetConfig

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_runtime_config(config_path: Path) -> RuntimeConfig:
    """Load and validate the runtime configuration file."""
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

    try:
        return RuntimeConfig.model_validate(_expand_env(raw_config))
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def resolve_targets(
    config: RuntimeConfig,
    reference_url: str | None = None,
    candidate_url: str | None = None,
) -> tuple[TargetConfig, TargetConfig]:
    """Return (reference, candidate) configs with CLI URLs taking precedence.

    A URL given on the command line replaces the configured base_url but keeps
    the configured headers and TLS settings for that endpoint.
    """
    reference = _resolve_target("reference", config.targets.reference, reference_url)
    candidate = _resolve_target("candidate", config.targets.candidate, candidate_url)

    if reference.base_url == candidate.base_url:
        raise ConfigError(
            f"Reference and candidate endpoints must be different (both are {reference.base_url})"
        )

    return reference, candidate


def _resolve_target(name: str, configured: TargetConfig | None, url: str | None) -> TargetConfig:
    if url is None:
        if configured is None:
            raise ConfigError(
                f"No {name} endpoint: pass --{name} URL or set targets.{name}.base_url in the config"
            )
        return configured

    fields = configured.model_dump() if configured is not None else {}
    fields["base_url"] = url
    try:
        return TargetConfig.model_validate(fields)
    except ValidationError as e:
        raise ConfigError(f"Invalid --{name} URL {url!r}: {e.errors()[0]['msg']}") from e


def _expand_env(value: Any) -> Any:
    """Replace ${NAME} references in every string of a loaded YAML document."""
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_env_value, value)
    return value


def _env_value(match: re.Match) -> str:
    name = match.group(1)
    if name not in os.environ:
        raise ConfigError(f"Config references ${{{name}}} but '{name}' is not set in the environment")
    return os.environ[name]
