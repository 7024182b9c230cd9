# === NAVMAP v1 ===
# {
#   "module": "SourceIndex.ComplogUpdate.config.loader",
#   "purpose": "Configuration loading with file/env/CLI precedence.",
#   "sections": [
#     {
#       "id": "read-file",
#       "name": "_read_file",
#       "anchor": "function-read-file",
#       "kind": "function"
#     },
#     {
#       "id": "assign-nested",
#       "name": "_assign_nested",
#       "anchor": "function-assign-nested",
#       "kind": "function"
#     },
#     {
#       "id": "coerce-env-value",
#       "name": "_coerce_env_value",
#       "anchor": "function-coerce-env-value",
#       "kind": "function"
#     },
#     {
#       "id": "merge-env-overrides",
#       "name": "_merge_env_overrides",
#       "anchor": "function-merge-env-overrides",
#       "kind": "function"
#     },
#     {
#       "id": "merge-cli-overrides",
#       "name": "_merge_cli_overrides",
#       "anchor": "function-merge-cli-overrides",
#       "kind": "function"
#     },
#     {
#       "id": "load-config",
#       "name": "load_config",
#       "anchor": "function-load-config",
#       "kind": "function"
#     },
#     {
#       "id": "validate-config-file",
#       "name": "validate_config_file",
#       "anchor": "function-validate-config-file",
#       "kind": "function"
#     },
#     {
#       "id": "export-config-schema",
#       "name": "export_config_schema",
#       "anchor": "function-export-config-schema",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Configuration Loading with File/Env/CLI Precedence

Three layers compose the final :class:`ComplogUpdateConfig`:
1. **File level** (YAML/JSON) holds the base document, including ``sources``
2. **Environment level** uses ``SIDX_*`` variables, which override the file
3. **CLI level** applies programmatic overrides last

Environment variables use double-underscore notation:
  SIDX_POLL__INTERVAL_S=30                  ->  poll.interval_s=30
  SIDX_PROVIDERS__GITHUB_TOKEN=ghp_xxx      ->  providers.github_token="ghp_xxx"

Values are JSON-parsed where possible. Credential keys (``*_token``) are always
kept as strings.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .models import ComplogUpdateConfig

_LOGGER = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "SIDX_"
_STRING_ONLY_SUFFIXES = ("_token",)
# Read by the CLI itself, not part of the document
_RESERVED_ENV_KEYS = frozenset({"config"})

# ============================================================================
# Helpers
# ============================================================================


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed config dictionary

    Raises:
        ValueError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            loaded = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            loaded = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise ValueError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return loaded


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "http.user_agent", "MyUA")
        -> data["http"]["user_agent"] = "MyUA"
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Attempt to coerce environment variable string to appropriate type.

    Tries JSON parsing first (handles lists, dicts, bools, numbers).
    Falls back to string if JSON fails.
    """
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        pass

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    if value.isdigit() or (value.startswith("-") and value[1:].isdigit()):
        return int(value)

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _merge_env_overrides(
    data: dict[str, Any],
    env_prefix: str = DEFAULT_ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Overlay environment variables onto config dict.

    Args:
        data: Base config dict (will be modified)
        env_prefix: Environment variable prefix (default: SIDX_)
        environ: Mapping to read instead of ``os.environ``

    Returns:
        Modified data dict
    """
    source = os.environ if environ is None else environ
    for env_key, env_value in source.items():
        if not env_key.startswith(env_prefix):
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        if relative_key in _RESERVED_ENV_KEYS:
            continue
        dotted_key = relative_key.replace("__", ".")

        if dotted_key.endswith(_STRING_ONLY_SUFFIXES):
            coerced_value: Any = env_value
            _LOGGER.debug("Environment override: %s -> %s = <redacted>", env_key, dotted_key)
        else:
            coerced_value = _coerce_env_value(env_value)
            _LOGGER.debug(
                "Environment override: %s -> %s = %r", env_key, dotted_key, coerced_value
            )

        _assign_nested(data, dotted_key, coerced_value)

    return data


def _merge_cli_overrides(
    data: dict[str, Any], cli_overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    """
    Recursively merge CLI overrides into base config dict.

    Later values win (standard dict.update() semantics).
    """
    if not cli_overrides:
        return data

    for key, value in cli_overrides.items():
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_cli_overrides(data[key], value)
        else:
            data[key] = value
        _LOGGER.debug("CLI override: %s", key)

    return data


# ============================================================================
# Public API
# ============================================================================


def load_config(
    path: str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ComplogUpdateConfig:
    """
    Load ComplogUpdateConfig from file, environment, and CLI with proper precedence.

    **Precedence:** file < environment < CLI

    Args:
        path: Path to YAML/JSON config file (optional)
        env_prefix: Environment variable prefix (default: SIDX_)
        cli_overrides: CLI overrides dict (optional)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated ComplogUpdateConfig instance

    Raises:
        ValueError: If config is invalid or file cannot be read
        pydantic.ValidationError: If the composed document fails validation
    """
    data: dict[str, Any] = {}

    if path:
        try:
            data = _read_file(path)
            _LOGGER.info("Loaded config from %s", path)
        except ValueError as e:
            _LOGGER.error("Failed to load config: %s", e)
            raise

    data = _merge_env_overrides(data, env_prefix, environ)
    data = _merge_cli_overrides(data, cli_overrides)

    try:
        config = ComplogUpdateConfig.model_validate(data)
    except ValueError as e:
        _LOGGER.error("Configuration validation failed: %s", e)
        raise

    _LOGGER.info(
        "Configuration validated. %d source(s), config hash: %s...",
        len(config.sources),
        config.config_hash()[:8],
    )
    return config


def validate_config_file(path: str) -> bool:
    """
    Validate a config file.

    Used by the ``validate-config`` CLI command.

    Raises:
        ValueError: If invalid
    """
    load_config(path=path)
    return True


def export_config_schema() -> dict[str, Any]:
    """Export JSON Schema for ComplogUpdateConfig (Pydantic v2 format)."""
    return ComplogUpdateConfig.model_json_schema()
