from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import structlog
import yaml
from dotenv import dotenv_values

from .models import PluginConfig
from .utils import PluginError

logger = structlog.stdlib.get_logger(__name__)

ENV_PREFIX = "PLUGIN_"
ENV_FILE_VAR = "PLUGIN_ENV_FILE"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_LOG_FORMATS = ("console", "json")


class ConfigParseError(PluginError):
    """Raised when the step environment is missing or has malformed parameters."""


class DecodeError(PluginError):
    """Raised when the auth key is not a valid YAML-escaped string."""


def load_environment(
    environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None
) -> Dict[str, str]:
    """Merge the optional env file under the process environment.

    Variables already present in ``environ`` win over the file. A missing file
    is logged and ignored.
    """

    base = dict(os.environ if environ is None else environ)
    path = env_file or base.get(ENV_FILE_VAR)
    if not path:
        return base
    if not Path(path).is_file():
        logger.warning("env file not found, skipping", env_file=path)
        return base

    merged = {key: value for key, value in dotenv_values(path).items() if value is not None}
    merged.update(base)
    logger.debug("loaded env file", env_file=path, keys=len(merged) - len(base))
    return merged


def _lookup(environ: Mapping[str, str], key: str) -> Optional[str]:
    for candidate in (ENV_PREFIX + key, key):
        value = environ.get(candidate)
        if value:
            return value
    return None


def _parse_bool(environ: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = _lookup(environ, key)
    if raw is None:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigParseError(f"{key}: invalid boolean value {raw!r}")


def _parse_list(environ: Mapping[str, str], key: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    raw = _lookup(environ, key)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(","))
    return tuple(item for item in items if item)


def _require(environ: Mapping[str, str], key: str) -> str:
    value = _lookup(environ, key)
    if value is None:
        raise ConfigParseError(f"required key {key} missing value")
    return value


def parse_config(environ: Mapping[str, str]) -> PluginConfig:
    """Build the raw, not yet normalized, configuration from environment values."""

    defaults = PluginConfig(auth_key="", repo="")
    log_format = _lookup(environ, "LOG_FORMAT") or defaults.log_format
    if log_format not in _LOG_FORMATS:
        raise ConfigParseError(f"LOG_FORMAT: expected one of {', '.join(_LOG_FORMATS)}, got {log_format!r}")

    return PluginConfig(
        auth_key=_require(environ, "AUTH_KEY"),
        repo=_require(environ, "REPO"),
        dry_run=_parse_bool(environ, "DRY_RUN"),
        debug=_parse_bool(environ, "DEBUG"),
        registry=_lookup(environ, "REGISTRY") or defaults.registry,
        storage_driver=_lookup(environ, "STORAGE_DRIVER") or defaults.storage_driver,
        name=_lookup(environ, "DRONE_COMMIT_SHA") or defaults.name,
        dockerfile=_lookup(environ, "DOCKERFILE") or defaults.dockerfile,
        context=_lookup(environ, "CONTEXT") or defaults.context,
        tags=_parse_list(environ, "TAGS", defaults.tags),
        build_args=_parse_list(environ, "ARGS"),
        log_format=log_format,
    )


def decode_auth_key(raw: str) -> str:
    """Unescape the auth key, which arrives as a YAML string literal."""

    try:
        # BaseLoader keeps every scalar as text: "12345" or "yes" stay strings.
        value = yaml.load(raw, Loader=yaml.BaseLoader)
    except yaml.YAMLError as exc:
        raise DecodeError(f"auth key is not a valid YAML string: {exc}") from exc
    if not isinstance(value, str):
        raise DecodeError(f"auth key must decode to a string, got {type(value).__name__}")
    if not value:
        raise DecodeError("auth key decoded to an empty string")
    return value


def qualify_repository(repo: str, registry: str) -> str:
    """Prefix ``namespace/name`` repositories with the registry host."""

    if repo.count("/") == 1:
        return f"{registry}/{repo}"
    return repo


def prepare_config(config: PluginConfig) -> PluginConfig:
    return replace(
        config,
        auth_key=decode_auth_key(config.auth_key),
        repo=qualify_repository(config.repo, config.registry),
    )


def load_config(
    environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None
) -> PluginConfig:
    """Load, parse and normalize the plugin configuration in one pass."""

    return prepare_config(parse_config(load_environment(environ, env_file)))
