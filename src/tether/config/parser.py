"""Locate, read and validate tether.yaml."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from tether.config.models import TetherConfig
from tether.errors import TetherError

DEFAULT_CONFIG_NAME = "tether.yaml"

#: Environment variable that overrides ``log_level``.
LOG_LEVEL_ENV = "TETHER_LOG_LEVEL"


class ConfigError(TetherError):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> TetherConfig:
    """Build a :class:`TetherConfig` from disk and the environment.

    An explicit *path* must exist.  Without one, ``tether.yaml`` in the
    current directory is used if present; otherwise every setting keeps its
    default.  A ``.env`` file beside the config (or in the current directory)
    is loaded before environment overrides are applied.

    Raises:
        ConfigError: On a missing explicit file, bad YAML, or invalid values.
    """
    if path is not None:
        config_path: Path | None = Path(path)
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise ConfigError(msg)
    else:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        config_path = candidate if candidate.is_file() else None

    raw = _read_yaml(config_path) if config_path is not None else {}

    env_file = (config_path.parent if config_path else Path.cwd()) / ".env"
    if env_file.is_file():
        load_dotenv(env_file)
    if level := os.environ.get(LOG_LEVEL_ENV):
        raw["log_level"] = level

    try:
        return TetherConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(_describe(exc)) from exc


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc
    except yaml.MarkedYAMLError as exc:
        where = ""
        if exc.problem_mark is not None:
            where = f" (line {exc.problem_mark.line + 1}, column {exc.problem_mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{where}"
        raise ConfigError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path.name}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
    raise ConfigError(msg)


def _describe(exc: ValidationError) -> str:
    """One ``section → field: problem`` line per validation error."""
    lines = ["Config validation failed:"]
    for err in exc.errors():
        where = " → ".join(str(part) for part in err["loc"]) or "(root)"
        problem = err["msg"]
        if err["type"] == "extra_forbidden":
            problem = "Unknown setting"
        elif err["type"] == "missing":
            problem = "This field is required"
        lines.append(f"  {where}: {problem}")
    return "\n".join(lines)
