"""
canvas-orchestrator — runtime config loader.

File: src/canvas_orchestrator/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective config from defaults, ``canvas.toml``, ``CANVAS_*`` env vars and
  CLI overrides, in increasing precedence.

Functional requirements
- Every schema field is overridable as ``CANVAS_<SECTION>_<FIELD>``.
- Relative paths resolve against the directory of the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from canvas_orchestrator.config.schema import (
    CONFIG_FIELDS,
    PATH_FIELDS,
    FieldSpec,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from canvas_orchestrator.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """The config file or an override could not be read or coerced."""


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    A missing default ``canvas.toml`` is fine; a missing explicit ``config_path``
    raises ``ConfigLoadError``. Invalid values raise ``ConfigValidationError``.
    """

    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    from_file = _read_toml(path, required=config_path is not None)

    layered = assert_valid_config(merge_config(default_config(), from_file))
    layered = merge_config(layered, _env_overrides(os.environ if environ is None else environ))
    layered = merge_config(layered, _dotted_overrides(cli_overrides or {}))
    validated = assert_valid_config(layered)
    return normalize_paths(validated, base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir`` and expand ``~`` and ``$VARS``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        values = normalized.get(section)
        if not isinstance(values, dict) or not isinstance(values.get(key), str):
            continue
        candidate = Path(os.path.expandvars(values[key])).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        values[key] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    overrides: dict[str, dict[str, object]] = {}
    for section, fields in CONFIG_FIELDS.items():
        for key, spec in fields.items():
            name = env_var_name(section, key)
            raw = environ.get(name)
            if raw is not None:
                overrides.setdefault(section, {})[key] = _from_env(name, raw.strip(), spec)
    return overrides


def _from_env(name: str, raw: str, spec: FieldSpec) -> object:
    if spec.kind == "bool":
        lowered = raw.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ConfigLoadError(f"{name} must be a boolean (true/false/1/0/yes/no/on/off)")
    if spec.kind == "int":
        try:
            return int(raw)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be an integer") from exc
    if spec.kind == "float":
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} must be a number") from exc
    return raw


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for dotted, value in overrides.items():
        section, _, key = dotted.partition(".")
        if not section or not key or "." in key:
            raise ConfigLoadError(f"invalid override key {dotted!r}; expected 'section.field'")
        payload.setdefault(section, {})[key] = value
    return payload


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "dump_effective_config",
    "effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
