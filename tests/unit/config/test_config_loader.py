"""
canvas-orchestrator — unit tests for the config loader

File: tests/unit/config/test_config_loader.py
Last updated: 2026-10-19

Purpose
- Validate layering of defaults, ``canvas.toml``, ``CANVAS_*`` env vars and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Env var naming and type coercion.
- Path normalization relative to the config file.
- Redacted, deterministic effective-config dumps.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from canvas_orchestrator.config import ConfigValidationError
from canvas_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_var_name,
    load_config,
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text.strip() + "\n", encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["actions"]["pending_policy"] == "reject"
    assert config["poller"]["timeout_seconds"] == 300.0
    assert config["registry"]["catalog_path"] is None
    assert config["observability"]["log_dir"] == (tmp_path / "logs").resolve().as_posix()


def test_precedence_is_cli_then_env_then_file(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path / "canvas.toml",
        """
[poller]
timeout_seconds = 120.0
poll_retries = 5

[actions]
pending_policy = "queue"
max_queue = 2
""",
    )

    config = load_config(
        config_path,
        environ={
            "CANVAS_POLLER_TIMEOUT_SECONDS": "60",
            "CANVAS_ACTIONS_MAX_QUEUE": "4",
        },
        cli_overrides={"actions.max_queue": 6},
    )

    assert config["poller"]["timeout_seconds"] == 60.0
    assert config["poller"]["poll_retries"] == 5
    assert config["actions"]["pending_policy"] == "queue"
    assert config["actions"]["max_queue"] == 6
    assert config["fallback"]["batch_concurrency"] == 4


@pytest.mark.parametrize(
    ("name", "raw", "section", "key", "expected"),
    [
        ("CANVAS_ACTIONS_REQUIRE_APPROVAL", "off", "actions", "require_approval", False),
        ("CANVAS_OBSERVABILITY_LOG_TO_STDOUT", "YES", "observability", "log_to_stdout", True),
        ("CANVAS_FALLBACK_PROBE_INTERVAL_RUNS", " 3 ", "fallback", "probe_interval_runs", 3),
        ("CANVAS_OBSERVABILITY_LOG_LEVEL", "debug", "observability", "log_level", "DEBUG"),
    ],
)
def test_env_values_are_coerced_to_field_types(
    tmp_path: Path,
    name: str,
    raw: str,
    section: str,
    key: str,
    expected: object,
) -> None:
    config_path = _write(tmp_path / "canvas.toml", "")

    config = load_config(config_path, environ={name: raw})

    assert config[section][key] == expected


def test_env_var_names_follow_section_and_field() -> None:
    assert env_var_name("registry", "catalog_path") == "CANVAS_REGISTRY_CATALOG_PATH"


def test_bad_env_boolean_is_a_load_error(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "")

    with pytest.raises(ConfigLoadError, match="must be a boolean"):
        load_config(config_path, environ={"CANVAS_ACTIONS_REQUIRE_APPROVAL": "maybe"})


def test_bad_env_integer_is_a_load_error(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "")

    with pytest.raises(ConfigLoadError, match="CANVAS_ACTIONS_MAX_QUEUE must be an integer"):
        load_config(config_path, environ={"CANVAS_ACTIONS_MAX_QUEUE": "many"})


def test_missing_explicit_config_file_is_a_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_a_load_error(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "[poller\ntimeout_seconds = 1")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_invalid_values_from_env_are_validation_errors(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "")

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={"CANVAS_POLLER_MAX_INTERVAL_SECONDS": "0.5"})

    assert [issue.path for issue in excinfo.value.issues] == ["poller.max_interval_seconds"]


def test_malformed_cli_override_key_is_rejected(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "")

    with pytest.raises(ConfigLoadError, match="section.field"):
        load_config(config_path, environ={}, cli_overrides={"max_queue": 3})


def test_paths_resolve_relative_to_config_file(tmp_path: Path) -> None:
    config_dir = tmp_path / "project"
    config_dir.mkdir()
    config_path = _write(
        config_dir / "canvas.toml",
        """
[registry]
catalog_path = "catalogs/providers.yaml"

[observability]
log_dir = "../shared-logs"
""",
    )

    config = load_config(config_path, environ={})

    assert config["registry"]["catalog_path"] == (
        (config_dir / "catalogs" / "providers.yaml").resolve().as_posix()
    )
    assert config["observability"]["log_dir"] == (tmp_path / "shared-logs").resolve().as_posix()


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = _write(tmp_path / "canvas.toml", "[actions]\nmax_queue = 3")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert json.loads(first)["actions"]["max_queue"] == 3
