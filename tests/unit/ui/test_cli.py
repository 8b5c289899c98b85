"""
canvas-orchestrator — unit tests for the ``canvas`` CLI

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-19

Purpose
- Exercise every command in JSON and rich-text modes against the bundled catalog.

What this test file should cover
- Credential coverage is read from the injected environment only.
- Config and catalog failures exit 2; registry lookups exit 3.
"""

from __future__ import annotations

import json
from io import StringIO
from typing import TYPE_CHECKING, Any

import pytest
from rich.console import Console

from canvas_orchestrator.actions.schemas import ToolName
from canvas_orchestrator.ui.cli import EXIT_CONFIG_ERROR, EXIT_PROVIDER_ERROR, run_cli

if TYPE_CHECKING:
    from pathlib import Path

_REPLICATE = {"REPLICATE_API_TOKEN": "r8_cli_test"}


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _json(capsys: pytest.CaptureFixture[str]) -> dict[str, Any]:
    return json.loads(capsys.readouterr().out)


def _console() -> tuple[Console, StringIO]:
    buffer = StringIO()
    return Console(file=buffer, no_color=True, width=200), buffer


def test_tiers_json_reports_order_and_credentials(capsys: pytest.CaptureFixture[str]) -> None:
    code = run_cli(["tiers", "upscale", "--json"], environ=_REPLICATE)

    payload = _json(capsys)
    assert code == 0
    assert payload["command"] == "tiers"
    [(capability, entries)] = payload["tiers"].items()
    assert capability == "upscale"
    assert [entry["provider_id"] for entry in entries] == [
        "replicate/recraft-crisp-upscale",
        "replicate/magic-image-refiner",
        "replicate/real-esrgan",
    ]
    assert [entry["tier_index"] for entry in entries] == [0, 1, 2]
    assert all(entry["credential_available"] for entry in entries)


def test_tiers_table_shows_missing_credentials() -> None:
    console, buffer = _console()

    code = run_cli(["tiers", "chat"], environ={"GEMINI_API_KEY": "g-test"}, console=console)

    output = buffer.getvalue()
    assert code == 0
    assert "openrouter/gpt-5.2" in output
    assert "missing OPENROUTER_API_KEY" in output
    assert "gemini/gemini-3-flash" in output


def test_tools_json_lists_vocabulary(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["tools", "--json"], environ={}) == 0

    names = [tool["function"]["name"] for tool in _json(capsys)["tools"]]
    assert names == [item.value for item in ToolName]


def test_tools_table() -> None:
    console, buffer = _console()

    assert run_cli(["tools"], environ={}, console=console) == 0
    assert "upscale_image" in buffer.getvalue()
    assert "profile" in buffer.getvalue()


def test_doctor_reports_uncovered_capabilities(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["doctor", "--json"], environ=_REPLICATE) == 0

    payload = _json(capsys)
    checks = {check["name"]: check for check in payload["checks"]}
    assert payload["ok"] is False
    assert checks["config"]["status"] == "ok"
    assert checks["capability:upscale"]["status"] == "ok"
    assert checks["capability:chat"]["status"] == "fail"
    assert "OPENROUTER_API_KEY" in checks["capability:chat"]["detail"]


def test_doctor_reports_broken_config_as_failed_check(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "canvas.toml").write_text("[poller\n", encoding="utf-8")

    assert run_cli(["doctor", "--json"], environ={}) == 0

    payload = _json(capsys)
    [check] = payload["checks"]
    assert check["name"] == "config"
    assert check["status"] == "fail"


def test_doctor_text_output() -> None:
    console, buffer = _console()
    environ = {"REPLICATE_API_TOKEN": "r", "OPENROUTER_API_KEY": "o", "GEMINI_API_KEY": "g"}

    assert run_cli(["doctor"], environ=environ, console=console) == 0
    assert "All checks passed." in buffer.getvalue()


def test_estimate_uses_tier_zero_or_named_provider(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["estimate", "upscale", "--json"], environ={}) == 0
    first = _json(capsys)
    assert run_cli(
        ["estimate", "upscale", "--provider", "replicate/real-esrgan", "--json"], environ={}
    ) == 0
    named = _json(capsys)

    assert first["provider_id"] == "replicate/recraft-crisp-upscale"
    assert first["cost_per_call_usd"] == pytest.approx(0.004)
    assert named["cost_per_call_usd"] == pytest.approx(0.002)


def test_estimate_with_incapable_provider_exits_3(capsys: pytest.CaptureFixture[str]) -> None:
    code = run_cli(["estimate", "upscale", "--provider", "replicate/rembg"], environ={})

    assert code == EXIT_PROVIDER_ERROR
    assert "cannot serve capability 'upscale'" in capsys.readouterr().err


def test_config_json_applies_environment_overrides(capsys: pytest.CaptureFixture[str]) -> None:
    code = run_cli(["config", "--json"], environ={"CANVAS_POLLER_TIMEOUT_SECONDS": "60"})

    payload = _json(capsys)
    assert code == 0
    assert payload["config"]["poller"]["timeout_seconds"] == 60.0
    assert payload["config"]["actions"]["pending_policy"] == "reject"


def test_missing_explicit_config_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    code = run_cli(["config", "--config", "absent.toml"], environ={})

    assert code == EXIT_CONFIG_ERROR
    assert capsys.readouterr().err.startswith("error: config file not found")


def test_broken_catalog_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    catalog = tmp_path / "catalog.yaml"
    catalog.write_text("providers: [unclosed\n", encoding="utf-8")

    code = run_cli(["tiers", "--catalog", str(catalog)], environ={})

    assert code == EXIT_CONFIG_ERROR
    assert "error: provider catalog:" in capsys.readouterr().err


def test_unknown_capability_is_an_argparse_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["tiers", "teleport"], environ={})

    assert excinfo.value.code == 2
