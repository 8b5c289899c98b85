from __future__ import annotations

import pytest

from canvas_orchestrator.config.loader import ConfigLoadError
from canvas_orchestrator.domain.models import Capability, FailureClass
from canvas_orchestrator.main import ExitCode, cli_entrypoint, exit_code_for
from canvas_orchestrator.orchestration.fallback import AllProvidersFailedError
from canvas_orchestrator.providers.base import QuotaExceededError
from canvas_orchestrator.providers.registry import UnknownCapabilityError


def _wrapped(cause: BaseException) -> RuntimeError:
    try:
        raise RuntimeError("adapter crashed") from cause
    except RuntimeError as exc:
        return exc


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (ConfigLoadError("bad toml"), ExitCode.CONFIG_ERROR),
        (FileNotFoundError("canvas.toml"), ExitCode.CONFIG_ERROR),
        (QuotaExceededError("credits", provider="a/b"), ExitCode.PROVIDER_ERROR),
        (UnknownCapabilityError("teleport"), ExitCode.PROVIDER_ERROR),
        (
            AllProvidersFailedError(
                "all failed", capability=Capability.UPSCALE, failure=FailureClass.TIMEOUT
            ),
            ExitCode.PROVIDER_ERROR,
        ),
        (ValueError("unexpected"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exit_code_for_known_errors(exc: BaseException, expected: ExitCode) -> None:
    assert exit_code_for(exc) is expected


def test_exit_code_follows_the_cause_chain() -> None:
    assert exit_code_for(_wrapped(ConfigLoadError("missing"))) is ExitCode.CONFIG_ERROR


def test_entrypoint_success(
    tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)

    assert cli_entrypoint(["tools", "--json"]) == ExitCode.SUCCESS
    assert '"command":"tools"' in capsys.readouterr().out


def test_entrypoint_maps_argparse_usage_errors(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint([]) == ExitCode.CONFIG_ERROR
    assert "usage: canvas" in capsys.readouterr().err


def test_entrypoint_maps_escaping_errors(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def provider_failure(argv: object = None) -> int:
        raise QuotaExceededError("credits exhausted", provider="openrouter/gpt-5.2")

    monkeypatch.setattr("canvas_orchestrator.ui.cli.run_cli", provider_failure)

    assert cli_entrypoint(["tools"]) == ExitCode.PROVIDER_ERROR
    assert "credits exhausted" in capsys.readouterr().err


def test_entrypoint_prints_traceback_for_internal_errors(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def crash(argv: object = None) -> int:
        raise KeyError("boom")

    monkeypatch.setattr("canvas_orchestrator.ui.cli.run_cli", crash)

    assert cli_entrypoint(["tools"]) == ExitCode.INTERNAL_ERROR
    assert "Traceback" in capsys.readouterr().err
