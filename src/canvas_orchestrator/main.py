"""Process entrypoint for ``canvas`` and ``python -m canvas_orchestrator``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from canvas_orchestrator.config.loader import ConfigLoadError
from canvas_orchestrator.config.schema import ConfigValidationError
from canvas_orchestrator.orchestration.fallback import OrchestrationError
from canvas_orchestrator.providers.base import ProviderError
from canvas_orchestrator.providers.registry import RegistryError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4


_ROUTES: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
    ((ConfigLoadError, ConfigValidationError, FileNotFoundError), ExitCode.CONFIG_ERROR),
    ((ProviderError, RegistryError, OrchestrationError), ExitCode.PROVIDER_ERROR),
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and map any escaping exception onto an ``ExitCode``."""

    from canvas_orchestrator.ui.cli import run_cli

    try:
        code = run_cli(argv)
    except SystemExit as exc:
        code = exc.code
    except Exception as exc:  # noqa: BLE001
        exit_code = exit_code_for(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(exit_code)

    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int) and code in set(ExitCode):
        return code
    if isinstance(code, str) and code.strip():
        print(code.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Classify ``exc`` by the first known error type along its cause chain."""

    for item in _chain(exc):
        for types, code in _ROUTES:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or (
            None if current.__suppress_context__ else current.__context__
        )


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
