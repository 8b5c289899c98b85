"""Command-line surface: argparse router and ``rich`` output rendering."""

from __future__ import annotations

from canvas_orchestrator.ui.cli import CLIError, build_parser, run_cli
from canvas_orchestrator.ui.render import CLIRenderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "run_cli"]
