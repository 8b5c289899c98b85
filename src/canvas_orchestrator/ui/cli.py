"""
canvas-orchestrator — command-line interface

File: src/canvas_orchestrator/ui/cli.py
Last updated: 2026-10-19

Purpose
- Offline inspection of a deployment: tier order per capability, the tool-call
  vocabulary, credential coverage, per-call cost and the effective config.

Functional requirements
- Every command accepts ``--json`` and then prints exactly one JSON object.
- Exit codes: 0 success, 2 config error, 3 provider or registry error.
- The CLI never calls a provider.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from rich.console import Console

from canvas_orchestrator.actions.schemas import TOOL_SPECS, ToolName, tool_definitions
from canvas_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from canvas_orchestrator.domain.models import Capability, ProviderModel
from canvas_orchestrator.providers.base import EnvironmentCredentials
from canvas_orchestrator.providers.registry import ProviderRegistry, RegistryError
from canvas_orchestrator.runtime import registry_from_config
from canvas_orchestrator.ui.render import CLIRenderer

EXIT_CONFIG_ERROR = 2
EXIT_PROVIDER_ERROR = 3

_CAPABILITY_CHOICES = [item.value for item in Capability]


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Failure reported as ``error: <message>`` with ``exit_code``."""

    message: str
    exit_code: int = 4

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class _Context:
    args: argparse.Namespace
    environ: Mapping[str, str]
    console: Console | None

    @property
    def as_json(self) -> bool:
        return bool(self.args.json)

    def renderer(self) -> CLIRenderer:
        return CLIRenderer(no_color=bool(self.args.no_color), console=self.console)

    def config(self) -> dict[str, Any]:
        overrides: dict[str, object] = {}
        if self.args.catalog_path:
            overrides["registry.catalog_path"] = os.path.abspath(self.args.catalog_path)
        try:
            return load_config(
                self.args.config_path, cli_overrides=overrides, environ=self.environ
            )
        except (ConfigLoadError, ConfigValidationError) as exc:
            raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc

    def registry(self, config: Mapping[str, object]) -> ProviderRegistry:
        try:
            return registry_from_config(config)
        except ValueError as exc:
            raise CLIError(f"provider catalog: {exc}", exit_code=EXIT_CONFIG_ERROR) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas",
        description="Inspect provider tiers, tools and config for canvas-orchestrator.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", dest="config_path", help="canvas TOML config path")
    common.add_argument("--catalog", dest="catalog_path", help="provider catalog YAML path")
    common.add_argument("--json", action="store_true", help="print one JSON object")
    common.add_argument("--no-color", action="store_true", help="disable colored output")

    commands = parser.add_subparsers(dest="command", required=True)

    tiers = commands.add_parser("tiers", parents=[common], help="show fallback tier order")
    tiers.add_argument("capability", nargs="?", choices=_CAPABILITY_CHOICES)
    tiers.set_defaults(handler=_cmd_tiers)

    tools = commands.add_parser("tools", parents=[common], help="list the tool-call vocabulary")
    tools.set_defaults(handler=_cmd_tools)

    doctor = commands.add_parser(
        "doctor", parents=[common], help="check config, catalog and credentials"
    )
    doctor.set_defaults(handler=_cmd_doctor)

    estimate = commands.add_parser(
        "estimate", parents=[common], help="per-call cost for a capability"
    )
    estimate.add_argument("capability", choices=_CAPABILITY_CHOICES)
    estimate.add_argument("--provider", dest="provider_id", help="price this provider instead")
    estimate.set_defaults(handler=_cmd_estimate)

    config = commands.add_parser("config", parents=[common], help="print the redacted config")
    config.set_defaults(handler=_cmd_config)

    return parser


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    console: Console | None = None,
) -> int:
    args = build_parser().parse_args(None if argv is None else list(argv))
    handler: Callable[[_Context], int] = args.handler
    context = _Context(args, dict(os.environ if environ is None else environ), console)
    try:
        return handler(context)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_tiers(ctx: _Context) -> int:
    registry = ctx.registry(ctx.config())
    credentials = EnvironmentCredentials(ctx.environ)
    capabilities = (
        (Capability(ctx.args.capability),) if ctx.args.capability else registry.capabilities()
    )
    try:
        tiers = {capability: registry.tiers_for(capability) for capability in capabilities}
    except RegistryError as exc:
        raise CLIError(str(exc), exit_code=EXIT_PROVIDER_ERROR) from exc

    if ctx.as_json:
        _print_json(
            {
                "command": "tiers",
                "catalog_version": registry.version,
                "tiers": {
                    capability.value: [
                        {
                            **model.to_dict(),
                            "tier_index": index,
                            "credential_available": credentials.has_credential(model),
                        }
                        for index, model in enumerate(tier)
                    ]
                    for capability, tier in tiers.items()
                },
            }
        )
        return 0

    out = ctx.renderer()
    out.heading(f"Provider tiers (catalog {registry.version})")
    for capability, tier in tiers.items():
        out.table(
            ("tier", "provider", "name", "mode", "max size", "cost/call", "credential"),
            [
                _tier_row(index, model, credentials.has_credential(model))
                for index, model in enumerate(tier)
            ],
            title=capability.value,
        )
    return 0


def _cmd_tools(ctx: _Context) -> int:
    if ctx.as_json:
        _print_json({"command": "tools", "tools": tool_definitions()})
        return 0

    specs = [TOOL_SPECS[name] for name in ToolName]
    ctx.renderer().table(
        ("tool", "name", "capability", "layer", "required"),
        [
            (
                spec.name.value,
                spec.display_name,
                spec.capability.value,
                spec.target_layer,
                ", ".join(item.name for item in spec.fields if item.required) or "-",
            )
            for spec in specs
        ],
        title="Tools",
    )
    return 0


def _cmd_doctor(ctx: _Context) -> int:
    checks: list[tuple[str, bool, str]] = []
    registry: ProviderRegistry | None = None
    try:
        config = ctx.config()
        checks.append(("config", True, "loaded"))
        registry = ctx.registry(config)
        checks.append(
            ("catalog", True, f"version {registry.version}, {len(registry.providers)} provider(s)")
        )
    except CLIError as exc:
        checks.append(("config" if not checks else "catalog", False, str(exc)))

    if registry is not None:
        credentials = EnvironmentCredentials(ctx.environ)
        for capability in registry.capabilities():
            tier = registry.tiers_for(capability)
            usable = [model.provider_id for model in tier if credentials.has_credential(model)]
            if usable:
                detail = ", ".join(usable)
            else:
                names = sorted({model.credential_env or "?" for model in tier})
                detail = f"no credential; set one of {', '.join(names)}"
            checks.append((f"capability:{capability.value}", bool(usable), detail))

    healthy = all(passed for _, passed, _ in checks)
    if ctx.as_json:
        _print_json(
            {
                "command": "doctor",
                "ok": healthy,
                "checks": [
                    {"name": name, "status": "ok" if passed else "fail", "detail": detail}
                    for name, passed, detail in checks
                ],
            }
        )
        return 0

    out = ctx.renderer()
    out.heading("canvas doctor")
    for name, passed, detail in checks:
        (out.ok if passed else out.fail)(f"{name}: {detail}")
    out.text("All checks passed." if healthy else "Some checks failed.")
    return 0


def _cmd_estimate(ctx: _Context) -> int:
    registry = ctx.registry(ctx.config())
    capability = Capability(ctx.args.capability)
    try:
        cost = registry.estimate_cost(capability, ctx.args.provider_id)
        provider_id = ctx.args.provider_id or registry.tiers_for(capability)[0].provider_id
    except RegistryError as exc:
        raise CLIError(str(exc), exit_code=EXIT_PROVIDER_ERROR) from exc

    if ctx.as_json:
        _print_json(
            {
                "command": "estimate",
                "capability": capability.value,
                "provider_id": provider_id,
                "cost_per_call_usd": cost,
            }
        )
        return 0
    ctx.renderer().text(f"{capability.value} via {provider_id}: ${cost:.3f} per call")
    return 0


def _cmd_config(ctx: _Context) -> int:
    redacted = effective_config(ctx.config())
    if ctx.as_json:
        _print_json({"command": "config", "config": redacted})
    else:
        ctx.renderer().text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _print_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _tier_row(index: int, model: ProviderModel, has_credential: bool) -> tuple[str, ...]:
    return (
        str(index + 1),
        model.provider_id,
        model.label,
        "async" if model.is_async else "sync",
        "-" if model.max_output_size is None else str(model.max_output_size),
        f"${model.cost_per_call_usd:.3f}",
        "set" if has_credential else f"missing {model.credential_env}",
    )


__all__ = ["EXIT_CONFIG_ERROR", "EXIT_PROVIDER_ERROR", "CLIError", "build_parser", "run_cli"]
