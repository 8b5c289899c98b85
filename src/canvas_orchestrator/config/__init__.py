"""
canvas-orchestrator configuration surface.

File: src/canvas_orchestrator/config/__init__.py
Last updated: 2026-10-19

Purpose
- Re-export the layered ``canvas.toml`` loader and the section validators that
  the runtime and the ``canvas config``/``canvas doctor`` commands consume.

Functional requirements
- ``CANVAS_<SECTION>_<KEY>`` environment values override file values.
- Load and validation failures surface as ``ConfigLoadError`` or
  ``ConfigValidationError`` with every offending path listed.
"""

from canvas_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    load_config,
    normalize_paths,
)
from canvas_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    CanvasConfig,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "CanvasConfig",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
