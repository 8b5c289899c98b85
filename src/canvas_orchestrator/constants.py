"""Stable constants shared across the orchestrator layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema version for the TOML config contract.
CONFIG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILE: Final[str] = "canvas.toml"
CATALOG_FILENAME: Final[str] = "catalog.yaml"
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

ENV_PREFIX: Final[str] = "CANVAS_"

__all__ = [
    "CATALOG_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_LOG_DIR",
    "ENV_PREFIX",
]
