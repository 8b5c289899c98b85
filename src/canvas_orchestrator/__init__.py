"""
canvas-orchestrator — package root

File: src/canvas_orchestrator/__init__.py
Last updated: 2026-10-19

Purpose
- Package root. Tiered provider fallback, async job polling, and
  approval-gated canvas actions for generative image and voice tools.

What should be included in this file
- Version export and a minimal public API surface.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
