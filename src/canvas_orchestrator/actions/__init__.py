"""
canvas-orchestrator — action layer

File: src/canvas_orchestrator/actions/__init__.py
Last updated: 2026-10-19

Purpose
- Tool-call schemas, the canvas contract, and the approval state machine.
"""

from canvas_orchestrator.actions.canvas import CanvasStore
from canvas_orchestrator.actions.executor import (
    ActionAlreadyPending,
    ActionError,
    ActionExecutor,
    ActionState,
    InvalidTransition,
    NoPendingAction,
    PendingAction,
    PendingPolicy,
)
from canvas_orchestrator.actions.schemas import (
    TOOL_SPECS,
    BannerStyle,
    GenerateBackgroundArgs,
    ImageArgs,
    MagicEditArgs,
    ToolArgumentError,
    ToolCall,
    ToolName,
    ToolSource,
    ToolSpec,
    UpscaleImageArgs,
    UpscaleQuality,
    parse_tool_call,
    tool_definitions,
)

__all__ = [
    "TOOL_SPECS",
    "ActionAlreadyPending",
    "ActionError",
    "ActionExecutor",
    "ActionState",
    "BannerStyle",
    "CanvasStore",
    "GenerateBackgroundArgs",
    "ImageArgs",
    "InvalidTransition",
    "MagicEditArgs",
    "NoPendingAction",
    "PendingAction",
    "PendingPolicy",
    "ToolArgumentError",
    "ToolCall",
    "ToolName",
    "ToolSource",
    "ToolSpec",
    "UpscaleImageArgs",
    "UpscaleQuality",
    "parse_tool_call",
    "tool_definitions",
]
