"""
canvas-orchestrator — tool-call vocabulary and argument schemas.

File: src/canvas_orchestrator/actions/schemas.py
Last updated: 2026-10-19

Purpose
- Define the fixed set of canvas tools an agent may call and validate their arguments.

What should be included in this file
- Tool names, sources, and the capability each tool maps to.
- One typed argument dataclass per argument shape (tagged by tool name).
- Strict parsing of untyped agent arguments into those dataclasses.
- JSON-schema style tool definitions for agent front ends.

Functional requirements
- Unknown tools, unknown arguments, missing required arguments and enum violations
  are reported together as structured issues.

Non-functional requirements
- Deterministic ordering of issues and definitions.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Final, TypeAlias

from canvas_orchestrator.domain.models import (
    DEFAULT_OUTPUT_PRESET,
    OUTPUT_SIZE_PRESETS,
    ArtifactRequest,
    Capability,
    JSONValue,
    resolve_output_size,
)

UTC = timezone.utc

BACKGROUND_LAYER: Final[str] = "background"
PROFILE_LAYER: Final[str] = "profile"


class ToolName(StrEnum):
    GENERATE_BACKGROUND = "generate_background"
    MAGIC_EDIT = "magic_edit"
    REMOVE_BACKGROUND = "remove_background"
    UPSCALE_IMAGE = "upscale_image"
    RESTORE_IMAGE = "restore_image"
    ENHANCE_FACE = "enhance_face"


class ToolSource(StrEnum):
    VOICE = "voice"
    CHAT = "chat"


class BannerStyle(StrEnum):
    PROFESSIONAL = "professional"
    CREATIVE = "creative"
    MINIMAL = "minimal"


class UpscaleQuality(StrEnum):
    FAST = "fast"
    BALANCED = "balanced"
    BEST = "best"


UPSCALE_PROVIDERS: Final[Mapping[UpscaleQuality, str]] = {
    UpscaleQuality.FAST: "replicate/real-esrgan",
    UpscaleQuality.BALANCED: "replicate/recraft-crisp-upscale",
    UpscaleQuality.BEST: "replicate/magic-image-refiner",
}


@dataclass(frozen=True, slots=True)
class ArgumentIssue:
    """Single structured argument validation failure."""

    path: str
    message: str


class ToolArgumentError(ValueError):
    """Raised when a tool call names an unknown tool or carries invalid arguments."""

    def __init__(self, tool: str, issues: tuple[ArgumentIssue, ...] | list[ArgumentIssue]) -> None:
        self.tool = tool
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid tool call {tool!r}:\n{rendered or '- unknown failure'}")


@dataclass(frozen=True, slots=True)
class GenerateBackgroundArgs:
    prompt: str
    style: BannerStyle | None = None
    quality: str = DEFAULT_OUTPUT_PRESET

    def __post_init__(self) -> None:
        object.__setattr__(self, "prompt", _require_text(self.prompt, "prompt"))
        if self.style is not None:
            object.__setattr__(self, "style", BannerStyle(self.style))
        quality = _require_text(self.quality, "quality").upper()
        if quality not in OUTPUT_SIZE_PRESETS:
            raise ValueError(f"quality must be one of: {', '.join(OUTPUT_SIZE_PRESETS)}")
        object.__setattr__(self, "quality", quality)

    @property
    def preferred_provider(self) -> str | None:
        return None

    def to_request(self) -> ArtifactRequest:
        options: dict[str, JSONValue] = {"quality": self.quality}
        if self.style is not None:
            options["style"] = self.style.value
        return ArtifactRequest(
            prompt=self.prompt,
            output_size=resolve_output_size(self.quality),
            options=options,
        )


@dataclass(frozen=True, slots=True)
class MagicEditArgs:
    instruction: str
    image_url: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "instruction", _require_text(self.instruction, "instruction"))
        object.__setattr__(self, "image_url", _require_text(self.image_url, "image_url"))

    @property
    def preferred_provider(self) -> str | None:
        return None

    def to_request(self) -> ArtifactRequest:
        return ArtifactRequest(prompt=self.instruction, inputs={"image": self.image_url})


@dataclass(frozen=True, slots=True)
class ImageArgs:
    """Arguments for tools that transform one existing image."""

    image_url: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "image_url", _require_text(self.image_url, "image_url"))

    @property
    def preferred_provider(self) -> str | None:
        return None

    def to_request(self) -> ArtifactRequest:
        return ArtifactRequest(inputs={"image": self.image_url})


@dataclass(frozen=True, slots=True)
class UpscaleImageArgs:
    image_url: str
    quality: UpscaleQuality = UpscaleQuality.BALANCED

    def __post_init__(self) -> None:
        object.__setattr__(self, "image_url", _require_text(self.image_url, "image_url"))
        object.__setattr__(self, "quality", UpscaleQuality(self.quality))

    @property
    def preferred_provider(self) -> str | None:
        return UPSCALE_PROVIDERS[self.quality]

    def to_request(self) -> ArtifactRequest:
        return ArtifactRequest(
            inputs={"image": self.image_url},
            options={"quality": self.quality.value},
        )


ToolArguments: TypeAlias = GenerateBackgroundArgs | MagicEditArgs | ImageArgs | UpscaleImageArgs


@dataclass(frozen=True, slots=True)
class ArgumentField:
    name: str
    description: str
    required: bool = False
    choices: tuple[str, ...] = ()
    default: str | None = None

    def schema(self) -> dict[str, JSONValue]:
        out: dict[str, JSONValue] = {"type": "string", "description": self.description}
        if self.choices:
            out["enum"] = list(self.choices)
        if self.default is not None:
            out["default"] = self.default
        return out


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Static description of one tool: capability, layer, and argument shape."""

    name: ToolName
    capability: Capability
    display_name: str
    description: str
    target_layer: str
    arguments_type: type[ToolArguments]
    fields: tuple[ArgumentField, ...]
    build: Callable[[Mapping[str, str]], ToolArguments] = field(repr=False, compare=False)

    def parameters(self) -> dict[str, JSONValue]:
        return {
            "type": "object",
            "properties": {item.name: item.schema() for item in self.fields},
            "required": [item.name for item in self.fields if item.required],
        }

    def definition(self) -> dict[str, JSONValue]:
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters(),
            },
        }


_IMAGE_URL_FIELD: Final[ArgumentField] = ArgumentField(
    name="image_url",
    description="URL or data URI of the image currently on the canvas layer",
    required=True,
)


def _image_args(values: Mapping[str, str]) -> ToolArguments:
    return ImageArgs(image_url=values["image_url"])


TOOL_SPECS: Final[Mapping[ToolName, ToolSpec]] = {
    ToolName.GENERATE_BACKGROUND: ToolSpec(
        name=ToolName.GENERATE_BACKGROUND,
        capability=Capability.IMAGE_GENERATION,
        display_name="Generate Background",
        description=(
            "Generate a professional banner background image from a text prompt. "
            "Include style, colors, mood, and professional elements in the prompt."
        ),
        target_layer=BACKGROUND_LAYER,
        arguments_type=GenerateBackgroundArgs,
        fields=(
            ArgumentField(
                name="prompt",
                description="Detailed description of the banner background to generate",
                required=True,
            ),
            ArgumentField(
                name="style",
                description="Overall style approach for the banner",
                choices=tuple(item.value for item in BannerStyle),
            ),
            ArgumentField(
                name="quality",
                description="Output resolution preset",
                choices=tuple(OUTPUT_SIZE_PRESETS),
                default=DEFAULT_OUTPUT_PRESET,
            ),
        ),
        build=lambda values: GenerateBackgroundArgs(
            prompt=values["prompt"],
            style=BannerStyle(values["style"]) if "style" in values else None,
            quality=values["quality"],
        ),
    ),
    ToolName.MAGIC_EDIT: ToolSpec(
        name=ToolName.MAGIC_EDIT,
        capability=Capability.IMAGE_EDIT,
        display_name="Magic Edit",
        description="Edit the banner currently loaded on the canvas from an instruction.",
        target_layer=BACKGROUND_LAYER,
        arguments_type=MagicEditArgs,
        fields=(
            ArgumentField(
                name="instruction",
                description="How to modify the existing banner image",
                required=True,
            ),
            _IMAGE_URL_FIELD,
        ),
        build=lambda values: MagicEditArgs(
            instruction=values["instruction"],
            image_url=values["image_url"],
        ),
    ),
    ToolName.REMOVE_BACKGROUND: ToolSpec(
        name=ToolName.REMOVE_BACKGROUND,
        capability=Capability.BACKGROUND_REMOVAL,
        display_name="Remove Background",
        description="Remove the background from an image, making it transparent.",
        target_layer=BACKGROUND_LAYER,
        arguments_type=ImageArgs,
        fields=(_IMAGE_URL_FIELD,),
        build=_image_args,
    ),
    ToolName.UPSCALE_IMAGE: ToolSpec(
        name=ToolName.UPSCALE_IMAGE,
        capability=Capability.UPSCALE,
        display_name="Upscale Image",
        description="Upscale and enhance image quality to a higher resolution.",
        target_layer=BACKGROUND_LAYER,
        arguments_type=UpscaleImageArgs,
        fields=(
            _IMAGE_URL_FIELD,
            ArgumentField(
                name="quality",
                description="fast (Real-ESRGAN), balanced (Recraft Crisp) or best (Magic Refiner)",
                choices=tuple(item.value for item in UpscaleQuality),
                default=UpscaleQuality.BALANCED.value,
            ),
        ),
        build=lambda values: UpscaleImageArgs(
            image_url=values["image_url"],
            quality=UpscaleQuality(values["quality"]),
        ),
    ),
    ToolName.RESTORE_IMAGE: ToolSpec(
        name=ToolName.RESTORE_IMAGE,
        capability=Capability.RESTORATION,
        display_name="Restore Image",
        description="Restore and enhance old, damaged, or low-quality images.",
        target_layer=BACKGROUND_LAYER,
        arguments_type=ImageArgs,
        fields=(_IMAGE_URL_FIELD,),
        build=_image_args,
    ),
    ToolName.ENHANCE_FACE: ToolSpec(
        name=ToolName.ENHANCE_FACE,
        capability=Capability.FACE_ENHANCEMENT,
        display_name="Enhance Face",
        description="Enhance facial features in portrait images for a professional look.",
        target_layer=PROFILE_LAYER,
        arguments_type=ImageArgs,
        fields=(_IMAGE_URL_FIELD,),
        build=_image_args,
    ),
}


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A validated tool call issued by a voice or chat agent."""

    name: ToolName
    arguments: ToolArguments
    source: ToolSource = ToolSource.CHAT
    issued_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", ToolName(self.name))
        object.__setattr__(self, "source", ToolSource(self.source))
        expected = TOOL_SPECS[self.name].arguments_type
        if not isinstance(self.arguments, expected):
            raise TypeError(
                f"{self.name.value} arguments must be {expected.__name__}, "
                f"got {type(self.arguments).__name__}"
            )
        if self.issued_at.tzinfo is None or self.issued_at.utcoffset() is None:
            raise ValueError("ToolCall.issued_at must be timezone-aware")

    @property
    def spec(self) -> ToolSpec:
        return TOOL_SPECS[self.name]

    @property
    def capability(self) -> Capability:
        return self.spec.capability

    @property
    def display_name(self) -> str:
        return self.spec.display_name

    @property
    def target_layer(self) -> str:
        return self.spec.target_layer

    @property
    def preferred_provider(self) -> str | None:
        return self.arguments.preferred_provider

    def to_request(self) -> ArtifactRequest:
        return self.arguments.to_request()

    def to_dict(self) -> dict[str, JSONValue]:
        arguments: dict[str, JSONValue] = {}
        for item in dataclasses.fields(self.arguments):
            value = getattr(self.arguments, item.name)
            arguments[item.name] = None if value is None else str(value)
        return {
            "name": self.name.value,
            "source": self.source.value,
            "issued_at": self.issued_at.isoformat(),
            "arguments": arguments,
        }


def parse_tool_call(
    name: str,
    arguments: Mapping[str, object] | None = None,
    *,
    source: ToolSource | str = ToolSource.CHAT,
    issued_at: datetime | None = None,
) -> ToolCall:
    """Validate untyped agent arguments and return a typed ``ToolCall``."""

    try:
        tool = ToolName(name)
    except ValueError:
        expected = ", ".join(item.value for item in ToolName)
        raise ToolArgumentError(
            str(name), [ArgumentIssue("name", f"unknown tool; expected one of: {expected}")]
        ) from None

    issues: list[ArgumentIssue] = []
    try:
        resolved_source = ToolSource(source)
    except ValueError:
        issues.append(ArgumentIssue("source", "expected one of: chat, voice"))
        resolved_source = ToolSource.CHAT

    spec = TOOL_SPECS[tool]
    payload: Mapping[str, object] = {} if arguments is None else arguments
    if not isinstance(payload, Mapping):
        raise ToolArgumentError(
            tool.value,
            [ArgumentIssue("arguments", f"expected object, got {type(payload).__name__}")],
        )

    allowed = {item.name for item in spec.fields}
    for key in sorted(str(key) for key in payload):
        if key not in allowed:
            issues.append(ArgumentIssue(f"arguments.{key}", "unknown argument"))

    values: dict[str, str] = {}
    for item in spec.fields:
        path = f"arguments.{item.name}"
        raw = payload.get(item.name)
        if raw is None:
            if item.required:
                issues.append(ArgumentIssue(path, "missing required argument"))
            elif item.default is not None:
                values[item.name] = item.default
            continue
        if not isinstance(raw, str):
            issues.append(ArgumentIssue(path, f"expected string, got {type(raw).__name__}"))
            continue
        text = raw.strip()
        if not text:
            issues.append(ArgumentIssue(path, "must not be empty"))
            continue
        if item.choices:
            matched = next((c for c in item.choices if c.lower() == text.lower()), None)
            if matched is None:
                expected = ", ".join(item.choices)
                issues.append(
                    ArgumentIssue(path, f"invalid value {text!r}; expected one of: {expected}")
                )
                continue
            text = matched
        values[item.name] = text

    if issues:
        raise ToolArgumentError(tool.value, issues)

    return ToolCall(
        name=tool,
        arguments=spec.build(values),
        source=resolved_source,
        issued_at=issued_at if issued_at is not None else datetime.now(tz=UTC),
    )


def tool_definitions() -> list[dict[str, JSONValue]]:
    """Function-calling definitions for every tool, in vocabulary order."""

    return [TOOL_SPECS[name].definition() for name in ToolName]


def _require_text(value: object, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


__all__ = [
    "BACKGROUND_LAYER",
    "PROFILE_LAYER",
    "TOOL_SPECS",
    "UPSCALE_PROVIDERS",
    "ArgumentField",
    "ArgumentIssue",
    "BannerStyle",
    "GenerateBackgroundArgs",
    "ImageArgs",
    "MagicEditArgs",
    "ToolArgumentError",
    "ToolArguments",
    "ToolCall",
    "ToolName",
    "ToolSource",
    "ToolSpec",
    "UpscaleImageArgs",
    "UpscaleQuality",
    "parse_tool_call",
    "tool_definitions",
]
