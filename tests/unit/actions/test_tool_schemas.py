from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from canvas_orchestrator.actions.schemas import (
    PROFILE_LAYER,
    BannerStyle,
    GenerateBackgroundArgs,
    ImageArgs,
    ToolArgumentError,
    ToolCall,
    ToolName,
    ToolSource,
    UpscaleImageArgs,
    UpscaleQuality,
    parse_tool_call,
    tool_definitions,
)
from canvas_orchestrator.domain.models import Capability

_IMAGE = "https://cdn.example.test/banner.png"


def test_generate_background_defaults_and_normalization() -> None:
    call = parse_tool_call(
        "generate_background",
        {"prompt": "  navy gradient with subtle grid ", "style": "Minimal", "quality": "4k"},
        source="voice",
    )

    assert call.name is ToolName.GENERATE_BACKGROUND
    assert call.source is ToolSource.VOICE
    assert call.capability is Capability.IMAGE_GENERATION
    assert isinstance(call.arguments, GenerateBackgroundArgs)
    assert call.arguments.style is BannerStyle.MINIMAL
    assert call.arguments.quality == "4K"

    request = call.to_request()
    assert request.prompt == "navy gradient with subtle grid"
    assert request.output_size == 4096
    assert request.options == {"quality": "4K", "style": "minimal"}


def test_generate_background_uses_default_preset() -> None:
    call = parse_tool_call("generate_background", {"prompt": "sunrise"})

    assert call.to_request().output_size == 2048
    assert call.preferred_provider is None


@pytest.mark.parametrize(
    ("quality", "provider_id"),
    [
        ("fast", "replicate/real-esrgan"),
        ("balanced", "replicate/recraft-crisp-upscale"),
        ("BEST", "replicate/magic-image-refiner"),
        (None, "replicate/recraft-crisp-upscale"),
    ],
)
def test_upscale_quality_selects_preferred_provider(quality: str | None, provider_id: str) -> None:
    arguments: dict[str, object] = {"image_url": _IMAGE}
    if quality is not None:
        arguments["quality"] = quality

    call = parse_tool_call("upscale_image", arguments)

    assert isinstance(call.arguments, UpscaleImageArgs)
    assert call.preferred_provider == provider_id
    assert call.to_request().inputs == {"image": _IMAGE}


def test_enhance_face_targets_profile_layer() -> None:
    call = parse_tool_call("enhance_face", {"image_url": _IMAGE})

    assert isinstance(call.arguments, ImageArgs)
    assert call.target_layer == PROFILE_LAYER
    assert call.display_name == "Enhance Face"


def test_unknown_tool_is_rejected() -> None:
    with pytest.raises(ToolArgumentError) as excinfo:
        parse_tool_call("delete_everything", {})

    assert excinfo.value.tool == "delete_everything"
    [issue] = excinfo.value.issues
    assert issue.path == "name"


def test_all_argument_issues_are_reported_together() -> None:
    with pytest.raises(ToolArgumentError) as excinfo:
        parse_tool_call(
            "upscale_image",
            {"quality": "ultra", "zoom": 4, "extra": True},
            source="email",
        )

    assert [issue.path for issue in excinfo.value.issues] == [
        "source",
        "arguments.extra",
        "arguments.zoom",
        "arguments.image_url",
        "arguments.quality",
    ]
    assert "expected one of: fast, balanced, best" in str(excinfo.value)


@pytest.mark.parametrize(
    ("arguments", "message"),
    [
        ({"instruction": "   ", "image_url": _IMAGE}, "must not be empty"),
        ({"instruction": 42, "image_url": _IMAGE}, "expected string, got int"),
    ],
)
def test_argument_values_must_be_non_empty_strings(
    arguments: dict[str, object], message: str
) -> None:
    with pytest.raises(ToolArgumentError, match=message):
        parse_tool_call("magic_edit", arguments)


def test_arguments_must_be_an_object() -> None:
    with pytest.raises(ToolArgumentError, match="expected object"):
        parse_tool_call("restore_image", ["not", "a", "mapping"])  # type: ignore[arg-type]


def test_tool_call_checks_argument_type_and_timestamp() -> None:
    with pytest.raises(TypeError, match="UpscaleImageArgs"):
        ToolCall(ToolName.UPSCALE_IMAGE, ImageArgs(image_url=_IMAGE))
    with pytest.raises(ValueError, match="timezone-aware"):
        ToolCall(
            ToolName.REMOVE_BACKGROUND,
            ImageArgs(image_url=_IMAGE),
            issued_at=datetime(2026, 10, 19, 9, 0),
        )


def test_to_dict_is_plain_json() -> None:
    issued = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
    call = parse_tool_call(
        "upscale_image",
        {"image_url": _IMAGE, "quality": UpscaleQuality.FAST.value},
        issued_at=issued,
    )

    assert call.to_dict() == {
        "name": "upscale_image",
        "source": "chat",
        "issued_at": "2026-10-19T09:30:00+00:00",
        "arguments": {"image_url": _IMAGE, "quality": "fast"},
    }


def test_tool_definitions_follow_vocabulary_order() -> None:
    definitions: list[Any] = tool_definitions()

    names = [definition["function"]["name"] for definition in definitions]
    assert names == [item.value for item in ToolName]

    upscale = definitions[names.index("upscale_image")]["function"]
    parameters = upscale["parameters"]
    assert parameters["required"] == ["image_url"]
    assert parameters["properties"]["quality"]["enum"] == ["fast", "balanced", "best"]
    assert parameters["properties"]["quality"]["default"] == "balanced"
