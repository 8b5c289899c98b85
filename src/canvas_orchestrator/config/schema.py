"""
canvas-orchestrator — configuration schema and validation.

File: src/canvas_orchestrator/config/schema.py
Last updated: 2026-10-19

Purpose
- Define the built-in defaults and the strict shape of ``canvas.toml``.

What should be included in this file
- One declarative field table per section (type, bounds, choices).
- Cross-field rules that a single field cannot express.
- Deep-merge and redaction helpers shared with the loader.

Functional requirements
- Validation reports every issue at once as (dotted path, message) pairs.
- Provider secrets never live in config; only ``*_env`` variable names may appear.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from canvas_orchestrator.constants import CONFIG_SCHEMA_VERSION, DEFAULT_LOG_DIR

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_Reporter = Callable[[str, str], None]
FieldKind = Literal["int", "float", "bool", "str", "path", "choice"]

_SECRET_MARKERS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passwd",
    "api_key",
    "apikey",
    "private_key",
    "credential",
)
_SECRET_WORDS: Final[frozenset[str]] = frozenset({"key", "auth", "api"})
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")


class MetaConfig(TypedDict):
    schema_version: int


class RegistryConfig(TypedDict):
    catalog_path: str | None


class PollerConfig(TypedDict):
    initial_interval_seconds: float
    max_interval_seconds: float
    backoff_multiplier: float
    timeout_seconds: float
    poll_retries: int
    poll_retry_delay_seconds: float
    cancel_ack_timeout_seconds: float


class FallbackConfig(TypedDict):
    max_same_tier_retries: int
    retry_initial_delay_seconds: float
    retry_max_delay_seconds: float
    probe_interval_runs: int
    batch_concurrency: int


class ActionsConfig(TypedDict):
    pending_policy: Literal["reject", "queue"]
    max_queue: int
    require_approval: bool


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    event_buffer_size: int


class CanvasConfig(TypedDict):
    meta: MetaConfig
    registry: RegistryConfig
    poller: PollerConfig
    fallback: FallbackConfig
    actions: ActionsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[CanvasConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "registry": {"catalog_path": None},
    "poller": {
        "initial_interval_seconds": 1.0,
        "max_interval_seconds": 10.0,
        "backoff_multiplier": 2.0,
        "timeout_seconds": 300.0,
        "poll_retries": 3,
        "poll_retry_delay_seconds": 0.5,
        "cancel_ack_timeout_seconds": 5.0,
    },
    "fallback": {
        "max_same_tier_retries": 2,
        "retry_initial_delay_seconds": 1.0,
        "retry_max_delay_seconds": 8.0,
        "probe_interval_runs": 10,
        "batch_concurrency": 4,
    },
    "actions": {
        "pending_policy": "reject",
        "max_queue": 8,
        "require_approval": True,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": f"{DEFAULT_LOG_DIR.as_posix()}/",
        "log_to_stdout": False,
        "event_buffer_size": 512,
    },
}


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Type and bounds for one ``section.key`` config field."""

    kind: FieldKind
    minimum: float | None = None
    exclusive: bool = False
    choices: tuple[str, ...] = ()
    nullable: bool = False
    upper: bool = False


CONFIG_FIELDS: Final[Mapping[str, Mapping[str, FieldSpec]]] = {
    "meta": {"schema_version": FieldSpec("int", minimum=1)},
    "registry": {"catalog_path": FieldSpec("path", nullable=True)},
    "poller": {
        "initial_interval_seconds": FieldSpec("float", minimum=0.0, exclusive=True),
        "max_interval_seconds": FieldSpec("float", minimum=0.0, exclusive=True),
        "backoff_multiplier": FieldSpec("float", minimum=1.0),
        "timeout_seconds": FieldSpec("float", minimum=0.0, exclusive=True),
        "poll_retries": FieldSpec("int", minimum=0),
        "poll_retry_delay_seconds": FieldSpec("float", minimum=0.0),
        "cancel_ack_timeout_seconds": FieldSpec("float", minimum=0.0, exclusive=True),
    },
    "fallback": {
        "max_same_tier_retries": FieldSpec("int", minimum=0),
        "retry_initial_delay_seconds": FieldSpec("float", minimum=0.0),
        "retry_max_delay_seconds": FieldSpec("float", minimum=0.0),
        "probe_interval_runs": FieldSpec("int", minimum=0),
        "batch_concurrency": FieldSpec("int", minimum=1),
    },
    "actions": {
        "pending_policy": FieldSpec("choice", choices=("queue", "reject")),
        "max_queue": FieldSpec("int", minimum=0),
        "require_approval": FieldSpec("bool"),
    },
    "observability": {
        "log_level": FieldSpec(
            "choice", choices=("DEBUG", "ERROR", "INFO", "WARNING"), upper=True
        ),
        "log_dir": FieldSpec("path"),
        "log_to_stdout": FieldSpec("bool"),
        "event_buffer_size": FieldSpec("int", minimum=1),
    },
}

# (section, lower field, upper field): upper must be >= lower.
_ORDERED_PAIRS: Final[tuple[tuple[str, str, str], ...]] = (
    ("poller", "initial_interval_seconds", "max_interval_seconds"),
    ("fallback", "retry_initial_delay_seconds", "retry_max_delay_seconds"),
)

# Path fields resolved relative to the config file's directory.
PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, fields in CONFIG_FIELDS.items()
    for key, spec in fields.items()
    if spec.kind == "path"
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or '- unknown validation failure'}")


def default_config() -> CanvasConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade canvas.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the canvas-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; nested mappings merge key by key."""

    merged: dict[str, Any] = {
        key: merge_config({}, value) if isinstance(value, Mapping) else copy.deepcopy(value)
        for key, value in base.items()
    }
    for key, value in overlay.items():
        existing = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(existing if isinstance(existing, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Check ``config`` against ``CONFIG_FIELDS`` and return normalized values or issues."""

    issues: list[ConfigValidationIssue] = []

    def report(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path=path, message=message))

    if not isinstance(config, Mapping):
        report("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=tuple(issues))

    _check_keys(config, CONFIG_FIELDS, "", report)
    normalized: dict[str, Any] = {}
    for section, fields in CONFIG_FIELDS.items():
        raw_section = config.get(section)
        if raw_section is None:
            continue
        if not isinstance(raw_section, Mapping):
            report(section, f"expected object, got {type(raw_section).__name__}")
            continue
        _check_keys(raw_section, fields, section, report, optional=_nullable(fields))
        values: dict[str, Any] = {}
        for key, spec in fields.items():
            if key in raw_section:
                values[key] = _coerce(raw_section[key], spec, f"{section}.{key}", report)
            elif spec.nullable:
                values[key] = None
        normalized[section] = values

    version = normalized.get("meta", {}).get("schema_version")
    if isinstance(version, int) and version != ConfigSchemaVersion:
        report("meta.schema_version", migration_guidance(version))

    for section, lower, upper in _ORDERED_PAIRS:
        values = normalized.get(section, {})
        low, high = values.get(lower), values.get(upper)
        if isinstance(low, float) and isinstance(high, float) and high < low:
            report(f"{section}.{upper}", f"must be >= {lower}")

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy ``config`` with every secret-looking key replaced by ``<redacted>``."""

    if not isinstance(config, Mapping):
        return {}
    out: dict[str, Any] = {}
    for key in sorted(config):
        value = config[key]
        if looks_sensitive_key(key):
            out[key] = "<redacted>"
        elif isinstance(value, Mapping):
            out[key] = redact_config(value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def looks_sensitive_key(key: str) -> bool:
    normalized = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key.strip()).lower()
    if normalized.endswith("_env"):
        return False
    if any(marker in normalized for marker in _SECRET_MARKERS):
        return True
    return any(word in _SECRET_WORDS for word in _WORD_SPLIT.split(normalized))


def _nullable(fields: Mapping[str, FieldSpec]) -> frozenset[str]:
    return frozenset(key for key, spec in fields.items() if spec.nullable)


def _check_keys(
    payload: Mapping[str, object],
    allowed: Mapping[str, object],
    path: str,
    report: _Reporter,
    *,
    optional: frozenset[str] = frozenset(),
) -> None:
    prefix = f"{path}." if path else ""
    for key in sorted(str(item) for item in payload):
        if key in allowed:
            continue
        if looks_sensitive_key(key):
            report(
                prefix + key,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            report(prefix + key, "unknown field")
    for key in sorted(set(allowed) - set(payload) - optional):
        report(prefix + key, "missing required field")


def _coerce(value: object, spec: FieldSpec, path: str, report: _Reporter) -> object:
    if value is None and spec.nullable:
        return None
    if spec.kind == "bool":
        if not isinstance(value, bool):
            report(path, f"expected boolean, got {type(value).__name__}")
        return value
    if spec.kind in ("int", "float"):
        return _coerce_number(value, spec, path, report)

    if not isinstance(value, str):
        report(path, f"expected string, got {type(value).__name__}")
        return value
    text = value.strip().upper() if spec.upper else value.strip()
    if not text:
        report(path, "must not be empty")
    elif spec.kind == "path" and "\x00" in text:
        report(path, "must not contain NUL bytes")
    elif spec.kind == "choice" and text not in spec.choices:
        report(path, f"invalid value {text!r}; expected one of: {', '.join(spec.choices)}")
    return text


def _coerce_number(value: object, spec: FieldSpec, path: str, report: _Reporter) -> object:
    if spec.kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            report(path, f"expected integer, got {type(value).__name__}")
            return value
        number: float = value
    else:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            report(path, f"expected number, got {type(value).__name__}")
            return value
        number = float(value)
        if not math.isfinite(number):
            report(path, "must be finite")
            return number

    minimum = spec.minimum
    if minimum is not None:
        bound = minimum if spec.kind == "float" else int(minimum)
        if spec.exclusive and number <= minimum:
            report(path, f"must be > {bound}")
        elif not spec.exclusive and number < minimum:
            report(path, f"must be >= {bound}")
    return number


__all__ = [
    "CONFIG_FIELDS",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "CanvasConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "FieldSpec",
    "assert_valid_config",
    "default_config",
    "looks_sensitive_key",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
