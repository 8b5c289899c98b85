"""Sortable identifiers for sessions, runs, actions, artifacts and events.

Every id is ``<kind>-<ulid>``: a short kind prefix followed by a 26-character
Crockford Base32 ULID (48-bit millisecond timestamp, 80 random bits).
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
_RANDOM_BITS: Final[int] = 80
_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_SEPARATOR: Final[str] = "-"

RandBytes = Callable[[int], bytes]


class IdKind(StrEnum):
    SESSION = "ses"
    RUN = "run"
    ACTION = "act"
    ARTIFACT = "art"
    EVENT = "evt"


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    if isinstance(timestamp_ms, bool) or not 0 <= timestamp_ms <= _MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {timestamp_ms!r}")
    entropy = (randbytes or secrets.token_bytes)(_RANDOM_BITS // 8)
    if len(entropy) != _RANDOM_BITS // 8:
        raise ValueError("randbytes must return exactly 10 bytes")

    value = (timestamp_ms << _RANDOM_BITS) | int.from_bytes(entropy, "big")
    digits = []
    for _ in range(ULID_LENGTH):
        digits.append(CROCKFORD_BASE32_ALPHABET[value & 31])
        value >>= 5
    return "".join(reversed(digits))


def parse_ulid_timestamp_ms(ulid: str) -> int:
    """Return the millisecond timestamp encoded in ``ulid``; ``ValueError`` if malformed."""

    if not isinstance(ulid, str) or len(ulid) != ULID_LENGTH:
        raise ValueError(f"ulid must be a {ULID_LENGTH}-character string")
    value = 0
    for char in ulid.upper():
        index = CROCKFORD_BASE32_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"invalid ULID character {char!r}")
        value = (value << 5) | index
    if value >> 128:
        raise ValueError("ulid overflow: value exceeds 128 bits")
    return value >> _RANDOM_BITS


def new_id(
    kind: IdKind | str,
    *,
    timestamp_ms: int | None = None,
    randbytes: RandBytes | None = None,
) -> str:
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{IdKind(kind).value}{_SEPARATOR}{ulid}"


def validate_id(value: str, kind: IdKind | str) -> None:
    expected = IdKind(kind)
    if not isinstance(value, str):
        raise ValueError(f"expected prefix '{expected.value}{_SEPARATOR}', got {value!r}")
    prefix, separator, ulid = value.partition(_SEPARATOR)
    if prefix != expected.value or not separator:
        raise ValueError(f"expected prefix '{expected.value}{_SEPARATOR}', got {value!r}")
    parse_ulid_timestamp_ms(ulid)


def generate_session_id() -> str:
    return new_id(IdKind.SESSION)


def generate_run_id() -> str:
    return new_id(IdKind.RUN)


def generate_action_id() -> str:
    return new_id(IdKind.ACTION)


def generate_artifact_id() -> str:
    return new_id(IdKind.ARTIFACT)


def generate_event_id() -> str:
    return new_id(IdKind.EVENT)


def validate_event_id(value: str) -> None:
    validate_id(value, IdKind.EVENT)


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "ULID_LENGTH",
    "IdKind",
    "generate_action_id",
    "generate_artifact_id",
    "generate_event_id",
    "generate_run_id",
    "generate_session_id",
    "generate_ulid",
    "new_id",
    "parse_ulid_timestamp_ms",
    "validate_event_id",
    "validate_id",
]
