from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from canvas_orchestrator.domain.ids import (
    CROCKFORD_BASE32_ALPHABET,
    ULID_LENGTH,
    IdKind,
    generate_action_id,
    generate_event_id,
    generate_session_id,
    generate_ulid,
    new_id,
    parse_ulid_timestamp_ms,
    validate_event_id,
    validate_id,
)


def _fixed_bytes(size: int) -> bytes:
    return bytes(range(size))


def test_ulid_is_26_crockford_characters() -> None:
    ulid = generate_ulid()

    assert len(ulid) == ULID_LENGTH
    assert set(ulid) <= set(CROCKFORD_BASE32_ALPHABET)


def test_ulid_is_deterministic_with_injected_entropy() -> None:
    first = generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=_fixed_bytes)
    second = generate_ulid(timestamp_ms=1_700_000_000_000, randbytes=_fixed_bytes)

    assert first == second
    assert parse_ulid_timestamp_ms(first) == 1_700_000_000_000


@given(
    earlier=st.integers(min_value=0, max_value=(1 << 47)),
    gap=st.integers(min_value=1, max_value=(1 << 47) - 1),
)
def test_ulids_sort_by_timestamp(earlier: int, gap: int) -> None:
    first = generate_ulid(timestamp_ms=earlier, randbytes=lambda size: b"\xff" * size)
    second = generate_ulid(timestamp_ms=earlier + gap, randbytes=lambda size: b"\x00" * size)

    assert first < second


@pytest.mark.parametrize("timestamp_ms", [-1, 1 << 48, True])
def test_ulid_rejects_out_of_range_timestamp(timestamp_ms: int) -> None:
    with pytest.raises(ValueError, match="timestamp_ms"):
        generate_ulid(timestamp_ms=timestamp_ms)


def test_ulid_rejects_short_entropy() -> None:
    with pytest.raises(ValueError, match="10 bytes"):
        generate_ulid(randbytes=lambda size: b"\x00" * (size - 1))


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("short", "26-character"),
        ("0" * 25 + "U", "invalid ULID character"),
        ("8" + "0" * 25, "overflow"),
    ],
)
def test_parse_rejects_malformed_ulids(value: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_ulid_timestamp_ms(value)


def test_generators_use_kind_prefixes() -> None:
    assert generate_session_id().startswith("ses-")
    assert generate_action_id().startswith("act-")
    event_id = generate_event_id()
    assert event_id.startswith("evt-")
    validate_event_id(event_id)


def test_validate_id_checks_prefix_and_body() -> None:
    run_id = new_id(IdKind.RUN)
    validate_id(run_id, "run")

    with pytest.raises(ValueError, match="expected prefix 'evt-'"):
        validate_event_id(run_id)
    with pytest.raises(ValueError):
        validate_id("run-not-a-ulid", IdKind.RUN)
