"""Deterministic client bucketing for partial rollouts.

A client is placed in one of 100 buckets by hashing its unique id together
with the release tag. The hash is the 32-bit rolling string hash used by
deployed clients and older servers, so bucket assignment is stable across
processes, restarts, and implementations.
"""

from __future__ import annotations

DELIMITER = "-"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_code_units(text: str):
    for char in text:
        point = ord(char)
        if point > 0xFFFF:
            point -= 0x10000
            yield 0xD800 + (point >> 10)
            yield 0xDC00 + (point & 0x3FF)
        else:
            yield point


def hash_code(text: str) -> int:
    """``h = (h << 5) - h + unit`` over UTF-16 code units.

    The shift wraps to a signed 32-bit integer; the subtraction and the
    addition carry into the next step before wrapping.
    """
    h = 0
    for unit in _utf16_code_units(text):
        h = _to_int32(_to_int32(h) << 5) - h + unit
    return h


def is_selected_for_rollout(client_id: str, rollout: int, release_tag: str) -> bool:
    """Whether ``client_id`` falls inside the first ``rollout`` percent."""
    identifier = f"{client_id}{DELIMITER}{release_tag}"
    return abs(hash_code(identifier)) % 100 < rollout


def is_unfinished_rollout(rollout: int | None) -> bool:
    return bool(rollout) and rollout != 100
