"""Detect compound keyword phrases that contain a shorter phrase."""

from __future__ import annotations

from typing import Sequence

from .normalizer import meaningful_tokens, tokenize

NEGATION_TOKENS = frozenset({"anti", "no", "non", "not", "without"})


def _subsequence_positions(short: Sequence[str], long: Sequence[str]) -> list[int] | None:
    positions: list[int] = []
    cursor = 0
    for token in short:
        while cursor < len(long) and long[cursor] != token:
            cursor += 1
        if cursor == len(long):
            return None
        positions.append(cursor)
        cursor += 1
    return positions


def is_subsumed(
    a: str,
    b: str,
    *,
    min_shared_tokens: int = 2,
    max_extra_tokens: int = 3,
) -> bool:
    """Return True when one canonical term is an aligned sub-phrase of the other.

    The shorter term's meaningful tokens must appear in order inside the
    longer term, anchored at its first or last meaningful token. At least
    ``min_shared_tokens`` meaningful tokens must be shared, the longer term
    may add at most ``max_extra_tokens`` meaningful tokens, and none of the
    added tokens may be a negation ("non zero energy building" is not a
    "zero energy building").
    """

    if min_shared_tokens < 1:
        raise ValueError("min_shared_tokens must be at least 1")

    left = meaningful_tokens(tokenize(a))
    right = meaningful_tokens(tokenize(b))
    if not left or not right:
        return False
    if left == right:
        return len(left) >= min_shared_tokens

    short, long = (left, right) if len(left) <= len(right) else (right, left)
    if len(short) < min_shared_tokens:
        return False
    if len(long) - len(short) > max_extra_tokens:
        return False

    leftmost = _subsequence_positions(short, long)
    if leftmost is None:
        return False
    reversed_match = _subsequence_positions(short[::-1], long[::-1]) or []
    rightmost = [len(long) - 1 - index for index in reversed(reversed_match)]

    for positions in (leftmost, rightmost):
        if not positions:
            continue
        if positions[0] != 0 and positions[-1] != len(long) - 1:
            continue
        matched = set(positions)
        extras = [token for index, token in enumerate(long) if index not in matched]
        if not any(token in NEGATION_TOKENS for token in extras):
            return True
    return False


__all__ = ["NEGATION_TOKENS", "is_subsumed"]
