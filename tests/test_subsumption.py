from __future__ import annotations

import pytest

from keyfold.subsumption import is_subsumed


@pytest.mark.parametrize(
    ("short", "long"),
    [
        ("beta ga2o3", "beta ga2o3 single crystal"),
        ("climate change", "climate change mitigation"),
        ("doherty amplifier", "doherty power amplifier"),
        ("energy management", "energy demand side management"),
        ("life cycle assessment", "life cycle assessment of building"),
        ("solar cell", "perovskite solar cell"),
    ],
)
def test_aligned_sub_phrases_are_subsumed(short: str, long: str) -> None:
    assert is_subsumed(short, long)
    assert is_subsumed(long, short)


def test_identical_terms_are_subsumed() -> None:
    assert is_subsumed("climate change", "climate change")


def test_single_token_terms_need_a_lower_threshold() -> None:
    assert not is_subsumed("air", "air quality")
    assert is_subsumed("air", "air quality", min_shared_tokens=1)


def test_unanchored_or_reordered_phrases_are_not_subsumed() -> None:
    assert not is_subsumed("energy storage", "thermal energy storage system")
    assert not is_subsumed("solar energy", "energy solar")
    assert not is_subsumed("climate change", "climate policy")


def test_negated_phrases_are_not_subsumed() -> None:
    assert not is_subsumed("zero energy building", "non zero energy building")
    assert not is_subsumed("energy building", "energy building without insulation")


def test_extra_token_limit() -> None:
    assert not is_subsumed("solar cell", "solar cell module array grid tie")
    assert is_subsumed("solar cell", "solar cell module array grid tie", max_extra_tokens=4)


def test_empty_terms_are_never_subsumed() -> None:
    assert not is_subsumed("", "climate change")
    assert not is_subsumed("of the", "climate change")


def test_invalid_threshold_raises() -> None:
    with pytest.raises(ValueError):
        is_subsumed("climate change", "climate change mitigation", min_shared_tokens=0)
