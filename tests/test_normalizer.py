from __future__ import annotations

import pytest

from keyfold.normalizer import NormalizedForm, meaningful_tokens, normalize, normalize_text, tokenize


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Zero-Energy Building", "zero energy building"),
        ("demand_side  management", "demand side management"),
        ("heat–pump", "heat pump"),
        ("  City  ", "city"),
        ("beta-ga2o3 single-crystals", "beta ga2o3 single crystals"),
    ],
)
def test_normalize_unifies_case_and_separators(raw: str, expected: str) -> None:
    assert normalize_text(raw) == expected


def test_normalize_strips_short_qualifiers() -> None:
    form = normalize("zero energy building (ZEB)")
    assert form == NormalizedForm("zero energy building", ("zeb",))

    form = normalize("si(111)")
    assert form.text == "si"
    assert form.qualifiers == ("111",)


def test_normalize_keeps_long_parentheticals() -> None:
    assert normalize_text("solar cell (perovskite)") == "solar cell (perovskite)"


def test_normalize_handles_empty_and_qualifier_only_input() -> None:
    assert normalize("").text == ""
    assert normalize("(zeb)") == NormalizedForm("", ("zeb",))


def test_normalize_is_idempotent() -> None:
    samples = [
        "Zero-Energy Building (ZEB)",
        "si(111)",
        "beta-Ga2O3 single-crystals",
        "(a_)b",
        "life cycle assessment (lca) (2)",
        "",
    ]
    for raw in samples:
        once = normalize_text(raw)
        assert normalize_text(once) == once


def test_tokenize_and_meaningful_tokens() -> None:
    tokens = tokenize("life cycle assessment of buildings")
    assert tokens == ["life", "cycle", "assessment", "of", "buildings"]
    assert meaningful_tokens(tokens) == ["life", "cycle", "assessment", "buildings"]
    assert normalize("Heating and Cooling").tokens == ["heating", "and", "cooling"]
