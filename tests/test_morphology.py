from __future__ import annotations

import pytest

from keyfold.morphology import MorphologyFolder, fold


@pytest.mark.parametrize(
    ("term", "expected"),
    [
        ("cities", "city"),
        ("systems", "system"),
        ("facades", "facade"),
        ("boxes", "box"),
        ("classes", "class"),
        ("movies", "movie"),
        ("single crystals", "single crystal"),
        ("decarbonisation", "decarbonization"),
        ("colour", "color"),
        ("centre", "center"),
        ("modelling", "modeling"),
        ("aluminium", "aluminum"),
    ],
)
def test_fold_reduces_plural_and_spelling_variants(term: str, expected: str) -> None:
    assert fold(term) == expected


@pytest.mark.parametrize("term", ["analysis", "physics", "gas", "biomass", "status", "ga2o3", "si"])
def test_fold_leaves_invariant_tokens_untouched(term: str) -> None:
    assert fold(term) == term


def test_contextual_suffixes_need_the_singular_in_the_working_set() -> None:
    assert fold("carbon emissions") == "carbon emissions"

    folder = MorphologyFolder.from_working_set(["emission", "carbon emissions"])
    assert "emission" in folder.vocabulary
    assert folder.fold("carbon emissions") == "carbon emission"

    buildings = MorphologyFolder.from_working_set(["zero energy building", "zero energy buildings"])
    assert buildings.fold("zero energy buildings") == "zero energy building"


def test_contextual_folding_keeps_words_without_a_singular() -> None:
    folder = MorphologyFolder.from_working_set(["proceedings", "surroundings"])
    assert folder.fold("proceedings") == "proceedings"


def test_fold_is_idempotent() -> None:
    folder = MorphologyFolder.from_working_set(["emission", "building"])
    samples = [
        "cities",
        "decarbonisations",
        "analyses",
        "carbon emissions",
        "zero energy buildings",
        "beta ga2o3 single crystals",
    ]
    for term in samples:
        once = folder.fold(term)
        assert folder.fold(once) == once
