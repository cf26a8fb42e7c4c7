from __future__ import annotations

import logging
from pathlib import Path

import pytest

from keyfold.records import KeywordRecord
from keyfold.synonyms import SynonymTable

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def _propagate_keyfold_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    # configure_logging() detaches the package logger from root; caplog listens on root.
    monkeypatch.setattr(logging.getLogger("keyfold"), "propagate", True)


def make_records(*pairs: tuple[str, int]) -> list[KeywordRecord]:
    return [KeywordRecord(key=key, score=score) for key, score in pairs]


@pytest.fixture()
def synonym_table() -> SynonymTable:
    return SynonymTable.from_groups(
        [
            ("silicon", ["si"]),
            ("efficiency", ["efficient"]),
            ("demand side management", ["demand side", "dsm"]),
            ("zero energy building", ["zero energy house", "zeb"]),
        ]
    )


@pytest.fixture()
def bibliometric_records() -> list[KeywordRecord]:
    return make_records(
        ("cities", 139),
        ("city", 191),
        ("algorithm", 12),
        ("adoption", 105),
        ("adaptation", 63),
        ("air", 103),
        ("air quality", 20),
        ("beta-ga2o3", 50),
        ("beta-ga2o3 single-crystals", 12),
        ("climate change", 80),
        ("climate change mitigation", 15),
        ("decarbonisation", 9),
        ("decarbonization", 14),
        ("zero-energy building", 30),
        ("zero energy buildings", 22),
        ("zero energy building (zeb)", 5),
        ("energy efficiency", 40),
    )


@pytest.fixture()
def shipped_synonyms_path() -> Path:
    return REPO_ROOT / "glossary" / "synonyms.yaml"


@pytest.fixture()
def shipped_distinct_path() -> Path:
    return REPO_ROOT / "glossary" / "distinct.yaml"
