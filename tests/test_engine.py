from __future__ import annotations

import io
import logging
import random

import pytest

from conftest import make_records
from keyfold.clustering import MatchOptions
from keyfold.config import ConfigurationError
from keyfold.engine import DedupEngine
from keyfold.observability import MetricsRecorder
from keyfold.records import read_keyword_records
from keyfold.synonyms import SynonymTable


def _payload(engine: DedupEngine, *pairs: tuple[str, int]) -> list[dict]:
    return engine.run(make_records(*pairs)).to_payload()


def test_plural_variants_keep_the_highest_score() -> None:
    engine = DedupEngine()
    assert _payload(engine, ("cities", 139), ("city", 191)) == [{"k": "city", "t": 191}]


def test_qualified_phrase_collapses_into_its_core_term() -> None:
    engine = DedupEngine()
    assert _payload(engine, ("beta-ga2o3", 50), ("beta-ga2o3 single-crystals", 12)) == [
        {"k": "beta-ga2o3", "t": 50}
    ]


def test_abbreviations_resolve_through_the_synonym_table() -> None:
    engine = DedupEngine(synonyms=SynonymTable({"si": "silicon"}))
    assert _payload(engine, ("si(111)", 10), ("si", 8), ("silicon", 40)) == [{"k": "silicon", "t": 40}]


def test_synonym_alias_applies_regardless_of_other_records() -> None:
    engine = DedupEngine(synonyms=SynonymTable({"carbon emissions": "greenhouse gas"}))

    assert _payload(engine, ("carbon emissions", 5), ("greenhouse gas", 50)) == [{"k": "greenhouse gas", "t": 50}]
    assert _payload(engine, ("carbon emissions", 5), ("greenhouse gas", 50), ("emission", 3)) == [
        {"k": "greenhouse gas", "t": 50},
        {"k": "emission", "t": 3},
    ]

    savings = DedupEngine(synonyms=SynonymTable({"energy saving": "energy conservation"}))
    assert _payload(savings, ("energy savings", 5), ("energy conservation", 50)) == [
        {"k": "energy conservation", "t": 50}
    ]


def test_without_a_synonym_table_abbreviations_stay_apart() -> None:
    result = DedupEngine().run(make_records(("si(111)", 10), ("si", 8), ("silicon", 40)))
    assert [entry.key for entry in result.entries] == ["silicon", "si(111)"]


def test_unrelated_keywords_pass_through_unchanged() -> None:
    engine = DedupEngine()
    assert _payload(engine, ("algorithm", 12), ("adoption", 105)) == [
        {"k": "adoption", "t": 105},
        {"k": "algorithm", "t": 12},
    ]


def test_empty_input_returns_empty_output() -> None:
    result = DedupEngine().run([])
    assert result.entries == []
    assert result.stats["clusters"] == 0


def test_bibliometric_sample_in_score_order(bibliometric_records, synonym_table) -> None:
    result = DedupEngine(synonyms=synonym_table).run(bibliometric_records)

    assert result.to_payload() == [
        {"k": "city", "t": 191},
        {"k": "adoption", "t": 105},
        {"k": "air", "t": 103},
        {"k": "climate change", "t": 80},
        {"k": "adaptation", "t": 63},
        {"k": "beta-ga2o3", "t": 50},
        {"k": "energy efficiency", "t": 40},
        {"k": "zero-energy building", "t": 30},
        {"k": "air quality", "t": 20},
        {"k": "decarbonization", "t": 14},
        {"k": "algorithm", "t": 12},
    ]
    assert result.stats["records"] == 17
    assert result.stats["clusters"] == 11
    assert result.stats["merged"] == 6


def test_input_order_follows_first_seen_position(bibliometric_records, synonym_table) -> None:
    engine = DedupEngine(synonyms=synonym_table, output_order="input")
    keys = [entry.key for entry in engine.run(bibliometric_records).entries]

    assert keys == [
        "city",
        "algorithm",
        "adoption",
        "adaptation",
        "air",
        "air quality",
        "beta-ga2o3",
        "climate change",
        "decarbonization",
        "zero-energy building",
        "energy efficiency",
    ]


def test_order_can_be_overridden_per_run(bibliometric_records) -> None:
    engine = DedupEngine()
    first = engine.run(bibliometric_records, order="input").entries[0]
    assert first.key == "city"
    with pytest.raises(ConfigurationError):
        engine.run(bibliometric_records, order="alphabetical")


def test_invalid_output_order_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        DedupEngine(output_order="random")


def test_rerunning_on_output_is_a_fixed_point(bibliometric_records, synonym_table) -> None:
    engine = DedupEngine(synonyms=synonym_table)
    first = engine.run(bibliometric_records).entries
    second = engine.run(first).entries
    assert second == first


def test_representative_score_dominates_its_cluster(bibliometric_records, synonym_table) -> None:
    result = DedupEngine(synonyms=synonym_table).run(bibliometric_records)
    for item in result.clusters:
        assert item.representative in item.members
        assert all(item.representative.score >= member.score for member in item.members)


def test_output_is_independent_of_input_order(bibliometric_records, synonym_table) -> None:
    engine = DedupEngine(synonyms=synonym_table)
    expected = engine.run(bibliometric_records).to_payload()
    shuffled = list(bibliometric_records)
    for seed in range(5):
        random.Random(seed).shuffle(shuffled)
        assert engine.run(shuffled).to_payload() == expected


def test_every_input_record_lands_in_exactly_one_cluster(bibliometric_records, synonym_table) -> None:
    result = DedupEngine(synonyms=synonym_table).run(bibliometric_records)
    counted = sum(len(item) for item in result.clusters)
    assert counted == len(bibliometric_records)


def test_run_parsed_carries_rejected_rows() -> None:
    parsed = read_keyword_records("keyword,score\ncities,139\ncity,191\nair,x\n")
    result = DedupEngine().run_parsed(parsed)

    assert result.to_payload() == [{"k": "city", "t": 191}]
    assert result.stats["rejected"] == 1
    debug = result.to_debug_payload()
    assert debug["merged_clusters"][0]["representative"] == {"k": "city", "t": 191}
    assert debug["rejected"][0]["line"] == 4


def test_custom_options_are_applied() -> None:
    engine = DedupEngine(options=MatchOptions(subsumption_enabled=False))
    keys = [entry.key for entry in engine.run(make_records(("climate change", 80), ("climate change mitigation", 15))).entries]
    assert keys == ["climate change", "climate change mitigation"]


def test_engine_emits_log_and_metrics(caplog) -> None:
    metrics_logger = logging.getLogger("keyfold.test.engine")
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    metrics_logger.addHandler(handler)
    metrics_logger.setLevel(logging.INFO)
    metrics = MetricsRecorder(namespace="keyfold.test", logger=metrics_logger)
    try:
        with caplog.at_level(logging.INFO, logger="keyfold.engine"):
            DedupEngine(metrics=metrics).deduplicate(make_records(("cities", 139), ("city", 191)))
    finally:
        metrics_logger.removeHandler(handler)

    assert "dedupe.complete records=2 clusters=1 merged=1" in caplog.text
    output = buffer.getvalue()
    assert "keyfold.test.dedupe.records value=2" in output
    assert "keyfold.test.dedupe.merged value=1" in output
    assert "keyfold.test.dedupe.clusters value=1" in output
    assert "keyfold.test.dedupe.duration duration_ms=" in output
