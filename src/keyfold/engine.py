"""Pipeline entry point: records in, one representative per concept out."""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from .clustering import Cluster, MatchOptions, cluster
from .config import validate_output_order
from .observability import MetricsRecorder
from .reconcile import reconcile_all, representative_sort_key
from .records import KeywordRecord, ParsedRecords, RecordParseError, records_to_payload
from .synonyms import SynonymTable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DedupResult:
    """Representatives in output order plus the clusters they were chosen from."""

    entries: List[KeywordRecord]
    clusters: List[Cluster]
    rejected: List[RecordParseError] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> list[dict[str, Any]]:
        return records_to_payload(self.entries)

    def merged_clusters(self) -> List[Cluster]:
        return [item for item in self.clusters if len(item) > 1]

    def to_debug_payload(self, *, limit: int = 20) -> dict[str, Any]:
        merged = self.merged_clusters()
        return {
            "stats": dict(self.stats),
            "merged_clusters": [item.to_payload() for item in merged[:limit]],
            "rejected": [error.to_payload() for error in self.rejected],
        }


class DedupEngine:
    """Deterministic keyword deduplication with explicit configuration.

    The synonym table and thresholds are fixed at construction; ``run`` is a
    pure function of its input records.
    """

    def __init__(
        self,
        *,
        synonyms: SynonymTable | None = None,
        options: MatchOptions | None = None,
        output_order: str = "score",
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._synonyms = synonyms or SynonymTable()
        self._options = options or MatchOptions()
        self._output_order = validate_output_order(output_order)
        self._metrics = metrics

    @property
    def synonyms(self) -> SynonymTable:
        return self._synonyms

    @property
    def options(self) -> MatchOptions:
        return self._options

    @property
    def output_order(self) -> str:
        return self._output_order

    def run(
        self,
        records: Sequence[KeywordRecord],
        *,
        rejected: Sequence[RecordParseError] | None = None,
        order: str | None = None,
    ) -> DedupResult:
        resolved_order = validate_output_order(order) if order else self._output_order
        start = time.perf_counter()

        timer = self._metrics.track_timing("dedupe.duration") if self._metrics is not None else nullcontext()
        with timer:
            clusters = reconcile_all(cluster(records, synonyms=self._synonyms, options=self._options))
            if resolved_order == "input":
                ordered = sorted(clusters, key=lambda item: item.first_position)
            else:
                ordered = sorted(clusters, key=lambda item: representative_sort_key(item.representative))
        entries = [item.representative for item in ordered]

        elapsed = time.perf_counter() - start
        stats = {
            "records": len(records),
            "clusters": len(clusters),
            "merged": len(records) - len(clusters),
            "rejected": len(rejected or ()),
            "order": resolved_order,
            "duration_ms": round(elapsed * 1000.0, 3),
        }
        logger.info(
            "dedupe.complete records=%s clusters=%s merged=%s rejected=%s order=%s",
            stats["records"],
            stats["clusters"],
            stats["merged"],
            stats["rejected"],
            resolved_order,
        )
        if self._metrics is not None:
            self._metrics.increment("dedupe.records", value=len(records))
            self._metrics.increment("dedupe.merged", value=stats["merged"])
            self._metrics.set_gauge("dedupe.clusters", len(clusters))

        return DedupResult(
            entries=entries,
            clusters=ordered,
            rejected=list(rejected or ()),
            stats=stats,
        )

    def run_parsed(self, parsed: ParsedRecords, *, order: str | None = None) -> DedupResult:
        return self.run(parsed.records, rejected=parsed.errors, order=order)

    def deduplicate(self, records: Sequence[KeywordRecord]) -> List[KeywordRecord]:
        return self.run(records).entries


__all__ = ["DedupEngine", "DedupResult"]
