"""Choose the representative record of each keyword cluster."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Tuple

from .clustering import Cluster
from .records import KeywordRecord


def representative_sort_key(record: KeywordRecord) -> Tuple[int, int, str]:
    """Highest score first, then the shortest raw key, then the lexically smaller key."""

    return (-record.score, len(record.key), record.key)


def reconcile(cluster: Cluster) -> KeywordRecord:
    """Return the member that represents ``cluster``; its key and score are kept verbatim."""

    return min(cluster.members, key=representative_sort_key)


def reconcile_all(clusters: Iterable[Cluster]) -> List[Cluster]:
    return [replace(cluster, representative=reconcile(cluster)) for cluster in clusters]


__all__ = ["reconcile", "reconcile_all", "representative_sort_key"]
