"""Group keyword records into equivalence clusters."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from .morphology import MorphologyFolder
from .normalizer import NormalizedForm, meaningful_tokens, normalize, tokenize
from .records import KeywordRecord
from .subsumption import is_subsumed
from .synonyms import SynonymTable

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"\d+")


@dataclass(frozen=True, slots=True)
class MatchOptions:
    """Thresholds deciding when two canonical terms are the same concept."""

    short_term_length: int = 6
    short_max_distance: int = 1
    long_max_distance: int = 2
    max_distance_ratio: float = 0.2
    subsumption_enabled: bool = True
    min_shared_tokens: int = 2
    max_extra_tokens: int = 3
    contextual_folding: bool = True
    # Word pairs that stay apart however close their spelling is.
    distinct_pairs: frozenset[frozenset[str]] = frozenset()

    def __post_init__(self) -> None:
        if self.min_shared_tokens < 1:
            raise ValueError("min_shared_tokens must be at least 1")
        if self.short_max_distance < 0 or self.long_max_distance < 0:
            raise ValueError("edit distance limits must be non-negative")

    def distance_limit(self, shorter_length: int) -> int:
        if shorter_length <= self.short_term_length:
            return self.short_max_distance
        return self.long_max_distance

    def to_payload(self) -> dict[str, object]:
        return {
            "short_term_length": self.short_term_length,
            "short_max_distance": self.short_max_distance,
            "long_max_distance": self.long_max_distance,
            "max_distance_ratio": self.max_distance_ratio,
            "subsumption_enabled": self.subsumption_enabled,
            "min_shared_tokens": self.min_shared_tokens,
            "max_extra_tokens": self.max_extra_tokens,
            "contextual_folding": self.contextual_folding,
            "distinct_pairs": len(self.distinct_pairs),
        }

    def keeps_apart(self, a: str, b: str) -> bool:
        """True when ``a`` and ``b`` differ on a configured distinct word pair."""

        if not self.distinct_pairs:
            return False
        if frozenset((a, b)) in self.distinct_pairs:
            return True
        left, right = tokenize(a), tokenize(b)
        if len(left) != len(right):
            return False
        return any(
            frozenset((x, y)) in self.distinct_pairs for x, y in zip(left, right) if x != y
        )


@dataclass(frozen=True, slots=True)
class CanonicalizedRecord:
    """A record together with every derived matching form."""

    record: KeywordRecord
    position: int
    normalized: NormalizedForm
    lemma: str
    term: str


@dataclass(frozen=True, slots=True)
class Cluster:
    """Records judged to denote the same concept.

    ``representative`` stays ``None`` until the cluster is reconciled.
    """

    members: Tuple[KeywordRecord, ...]
    terms: Tuple[str, ...]
    first_position: int
    representative: KeywordRecord | None = None

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError("Cluster must contain at least one record")
        if self.representative is not None and self.representative not in self.members:
            raise ValueError("Cluster representative must be one of its members")

    def __len__(self) -> int:
        return len(self.members)

    @property
    def merged(self) -> Tuple[KeywordRecord, ...]:
        """Members other than the representative."""

        if self.representative is None:
            return ()
        skipped = False
        others: list[KeywordRecord] = []
        for member in self.members:
            if not skipped and member == self.representative:
                skipped = True
                continue
            others.append(member)
        return tuple(others)

    def to_payload(self) -> dict[str, object]:
        return {
            "representative": self.representative.to_payload() if self.representative else None,
            "members": [member.to_payload() for member in self.members],
            "terms": list(self.terms),
        }


class _UnionFind:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))
        self._rank = [0] * size

    def find(self, item: int) -> int:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, left: int, right: int) -> bool:
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left == root_right:
            return False
        if self._rank[root_left] < self._rank[root_right]:
            root_left, root_right = root_right, root_left
        self._parent[root_right] = root_left
        if self._rank[root_left] == self._rank[root_right]:
            self._rank[root_left] += 1
        return True


def canonicalize_records(
    records: Sequence[KeywordRecord],
    *,
    synonyms: SynonymTable | None = None,
    contextual_folding: bool = True,
) -> List[CanonicalizedRecord]:
    """Run normalise → fold → resolve for every record."""

    normalized: List[NormalizedForm] = []
    for record in records:
        form = normalize(record.key)
        if not form.text:
            # Keys made only of a qualifier, e.g. "(zeb)", keep their own identity.
            form = NormalizedForm(record.key.strip().lower())
        normalized.append(form)
    table = synonyms or SynonymTable()
    if contextual_folding:
        # Table phrases join the working set so aliases and lemmas fold alike.
        folder = MorphologyFolder.from_working_set([*normalized, *table.terms()])
    else:
        folder = MorphologyFolder()
    table = table.with_folder(folder)
    result: List[CanonicalizedRecord] = []
    for position, (record, form) in enumerate(zip(records, normalized)):
        lemma = folder.fold(form)
        result.append(
            CanonicalizedRecord(
                record=record,
                position=position,
                normalized=form,
                lemma=lemma,
                term=table.resolve(lemma),
            )
        )
    return result


def within_edit_distance(a: str, b: str, options: MatchOptions | None = None) -> bool:
    """Bounded Levenshtein check on canonical terms.

    Terms must start with the same character and carry identical digit
    groups, so ``ga2o3`` never matches ``ga2o5``.
    """

    options = options or MatchOptions()
    if a == b:
        return True
    if not a or not b or a[0] != b[0]:
        return False
    if _DIGITS_RE.findall(a) != _DIGITS_RE.findall(b):
        return False
    if options.keeps_apart(a, b):
        return False
    shorter, longer = sorted((len(a), len(b)))
    limit = options.distance_limit(shorter)
    if limit <= 0 or longer - shorter > limit:
        return False
    distance = Levenshtein.distance(a, b, score_cutoff=limit)
    return distance <= limit and distance / longer <= options.max_distance_ratio


def _edit_distance_pairs(terms: Sequence[str], options: MatchOptions) -> Iterable[Tuple[int, int]]:
    by_initial: Dict[str, List[int]] = defaultdict(list)
    for index, term in enumerate(terms):
        if term:
            by_initial[term[0]].append(index)
    max_gap = max(options.short_max_distance, options.long_max_distance)
    for bucket in by_initial.values():
        ordered = sorted(bucket, key=lambda index: len(terms[index]))
        for offset, left in enumerate(ordered):
            for right in ordered[offset + 1 :]:
                if len(terms[right]) - len(terms[left]) > max_gap:
                    break
                if within_edit_distance(terms[left], terms[right], options):
                    yield left, right


def _subsumption_pairs(terms: Sequence[str], options: MatchOptions) -> Iterable[Tuple[int, int]]:
    containing: Dict[str, set[int]] = defaultdict(set)
    token_lists = [meaningful_tokens(tokenize(term)) for term in terms]
    for index, tokens in enumerate(token_lists):
        for token in tokens:
            containing[token].add(index)
    for index, tokens in enumerate(token_lists):
        if len(tokens) < options.min_shared_tokens:
            continue
        for other in sorted(containing[tokens[0]] & containing[tokens[-1]]):
            if other == index or len(token_lists[other]) < len(tokens):
                continue
            if is_subsumed(
                terms[index],
                terms[other],
                min_shared_tokens=options.min_shared_tokens,
                max_extra_tokens=options.max_extra_tokens,
            ):
                yield index, other


def cluster_canonicalized(
    items: Sequence[CanonicalizedRecord],
    options: MatchOptions | None = None,
) -> List[Cluster]:
    """Connected components of the equal-term / subsumption / edit-distance graph."""

    options = options or MatchOptions()
    if not items:
        return []

    term_index: Dict[str, int] = {}
    owners: List[List[int]] = []
    for position, item in enumerate(items):
        slot = term_index.get(item.term)
        if slot is None:
            slot = len(owners)
            term_index[item.term] = slot
            owners.append([])
        owners[slot].append(position)
    terms = list(term_index)

    forest = _UnionFind(len(terms))
    edges = 0
    for left, right in _edit_distance_pairs(terms, options):
        edges += forest.union(left, right)
    if options.subsumption_enabled:
        for left, right in _subsumption_pairs(terms, options):
            edges += forest.union(left, right)

    groups: Dict[int, List[int]] = defaultdict(list)
    for slot in range(len(terms)):
        groups[forest.find(slot)].extend(owners[slot])

    clusters: List[Cluster] = []
    for positions in groups.values():
        members = sorted(
            (items[position] for position in positions),
            key=lambda item: (item.record.key, item.record.score),
        )
        clusters.append(
            Cluster(
                members=tuple(member.record for member in members),
                terms=tuple(sorted({member.term for member in members})),
                first_position=min(items[position].position for position in positions),
            )
        )
    clusters.sort(key=lambda cluster: (cluster.terms[0], cluster.members[0].key))
    logger.debug(
        "dedupe.cluster.graph terms=%s merges=%s clusters=%s", len(terms), edges, len(clusters)
    )
    return clusters


def cluster(
    records: Sequence[KeywordRecord],
    *,
    synonyms: SynonymTable | None = None,
    options: MatchOptions | None = None,
) -> List[Cluster]:
    """Partition ``records`` into clusters; the partition ignores input order."""

    options = options or MatchOptions()
    items = canonicalize_records(
        records,
        synonyms=synonyms,
        contextual_folding=options.contextual_folding,
    )
    return cluster_canonicalized(items, options)


__all__ = [
    "CanonicalizedRecord",
    "Cluster",
    "MatchOptions",
    "canonicalize_records",
    "cluster",
    "cluster_canonicalized",
    "within_edit_distance",
]
