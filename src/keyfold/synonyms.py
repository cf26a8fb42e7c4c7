"""Loading and querying the abbreviation/synonym table."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping, Tuple

import yaml

from .config import ConfigurationError
from .morphology import MorphologyFolder
from .normalizer import normalize_text, tokenize

logger = logging.getLogger(__name__)

_LOOKUP_FOLDER = MorphologyFolder()


class SynonymTableError(ConfigurationError):
    """Raised when a configured synonym table cannot be loaded."""


def lookup_key(term: str) -> str:
    """Normalise and fold a table term so lookups ignore case, separators and plurals."""

    return _LOOKUP_FOLDER.fold(normalize_text(term))


class SynonymTable:
    """Read-only mapping from alias phrases to canonical terms.

    Aliases and canonical terms are stored in their folded lookup form.
    Chains (``a -> b``, ``b -> c``) are flattened on construction so every
    alias points at a term that is not itself an alias.

    Keys are folded with a folder that knows the table's own words, so an
    ``-ions``/``-ings`` plural in the table folds like the same plural in a
    record. :meth:`with_folder` re-keys the table for a run whose working set
    adds more words.
    """

    def __init__(
        self,
        mapping: Mapping[str, str] | None = None,
        *,
        folder: MorphologyFolder | None = None,
    ) -> None:
        self._source: dict[str, str] = {}
        for alias, canonical in (mapping or {}).items():
            alias_text = normalize_text(alias)
            canonical_text = normalize_text(canonical)
            existing = self._source.get(alias_text)
            if existing is not None and existing != canonical_text:
                raise SynonymTableError(
                    f"Alias '{alias}' maps to both '{existing}' and '{canonical_text}'"
                )
            self._source[alias_text] = canonical_text
        self._folder = folder or MorphologyFolder.from_working_set(self.terms())
        raw: dict[str, str] = {}
        for alias, canonical in self._source.items():
            alias_key = self._folder.fold(alias)
            canonical_key = self._folder.fold(canonical)
            if not alias_key or not canonical_key or alias_key == canonical_key:
                continue
            existing = raw.get(alias_key)
            if existing is not None and existing != canonical_key:
                raise SynonymTableError(
                    f"Alias '{alias}' maps to both '{existing}' and '{canonical_key}'"
                )
            raw[alias_key] = canonical_key
        self._aliases: dict[str, str] = {alias: self._terminal(raw, alias) for alias in raw}
        # Canonical phrases match themselves so a longer canonical term wins
        # over a shorter alias embedded in it.
        self._phrases: dict[str, str] = {term: term for term in self._aliases.values()}
        self._phrases.update(self._aliases)
        self._max_phrase_tokens = max((len(tokenize(phrase)) for phrase in self._phrases), default=0)

    @staticmethod
    def _terminal(raw: Mapping[str, str], alias: str) -> str:
        seen = {alias}
        current = raw[alias]
        while current in raw:
            if current in seen:
                raise SynonymTableError(f"Synonym cycle detected involving '{alias}'")
            seen.add(current)
            current = raw[current]
        return current

    def __len__(self) -> int:
        return len(self._aliases)

    def __contains__(self, term: object) -> bool:
        return isinstance(term, str) and self._folder.fold(normalize_text(term)) in self._aliases

    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def terms(self) -> list[str]:
        """Normalised alias and canonical phrases, before folding."""

        seen: dict[str, None] = {}
        for alias, canonical in self._source.items():
            seen.setdefault(alias)
            seen.setdefault(canonical)
        return list(seen)

    def with_folder(self, folder: MorphologyFolder) -> "SynonymTable":
        """Return the same table keyed with ``folder``.

        Use a folder whose vocabulary includes :meth:`terms`; otherwise a
        plural in the table can fold differently from the same plural in a
        record.
        """

        if folder.vocabulary == self._folder.vocabulary:
            return self
        return SynonymTable(self._source, folder=folder)

    def resolve(self, lemma: str) -> str:
        """Map a lemma to its canonical term, or return it unchanged."""

        if not self._aliases or not lemma:
            return lemma
        exact = self._aliases.get(lemma)
        if exact is not None:
            return exact
        return self._resolve_tokens(tokenize(lemma))

    def _resolve_tokens(self, tokens: list[str]) -> str:
        result: list[str] = []
        index = 0
        while index < len(tokens):
            replaced = False
            longest = min(self._max_phrase_tokens, len(tokens) - index)
            for size in range(longest, 0, -1):
                candidate = " ".join(tokens[index : index + size])
                canonical = self._phrases.get(candidate)
                if canonical is not None:
                    result.append(canonical)
                    index += size
                    replaced = True
                    break
            if not replaced:
                result.append(tokens[index])
                index += 1
        return " ".join(result)

    @classmethod
    def from_groups(cls, groups: Iterable[Tuple[str, Iterable[str]]]) -> "SynonymTable":
        mapping: dict[str, str] = {}
        for canonical, aliases in groups:
            for alias in aliases:
                previous = mapping.get(alias)
                if previous is not None and lookup_key(previous) != lookup_key(canonical):
                    raise SynonymTableError(
                        f"Alias '{alias}' is listed under both '{previous}' and '{canonical}'"
                    )
                mapping[alias] = canonical
        return cls(mapping)


def _coerce_aliases(value: object, *, source: Path) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        return [str(value)]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None and str(item).strip()]
    raise SynonymTableError(f"Synonym aliases in {source} must be a string or a list")


def _parse_table(data: object, *, source: Path) -> list[tuple[str, list[str]]]:
    groups: list[tuple[str, list[str]]] = []
    if data is None:
        return groups
    if isinstance(data, list):
        for item in data:
            if not isinstance(item, dict):
                raise SynonymTableError(f"Synonym entries in {source} must be mappings")
            canonical = str(item.get("canonical", "")).strip()
            if not canonical:
                raise SynonymTableError(f"Synonym entry without 'canonical' in {source}")
            groups.append((canonical, _coerce_aliases(item.get("aliases"), source=source)))
        return groups
    if isinstance(data, dict):
        for key, value in data.items():
            canonical_or_alias = str(key).strip()
            if isinstance(value, list):
                groups.append((canonical_or_alias, _coerce_aliases(value, source=source)))
            elif isinstance(value, str):
                # alias: canonical
                groups.append((value.strip(), [canonical_or_alias]))
            else:
                raise SynonymTableError(f"Unsupported synonym value for '{key}' in {source}")
        return groups
    raise SynonymTableError(f"Synonym table {source} must be a list or a mapping")


def load_synonym_table(path: str | Path) -> SynonymTable:
    """Load a synonym table from YAML; a missing or corrupt file is a configuration error."""

    table_path = Path(path)
    if not table_path.is_file():
        raise SynonymTableError(f"Synonym table not found: {table_path}")
    try:
        data = yaml.safe_load(table_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise SynonymTableError(f"Synonym table {table_path} could not be read: {exc}") from exc

    table = SynonymTable.from_groups(_parse_table(data, source=table_path))
    logger.info("synonyms.loaded path=%s aliases=%s", table_path, len(table))
    return table


def load_distinct_pairs(path: str | Path) -> frozenset[frozenset[str]]:
    """Load groups of look-alike terms that must never be merged.

    The file is a YAML list of lists; every pair within a group is kept apart.
    """

    pairs_path = Path(path)
    if not pairs_path.is_file():
        raise SynonymTableError(f"Distinct terms file not found: {pairs_path}")
    try:
        data = yaml.safe_load(pairs_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise SynonymTableError(f"Distinct terms file {pairs_path} could not be read: {exc}") from exc
    if data is None:
        return frozenset()
    if not isinstance(data, list):
        raise SynonymTableError(f"Distinct terms file {pairs_path} must be a list of term groups")

    pairs: set[frozenset[str]] = set()
    for group in data:
        if not isinstance(group, list) or len(group) < 2:
            raise SynonymTableError(f"Each entry in {pairs_path} must list at least two terms")
        keys = sorted({lookup_key(str(term)) for term in group if term is not None} - {""})
        for index, left in enumerate(keys):
            for right in keys[index + 1 :]:
                pairs.add(frozenset((left, right)))
    logger.info("distinct.loaded path=%s pairs=%s", pairs_path, len(pairs))
    return frozenset(pairs)


__all__ = [
    "SynonymTable",
    "SynonymTableError",
    "load_distinct_pairs",
    "load_synonym_table",
    "lookup_key",
]
