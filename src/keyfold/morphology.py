"""Suffix-rule morphology folding for keyword lemmas."""

from __future__ import annotations

from typing import AbstractSet, Iterable, Tuple

from .normalizer import NormalizedForm, tokenize

_MAX_PASSES = 8
_MIN_STEM_LENGTH = 3

# Words that look plural but must never lose their trailing "s".
_INVARIANT_WORDS = frozenset(
    {
        "always",
        "biomass",
        "gas",
        "lens",
        "means",
        "news",
        "series",
        "species",
        "status",
        "this",
        "various",
        "whereas",
    }
)
_INVARIANT_SUFFIXES: Tuple[str, ...] = ("ss", "us", "is", "ics")
# "-ions"/"-ings" fold only when the singular is also in the working set.
_CONTEXTUAL_SUFFIXES: Tuple[str, ...] = ("ions", "ings")
# Plurals of "-ie" nouns; these drop only the "s".
_IE_PLURALS = frozenset(
    {
        "calories",
        "cookies",
        "dies",
        "lies",
        "movies",
        "pies",
        "prairies",
        "rookies",
        "ties",
        "zombies",
    }
)
_SIBILANT_PLURAL_SUFFIXES: Tuple[str, ...] = ("xes", "ches", "shes")

_SPELLING_WORDS = {
    "ageing": "aging",
    "aluminium": "aluminum",
    "defence": "defense",
    "grey": "gray",
    "licence": "license",
    "manoeuvre": "maneuver",
    "offence": "offense",
    "programme": "program",
    "programmes": "programs",
    "sulphate": "sulfate",
    "sulphur": "sulfur",
}

# (source suffix, replacement, minimum token length)
_SPELLING_SUFFIXES: Tuple[Tuple[str, str, int], ...] = (
    ("isations", "izations", 8),
    ("isation", "ization", 7),
    ("ising", "izing", 6),
    ("ised", "ized", 6),
    ("isers", "izers", 6),
    ("iser", "izer", 6),
    ("ises", "izes", 6),
    ("ise", "ize", 6),
    ("ysing", "yzing", 6),
    ("ysed", "yzed", 6),
    ("yse", "yze", 5),
    ("elling", "eling", 7),
    ("elled", "eled", 6),
    ("eller", "eler", 6),
    ("ogue", "og", 6),
    ("our", "or", 6),
    ("tre", "ter", 5),
    ("bre", "ber", 5),
)


def _apply_spelling(token: str) -> str:
    replacement = _SPELLING_WORDS.get(token)
    if replacement is not None:
        return replacement
    for suffix, target, min_length in _SPELLING_SUFFIXES:
        if len(token) >= min_length and token.endswith(suffix):
            return token[: -len(suffix)] + target
    return token


class MorphologyFolder:
    """Reduce plural and regional spelling variants to a shared lemma.

    The folder works token by token and only touches purely alphabetic
    tokens, so formulas such as ``ga2o3`` pass through untouched. ``-ions``
    and ``-ings`` plurals are folded only when the singular token appears in
    ``vocabulary``; build one with :meth:`from_working_set` to enable that.
    """

    def __init__(self, vocabulary: AbstractSet[str] | None = None) -> None:
        self._vocabulary: frozenset[str] = frozenset(vocabulary or ())

    @classmethod
    def from_working_set(cls, texts: Iterable[str | NormalizedForm]) -> "MorphologyFolder":
        """Create a folder aware of every token present in ``texts``."""

        base = cls()
        vocabulary: set[str] = set()
        for text in texts:
            for token in tokenize(str(text)):
                vocabulary.add(base.fold_token(token))
        return cls(vocabulary)

    @property
    def vocabulary(self) -> frozenset[str]:
        return self._vocabulary

    def fold(self, normalized: str | NormalizedForm) -> str:
        tokens = tokenize(str(normalized))
        return " ".join(self.fold_token(token) for token in tokens)

    def fold_token(self, token: str) -> str:
        current = token
        for _ in range(_MAX_PASSES):
            folded = self._fold_once(current)
            if folded == current:
                break
            current = folded
        return current

    def _fold_once(self, token: str) -> str:
        if not token.isalpha():
            return token
        spelled = _apply_spelling(token)
        if spelled != token:
            return spelled
        return self._singularize(token)

    def _singularize(self, token: str) -> str:
        if token in _INVARIANT_WORDS or token.endswith(_INVARIANT_SUFFIXES):
            return token
        if token.endswith(_CONTEXTUAL_SUFFIXES):
            singular = token[:-1]
            return singular if singular in self._vocabulary else token
        if token.endswith("sses"):
            return token[:-2]
        if token in _IE_PLURALS:
            return token[:-1]
        if token.endswith("ies") and len(token) - 3 >= _MIN_STEM_LENGTH:
            return token[:-3] + "y"
        if token.endswith(_SIBILANT_PLURAL_SUFFIXES) and len(token) - 2 >= _MIN_STEM_LENGTH:
            return token[:-2]
        if token.endswith("s") and len(token) - 1 >= _MIN_STEM_LENGTH:
            return token[:-1]
        return token


_DEFAULT_FOLDER = MorphologyFolder()


def fold(normalized: str | NormalizedForm) -> str:
    """Fold a normalised phrase without working-set context."""

    return _DEFAULT_FOLDER.fold(normalized)


__all__ = ["MorphologyFolder", "fold"]
