"""Keyword normalisation shared by every matching stage."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Tuple

# Short alphanumeric qualifiers such as "(111)" or "(zeb)".
_QUALIFIER_RE = re.compile(r"\s*\(\s*([0-9a-z]{1,4})\s*\)")
_SEPARATOR_RE = re.compile(r"[\-_–—]+")
_WHITESPACE_RE = re.compile(r"\s+")

STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "as",
        "at",
        "by",
        "for",
        "from",
        "in",
        "of",
        "on",
        "or",
        "the",
        "to",
        "with",
    }
)


@dataclass(frozen=True, slots=True)
class NormalizedForm:
    """Comparable form of a raw keyword plus any qualifiers stripped from it."""

    text: str
    qualifiers: Tuple[str, ...] = ()

    @property
    def tokens(self) -> List[str]:
        return tokenize(self.text)

    def __str__(self) -> str:
        return self.text


def _strip_qualifiers(text: str) -> tuple[str, list[str]]:
    qualifiers: list[str] = []
    while True:
        match = _QUALIFIER_RE.search(text)
        if match is None:
            return text, qualifiers
        qualifiers.append(match.group(1))
        text = f"{text[: match.start()]} {text[match.end() :]}"


def normalize(raw: str) -> NormalizedForm:
    """Case-fold, strip short qualifiers and unify separators; never fails."""

    if not raw:
        return NormalizedForm("")
    unified = _SEPARATOR_RE.sub(" ", raw.lower())
    stripped, qualifiers = _strip_qualifiers(unified)
    collapsed = _WHITESPACE_RE.sub(" ", stripped).strip()
    return NormalizedForm(collapsed, tuple(qualifiers))


def normalize_text(raw: str) -> str:
    return normalize(raw).text


def tokenize(text: str) -> List[str]:
    """Split an already normalised phrase on the unified separator."""

    return [token for token in text.split(" ") if token]


def meaningful_tokens(tokens: List[str] | Tuple[str, ...]) -> List[str]:
    return [token for token in tokens if token not in STOPWORDS]


__all__ = [
    "NormalizedForm",
    "STOPWORDS",
    "meaningful_tokens",
    "normalize",
    "normalize_text",
    "tokenize",
]
