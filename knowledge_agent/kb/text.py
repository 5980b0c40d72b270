"""Tokenizing and slug helpers shared by the store, loader and query engine."""

from __future__ import annotations

import re
from collections import Counter

MIN_TERM_LENGTH = 2

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def words(text: str) -> list[str]:
    """Lower-cased alphanumeric runs of *text*, in order, unfiltered."""
    return _WORD_RE.findall((text or "").lower())


def tokenize(text: str) -> list[str]:
    """
    Split a free-text query into search terms.

    Case-insensitive, delimited by whitespace and punctuation; terms shorter
    than ``MIN_TERM_LENGTH`` are dropped and duplicates removed (first
    occurrence wins).
    """
    seen: set[str] = set()
    terms: list[str] = []
    for w in words(text):
        if len(w) >= MIN_TERM_LENGTH and w not in seen:
            seen.add(w)
            terms.append(w)
    return terms


def term_counts(text: str) -> Counter:
    """Occurrences of each indexable term in *text*."""
    return Counter(w for w in words(text) if len(w) >= MIN_TERM_LENGTH)


def normalize(text: str) -> str:
    """Collapse *text* to space-separated lower-case words."""
    return " ".join(words(text))


def contains_phrase(haystack: str, terms: list[str]) -> bool:
    """True if the terms, in order, appear as a whole-word run in *haystack*."""
    if not terms:
        return False
    phrase = " ".join(terms)
    return f" {phrase} " in f" {normalize(haystack)} "


def slugify(text: str) -> str:
    """``"Move Semantics"`` -> ``"move-semantics"``."""
    return "-".join(words(text))
