"""
Query engine — turns free text into ranked candidates from the Entry Store.

Free-text search covers concepts, patterns and commands.  Errors are only
reachable through :meth:`KnowledgeQuery.lookup_error`, an exact,
case-sensitive code lookup: error codes are identifiers, and a fuzzy match
on one would be misleading.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from .models import Category, Command, Concept, ErrorEntry, Pattern, Record
from .store import EntryStore
from .text import tokenize

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


# ---------------------------------------------------------------------------
# Aggregated results
# ---------------------------------------------------------------------------

@dataclass
class SearchResults:
    """Results grouped by category, each list best match first."""

    concepts: list[Concept] = field(default_factory=list)
    patterns: list[Pattern] = field(default_factory=list)
    commands: list[Command] = field(default_factory=list)
    errors: list[ErrorEntry] = field(default_factory=list)

    def total(self) -> int:
        return len(self.concepts) + len(self.patterns) + len(self.commands) + len(self.errors)

    def is_empty(self) -> bool:
        return self.total() == 0

    def to_dict(self) -> dict:
        return {
            "concepts": [c.to_dict() for c in self.concepts],
            "patterns": [p.to_dict() for p in self.patterns],
            "commands": [c.to_dict() for c in self.commands],
            "errors": [e.to_dict() for e in self.errors],
        }

    def format(self) -> str:
        """Render the results as markdown.  Deterministic for given results."""
        out: list[str] = []

        if self.concepts:
            out.append("## Concepts\n")
            for concept in self.concepts:
                out.append(f"### {concept.title}")
                out.append(f"**Topic:** {concept.topic}\n")
                out.append(f"{concept.explanation}\n")
                if concept.code_examples:
                    out.append("**Examples:**")
                    for ex in concept.code_examples:
                        out.append(f"\n**{ex.title}:**\n```rust\n{ex.code}\n```")
                        if ex.explanation:
                            out.append(ex.explanation)
                    out.append("")
                if concept.common_mistakes:
                    out.append("**Common mistakes:**")
                    out.extend(f"- {m}" for m in concept.common_mistakes)
                    out.append("")

        if self.patterns:
            out.append("## Patterns\n")
            for pattern in self.patterns:
                out.append(f"### {pattern.name}")
                out.append(f"{pattern.description}\n")
                if pattern.when_to_use:
                    out.append(f"**When to use:** {pattern.when_to_use}\n")
                if pattern.when_not_to_use:
                    out.append(f"**When not to use:** {pattern.when_not_to_use}\n")
                if pattern.template:
                    out.append(f"```rust\n{pattern.template}\n```\n")

        if self.commands:
            out.append("## Commands\n")
            for cmd in self.commands:
                out.append(f"### {cmd.tool} {cmd.command}")
                out.append(f"{cmd.description}\n")
                if cmd.flags:
                    out.append("**Flags:**")
                    out.extend(
                        f"- `{f.flag}` {f.effect}".rstrip() for f in cmd.flags
                    )
                    out.append("")
                if cmd.examples:
                    out.append("**Examples:**")
                    out.extend(f"- `{ex}`" for ex in cmd.examples)
                    out.append("")

        if self.errors:
            out.append("## Errors\n")
            for err in self.errors:
                out.append(f"### {err.code}: {err.title}")
                out.append(f"{err.explanation}\n")
                if err.example_code:
                    out.append(f"```rust\n{err.example_code}\n```\n")
                if err.fix:
                    out.append(f"**Fix:**\n{err.fix}\n")
                if err.related_errors:
                    out.append(f"**Related:** {', '.join(err.related_errors)}\n")

        return "\n".join(out)


# ---------------------------------------------------------------------------
# KnowledgeQuery
# ---------------------------------------------------------------------------

class KnowledgeQuery:
    """
    Read-only query interface over an :class:`EntryStore`.

    Parameters
    ----------
    store:
        The shared store.  Never written through this class.
    limit:
        Per-category result cap for :meth:`search_all` and the default for
        :meth:`search_category`.
    max_workers:
        Threads used to fan :meth:`search_all` out across categories.
    """

    FREE_TEXT_CATEGORIES = (Category.CONCEPT, Category.PATTERN, Category.COMMAND)

    def __init__(
        self,
        store: EntryStore,
        limit: int = DEFAULT_LIMIT,
        max_workers: int = 3,
    ) -> None:
        self._store = store
        self._limit = limit
        self._max_workers = max_workers

    @property
    def store(self) -> EntryStore:
        return self._store

    @property
    def limit(self) -> int:
        return self._limit

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_category(
        self,
        category: Category,
        query: str,
        limit: Optional[int] = None,
    ) -> list[Record]:
        """
        Ranked search of one category.

        A query with no usable terms (empty, or only 1-character words)
        returns ``[]`` rather than browsing the category.
        """
        terms = tokenize(query)
        if not terms:
            return []
        return self._store.search(
            category, terms, self._limit if limit is None else limit
        )

    def search_all(self, query: str) -> SearchResults:
        """Search concepts, patterns and commands concurrently."""
        if not tokenize(query):
            return SearchResults()
        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="kb-search"
        ) as pool:
            futures = {
                category: pool.submit(self.search_category, category, query, self._limit)
                for category in self.FREE_TEXT_CATEGORIES
            }
            # .result() re-raises store errors from the worker threads.
            results = SearchResults(
                concepts=futures[Category.CONCEPT].result(),
                patterns=futures[Category.PATTERN].result(),
                commands=futures[Category.COMMAND].result(),
            )
        logger.debug(
            "search_all(%r): %d concepts, %d patterns, %d commands",
            query, len(results.concepts), len(results.patterns), len(results.commands),
        )
        return results

    def find_commands(
        self,
        tool: str,
        action: str,
        limit: Optional[int] = None,
    ) -> list[Command]:
        """
        Commands of *tool* whose text matches every term of *action*.

        An empty *action* lists all of the tool's commands in insertion
        order (capped at *limit*).
        """
        limit = self._limit if limit is None else limit
        terms = tokenize(action)
        if not terms:
            return self._store.filter(Category.COMMAND, "tool", tool)[:limit]
        return self._store.search(Category.COMMAND, terms, limit, tool=tool)

    # ------------------------------------------------------------------
    # Exact lookups
    # ------------------------------------------------------------------

    def lookup_error(self, code: str) -> Optional[ErrorEntry]:
        """Exact, case-sensitive lookup of an error code; ``None`` if absent."""
        return self._store.get(Category.ERROR, code.strip())

    def get_concept(self, concept_id: str) -> Optional[Concept]:
        return self._store.get(Category.CONCEPT, concept_id)

    def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        return self._store.get(Category.PATTERN, pattern_id)

    def concepts_by_topic(self, topic: str) -> list[Concept]:
        return self._store.filter(Category.CONCEPT, "topic", topic)

    # ------------------------------------------------------------------
    # Soft references
    # ------------------------------------------------------------------

    def related_concepts(self, concept: Concept) -> list[Concept]:
        """Resolve ``concept.related_concepts``; dangling ids are skipped."""
        found = []
        for ref in concept.related_concepts:
            target = self._store.get(Category.CONCEPT, ref)
            if target is None:
                logger.debug("Related concept %r of %r not found", ref, concept.id)
                continue
            found.append(target)
        return found

    def related_errors(self, error: ErrorEntry) -> list[ErrorEntry]:
        """Resolve ``error.related_errors``; dangling codes are skipped."""
        return [
            e for e in (self._store.get(Category.ERROR, c) for c in error.related_errors)
            if e is not None
        ]
