"""
Knowledge loader — populates the Entry Store from knowledge documents.

A knowledge directory holds one document per knowledge family, found by a
fixed naming convention (``rust_core_concepts.json`` and friends; ``.yaml``
and ``.yml`` variants are accepted too).  Documents are tree-shaped and
human-authored, so the loader is forgiving: unknown fields are ignored, an
entry missing a required field is skipped, and a document that cannot be
parsed at all is skipped.  Each skip is recorded as an
:class:`~knowledge_agent.kb.errors.IngestWarning`.  Only store failures
abort a load.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Optional

import yaml

from .errors import IngestWarning
from .models import (
    Category,
    CodeExample,
    Command,
    CommandFlag,
    Concept,
    ErrorEntry,
    Pattern,
    Record,
)
from .store import EntryStore
from .text import slugify

logger = logging.getLogger(__name__)

# Document stem -> category it populates, in load order.
DOCUMENT_KINDS: dict[str, Category] = {
    "rust_core_concepts": Category.CONCEPT,
    "rust_patterns_idioms": Category.PATTERN,
    "rust_toolchain_cargo": Category.COMMAND,
    "rust_compiler_errors": Category.ERROR,
}

_EXTENSIONS = (".json", ".yaml", ".yml")

ProgressCallback = Callable[[int, int, str], None]


class DocumentError(ValueError):
    """A whole document is unreadable or not shaped as expected."""


class EntryError(ValueError):
    """A single entry inside a document is unusable."""


# ---------------------------------------------------------------------------
# Load statistics
# ---------------------------------------------------------------------------

@dataclass
class LoadStats:
    """Records written per category, plus non-fatal warnings."""

    concepts: int = 0
    patterns: int = 0
    commands: int = 0
    errors: int = 0
    warnings: list[IngestWarning] = field(default_factory=list)

    def add(self, category: Category, n: int) -> None:
        attr = f"{category.value}s"
        setattr(self, attr, getattr(self, attr) + n)

    def get(self, category: Category) -> int:
        return getattr(self, f"{category.value}s")

    def total(self) -> int:
        return self.concepts + self.patterns + self.commands + self.errors

    @classmethod
    def from_store(cls, store: EntryStore) -> "LoadStats":
        counts = store.counts()
        return cls(
            concepts=counts[Category.CONCEPT],
            patterns=counts[Category.PATTERN],
            commands=counts[Category.COMMAND],
            errors=counts[Category.ERROR],
        )

    def __str__(self) -> str:
        text = (
            f"Loaded {self.concepts} concepts, {self.patterns} patterns, "
            f"{self.errors} errors, {self.commands} commands "
            f"(total: {self.total()})"
        )
        if self.warnings:
            text += f", {len(self.warnings)} warning(s)"
        return text


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _require(entry: dict, name: str) -> str:
    value = entry.get(name)
    if not isinstance(value, str) or not value.strip():
        raise EntryError(f"missing required field '{name}'")
    return value


def _text(entry: dict, name: str, default: str = "") -> str:
    value = entry.get(name)
    return value if isinstance(value, str) else default


def _strings(entry: dict, name: str) -> list[str]:
    value = entry.get(name)
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _dicts(entry: dict, name: str) -> list[dict]:
    value = entry.get(name)
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _entries(container: dict, name: str) -> list:
    """The nested entry list *name*; absent means empty, any other type is an error."""
    value = container.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise EntryError(f"'{name}' is not a list")
    return value


def _section(data: dict, name: str) -> list[dict]:
    if not isinstance(data, dict):
        raise DocumentError("document root is not a mapping")
    value = data.get(name)
    if not isinstance(value, list):
        raise DocumentError(f"document has no '{name}' list")
    return value


def _bullets(heading: str, items: list[str]) -> str:
    if not items:
        return ""
    return f"{heading}:\n" + "\n".join(f"- {item}" for item in items)


# ---------------------------------------------------------------------------
# Per-kind parsers.  Each yields (record | EntryError, entry label).
# ---------------------------------------------------------------------------

def _parse_concepts(data: dict):
    for module in _section(data, "modules"):
        if not isinstance(module, dict):
            yield EntryError("module is not a mapping"), "?"
            continue
        module_id = module.get("id")
        if not isinstance(module_id, str) or not module_id.strip():
            yield EntryError("module is missing required field 'id'"), "?"
            continue
        try:
            entries = _entries(module, "concepts")
        except EntryError as exc:
            yield exc, module_id
            continue
        for raw in entries:
            label = f"{module_id}/{raw.get('name', '?') if isinstance(raw, dict) else '?'}"
            try:
                if not isinstance(raw, dict):
                    raise EntryError("concept is not a mapping")
                name = _require(raw, "name")
                blocks = [
                    _require(raw, "description"),
                    _bullets("Rules", _strings(raw, "rules")),
                    _bullets("Key Points", _strings(raw, "key_points")),
                ]
                yield Concept(
                    id=_text(raw, "id") or f"{module_id}-{slugify(name)}",
                    topic=module_id,
                    title=name,
                    explanation="\n\n".join(b for b in blocks if b),
                    code_examples=[CodeExample.from_dict(e) for e in _dicts(raw, "examples")],
                    common_mistakes=_strings(raw, "common_errors"),
                    related_concepts=_strings(raw, "related"),
                    tags=[module_id, *_strings(raw, "tags")],
                ), label
            except EntryError as exc:
                yield exc, label


def _parse_patterns(data: dict):
    for group in _section(data, "categories"):
        if not isinstance(group, dict):
            yield EntryError("category is not a mapping"), "?"
            continue
        group_name = _text(group, "name", "Unknown") or "Unknown"
        try:
            entries = _entries(group, "patterns")
        except EntryError as exc:
            yield exc, group_name
            continue
        for raw in entries:
            label = f"{group_name}/{raw.get('name', '?') if isinstance(raw, dict) else '?'}"
            try:
                if not isinstance(raw, dict):
                    raise EntryError("pattern is not a mapping")
                name = _require(raw, "name")
                description = _require(raw, "description")
                template = _text(raw, "example") or _text(raw, "template")
                examples = [CodeExample.from_dict(e) for e in _dicts(raw, "examples")]
                if not examples and template:
                    examples = [CodeExample(title=name, code=template, explanation=description)]
                yield Pattern(
                    id=_text(raw, "id") or f"{slugify(group_name)}-{slugify(name)}",
                    name=name,
                    description=description,
                    template=template,
                    when_to_use=_text(raw, "when_to_use") or group_name,
                    examples=examples,
                    when_not_to_use=_text(raw, "when_not_to_use"),
                ), label
            except EntryError as exc:
                yield exc, label


def _tool_for_section(section: dict) -> str:
    explicit = _text(section, "tool")
    if explicit:
        return explicit
    name = _text(section, "name")
    if "Cargo" in name:
        return "cargo"
    if "Rustup" in name:
        return "rustup"
    return "rust"


def _parse_flag(option) -> Optional[CommandFlag]:
    if isinstance(option, dict):
        flag = _text(option, "flag")
        return CommandFlag(flag=flag, effect=_text(option, "effect")) if flag else None
    if not isinstance(option, str):
        return None
    flag, sep, effect = option.partition(" - ")
    if sep:
        return CommandFlag(flag=flag.strip(), effect=effect.strip())
    return CommandFlag(flag=option, effect="")


def _parse_commands(data: dict):
    for section in _section(data, "sections"):
        if not isinstance(section, dict):
            yield EntryError("section is not a mapping"), "?"
            continue
        tool = _tool_for_section(section)
        try:
            entries = _entries(section, "commands")
        except EntryError as exc:
            yield exc, tool
            continue
        for raw in entries:
            label = f"{tool}/{raw.get('command', '?') if isinstance(raw, dict) else '?'}"
            try:
                if not isinstance(raw, dict):
                    raise EntryError("command is not a mapping")
                options = raw.get("options") or raw.get("flags") or []
                if not isinstance(options, list):
                    options = []
                flags = [f for f in (_parse_flag(o) for o in options) if f is not None]
                yield Command(
                    tool=tool,
                    command=_require(raw, "command"),
                    description=_require(raw, "description"),
                    flags=flags,
                    examples=_strings(raw, "examples"),
                ), label
            except EntryError as exc:
                yield exc, label


def _parse_errors(data: dict):
    for raw in _section(data, "errors"):
        label = raw.get("code", "?") if isinstance(raw, dict) else "?"
        try:
            if not isinstance(raw, dict):
                raise EntryError("error entry is not a mapping")
            fix = _text(raw, "fix") or "\n".join(
                f"- {s}" for s in _strings(raw, "fix_strategies")
            )
            yield ErrorEntry(
                code=_require(raw, "code"),
                title=_require(raw, "title"),
                explanation=_require(raw, "explanation"),
                example_code=_text(raw, "example_code") or _text(raw, "example_bad"),
                fix=fix,
                related_errors=_strings(raw, "related_errors"),
            ), label
        except EntryError as exc:
            yield exc, label


_PARSERS = {
    Category.CONCEPT: _parse_concepts,
    Category.PATTERN: _parse_patterns,
    Category.COMMAND: _parse_commands,
    Category.ERROR: _parse_errors,
}


def parse_document(
    category: Category,
    data: dict,
    source: str = "<memory>",
) -> tuple[list[Record], list[IngestWarning]]:
    """
    Convert one parsed document into records of *category*.

    Returns the usable records (in document order) and a warning for every
    skipped entry.

    Raises
    ------
    DocumentError
        If the document as a whole does not have the expected shape.
    """
    records: list[Record] = []
    warnings: list[IngestWarning] = []
    for item, label in _PARSERS[category](data):
        if isinstance(item, EntryError):
            warnings.append(IngestWarning(source=source, message=str(item), entry=label))
        else:
            records.append(item)
    return records, warnings


def read_document(path: str):
    """Read a JSON or YAML document from *path*."""
    try:
        with open(path, encoding="utf-8") as fh:
            if path.endswith(".json"):
                return json.load(fh)
            return yaml.safe_load(fh)
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentError(f"cannot read document: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DocumentError(f"cannot parse document: {exc}") from exc


def discover_documents(directory: str) -> list[tuple[str, Category]]:
    """
    Find the known documents in *directory*.

    Returns ``(path, category)`` pairs in :data:`DOCUMENT_KINDS` order; for
    each kind the first existing extension in ``.json``, ``.yaml``, ``.yml``
    wins.
    """
    found: list[tuple[str, Category]] = []
    for stem, category in DOCUMENT_KINDS.items():
        for ext in _EXTENSIONS:
            path = os.path.join(directory, stem + ext)
            if os.path.isfile(path):
                found.append((path, category))
                break
    return found


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class KnowledgeLoader:
    """
    Bulk-loads knowledge documents into an :class:`EntryStore`.

    Parameters
    ----------
    store:
        The store to populate.  The loader is the only component that
        performs bulk writes.
    """

    def __init__(self, store: EntryStore) -> None:
        self._store = store

    def load_all(
        self,
        directory: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> LoadStats:
        """
        Load every known document found in *directory*.

        Re-running on an unchanged directory leaves the store unchanged:
        records are keyed by identity and overwritten in place.

        Parameters
        ----------
        directory:
            Knowledge directory to scan.
        progress_callback:
            Optional ``callback(current, total, filename)`` called after each
            document.

        Raises
        ------
        StoreError
            If the store cannot be written.  Document problems never raise.
        """
        stats = LoadStats()
        if not os.path.isdir(directory):
            stats.warnings.append(IngestWarning(
                source=directory, message="knowledge directory does not exist",
            ))
            logger.warning("Knowledge directory %s does not exist", directory)
            return stats

        documents = discover_documents(directory)
        if not documents:
            logger.warning("No knowledge documents found in %s", directory)

        for i, (path, category) in enumerate(documents, start=1):
            name = os.path.basename(path)
            try:
                data = read_document(path)
                records, warnings = parse_document(category, data, source=name)
            except DocumentError as exc:
                stats.warnings.append(IngestWarning(source=name, message=str(exc)))
                logger.warning("Skipping document %s: %s", name, exc)
            else:
                for w in warnings:
                    logger.warning("Skipping entry %s", w)
                stats.warnings.extend(warnings)
                written = self._store.upsert_many(category, records)
                stats.add(category, written)
                logger.info("Loaded %d %s record(s) from %s", written, category.value, name)
            if progress_callback:
                progress_callback(i, len(documents), name)

        logger.info("%s", stats)
        return stats

    def get_stats(self) -> LoadStats:
        """Current record counts in the store."""
        return LoadStats.from_store(self._store)


def ensure_loaded(
    store: EntryStore,
    directory: str,
    progress_callback: Optional[ProgressCallback] = None,
) -> Optional[LoadStats]:
    """
    Run the loader only if *store* holds no records yet.

    Returns the load statistics, or ``None`` when the store was already
    populated and nothing was done.
    """
    if any(store.counts().values()):
        return None
    logger.info("Knowledge store is empty, ingesting %s", directory)
    return KnowledgeLoader(store).load_all(directory, progress_callback)
