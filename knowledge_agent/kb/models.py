"""
Record types for the four knowledge categories.

Every record is a plain dataclass so that equality is field-for-field;
list-valued "set" fields (tags, related ids, common mistakes) are
de-duplicated on construction while keeping their first-seen order.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Union


def _unique(values) -> list[str]:
    """Return *values* as a list of strings with duplicates removed."""
    seen: set[str] = set()
    out: list[str] = []
    for v in values or []:
        s = str(v)
        if s not in seen:
            seen.add(s)
            out.append(s)
    return out


# ---------------------------------------------------------------------------
# Nested value types
# ---------------------------------------------------------------------------

@dataclass
class CodeExample:
    """A titled code snippet with a short explanation."""

    title: str
    code: str
    explanation: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CodeExample":
        return cls(
            title=str(data.get("title", "")),
            code=str(data.get("code", "")),
            explanation=str(data.get("explanation", "")),
        )


@dataclass
class CommandFlag:
    """A command-line flag and what it does."""

    flag: str
    effect: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "CommandFlag":
        return cls(flag=str(data.get("flag", "")), effect=str(data.get("effect", "")))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Concept:
    """A language concept with a textbook-style explanation."""

    id: str
    topic: str
    title: str
    explanation: str
    code_examples: list[CodeExample] = field(default_factory=list)
    common_mistakes: list[str] = field(default_factory=list)
    related_concepts: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.common_mistakes = _unique(self.common_mistakes)
        self.related_concepts = _unique(self.related_concepts)
        self.tags = _unique(self.tags)

    @property
    def key(self) -> str:
        return self.id

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Concept":
        return cls(
            id=data["id"],
            topic=data["topic"],
            title=data["title"],
            explanation=data["explanation"],
            code_examples=[CodeExample.from_dict(e) for e in data.get("code_examples") or []],
            common_mistakes=data.get("common_mistakes") or [],
            related_concepts=data.get("related_concepts") or [],
            tags=data.get("tags") or [],
        )


@dataclass
class Pattern:
    """A reusable code pattern or idiom."""

    id: str
    name: str
    description: str
    template: str = ""
    when_to_use: str = ""
    examples: list[CodeExample] = field(default_factory=list)
    when_not_to_use: str = ""

    @property
    def key(self) -> str:
        return self.id

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Pattern":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data["description"],
            template=data.get("template") or "",
            when_to_use=data.get("when_to_use") or "",
            examples=[CodeExample.from_dict(e) for e in data.get("examples") or []],
            when_not_to_use=data.get("when_not_to_use") or "",
        )


@dataclass
class Command:
    """A toolchain command reference.  Identity is ``(tool, command)``."""

    tool: str
    command: str
    description: str
    flags: list[CommandFlag] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return command_key(self.tool, self.command)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Command":
        return cls(
            tool=data["tool"],
            command=data["command"],
            description=data["description"],
            flags=[CommandFlag.from_dict(f) for f in data.get("flags") or []],
            examples=[str(e) for e in data.get("examples") or []],
        )


@dataclass
class ErrorEntry:
    """A compiler diagnostic, keyed by its code (e.g. ``E0382``)."""

    code: str
    title: str
    explanation: str
    example_code: str = ""
    fix: str = ""
    related_errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.related_errors = _unique(self.related_errors)

    @property
    def key(self) -> str:
        return self.code

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorEntry":
        return cls(
            code=data["code"],
            title=data["title"],
            explanation=data["explanation"],
            example_code=data.get("example_code") or "",
            fix=data.get("fix") or "",
            related_errors=data.get("related_errors") or [],
        )


Record = Union[Concept, Pattern, Command, ErrorEntry]


def command_key(tool: str, command: str) -> str:
    """Identity key for a command record."""
    return f"{tool}:{command}"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class Category(str, Enum):
    """The four independently searchable knowledge categories."""

    CONCEPT = "concept"
    PATTERN = "pattern"
    COMMAND = "command"
    ERROR = "error"

    @property
    def record_type(self) -> type:
        return _RECORD_TYPES[self]

    @property
    def table(self) -> str:
        return f"{self.value}s"

    @property
    def title_field(self) -> str:
        return _TITLE_FIELDS[self]

    @property
    def indexed_fields(self) -> tuple[str, ...]:
        return _INDEXED_FIELDS[self]

    @property
    def required_fields(self) -> tuple[str, ...]:
        return _REQUIRED_FIELDS[self]


_RECORD_TYPES: dict[Category, type] = {
    Category.CONCEPT: Concept,
    Category.PATTERN: Pattern,
    Category.COMMAND: Command,
    Category.ERROR: ErrorEntry,
}

_TITLE_FIELDS = {
    Category.CONCEPT: "title",
    Category.PATTERN: "name",
    Category.COMMAND: "command",
    Category.ERROR: "title",
}

_INDEXED_FIELDS = {
    Category.CONCEPT: ("topic", "title", "explanation", "tags"),
    Category.PATTERN: ("name", "description", "when_to_use"),
    Category.COMMAND: ("tool", "command", "description"),
    Category.ERROR: ("code", "title", "explanation"),
}

_REQUIRED_FIELDS = {
    Category.CONCEPT: ("id", "topic", "title", "explanation"),
    Category.PATTERN: ("id", "name", "description"),
    Category.COMMAND: ("tool", "command", "description"),
    Category.ERROR: ("code", "title", "explanation"),
}


def field_text(record: Any, name: str) -> str:
    """Return the searchable text of one field (lists are space-joined)."""
    value = getattr(record, name, "")
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value or "")
