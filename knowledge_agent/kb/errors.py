"""
Error taxonomy for the knowledge store.

``NotFound`` is deliberately absent: a missing record is a valid negative
result and is reported as ``None`` by every lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class StoreError(Exception):
    """Base class for Entry Store failures."""


class StoreIOError(StoreError):
    """The store could not be opened, read or written."""

    def __init__(self, message: str, db_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.db_path = db_path


class MalformedRecordError(StoreError):
    """A record is missing required fields or has the wrong type."""


@dataclass
class IngestWarning:
    """A non-fatal problem found while ingesting one document or entry."""

    source: str
    message: str
    entry: str = ""

    def __str__(self) -> str:
        where = f"{self.source}[{self.entry}]" if self.entry else self.source
        return f"{where}: {self.message}"
