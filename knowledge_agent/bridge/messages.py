"""Message types exchanged between the interactive lane and the worker."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class WorkerTerminatedError(Exception):
    """The worker has shut down; no further commands are accepted."""


class WorkerState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


# ── Commands: interactive lane -> worker ──


@dataclass(frozen=True)
class Query:
    """A free-text question."""
    text: str


@dataclass(frozen=True)
class SlashCommand:
    """A ``/command args`` line typed by the user."""
    text: str


@dataclass(frozen=True)
class Quit:
    """Stop the worker. No response is ever emitted for it."""


Command = Union[Query, SlashCommand, Quit]


# ── Results: worker -> interactive lane ──


@dataclass(frozen=True)
class Response:
    text: str


@dataclass(frozen=True)
class SystemMessage:
    text: str


@dataclass(frozen=True)
class Error:
    text: str


@dataclass(frozen=True)
class Stats:
    text: str


Result = Union[Response, SystemMessage, Error, Stats]
