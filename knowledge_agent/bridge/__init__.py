"""
Worker bridge — runs all blocking knowledge and network work on one worker
thread and talks to the interactive lane through two message queues.
"""

from .messages import (
    Error,
    Query,
    Quit,
    Response,
    SlashCommand,
    Stats,
    SystemMessage,
    WorkerState,
    WorkerTerminatedError,
)
from .worker import KnowledgeWorker, build_worker

__all__ = [
    "Error",
    "KnowledgeWorker",
    "Query",
    "Quit",
    "Response",
    "SlashCommand",
    "Stats",
    "SystemMessage",
    "WorkerState",
    "WorkerTerminatedError",
    "build_worker",
]
