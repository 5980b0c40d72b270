"""
Terminal output helpers and file logging for the CLI.

Library modules log through ``logging.getLogger(__name__)`` and never touch
handlers; the CLI calls :func:`setup_logger` once at start-up so that all
verbose output lands in a timestamped log file instead of the terminal.
"""

import logging
import os
import sys
from datetime import datetime

from .kb.loader import LoadStats
from .kb.fetcher import KnowledgeResponse


def setup_logger(log_dir: str = "~/.knowledge_agent/logs",
                 verbose: bool = False) -> logging.Logger:
    """Creates a file logger. All verbose output goes here."""
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"knowledge_{timestamp}.log")

    logger = logging.getLogger("knowledge_agent")
    logger.setLevel(logging.DEBUG)

    # File handler: captures everything
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    # Console handler: warnings only unless verbose
    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG if verbose else logging.WARNING)
    ch.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(ch)

    return logger


def print_load_stats(stats: LoadStats) -> None:
    """Print an ingestion summary, including skipped documents/entries."""
    print(
        f"\nIngestion complete:\n"
        f"  Concepts: {stats.concepts}\n"
        f"  Patterns: {stats.patterns}\n"
        f"  Commands: {stats.commands}\n"
        f"  Errors:   {stats.errors}\n"
        f"  Total:    {stats.total()}"
    )
    if stats.warnings:
        print(f"\n  {len(stats.warnings)} item(s) skipped:")
        for w in stats.warnings[:20]:
            print(f"    - {w}")
        if len(stats.warnings) > 20:
            print(f"    ... and {len(stats.warnings) - 20} more (see log)")


def print_response(response: KnowledgeResponse, titles_only: bool = False) -> None:
    """Pretty-print a fetch response."""
    header = (
        f"[{response.results.total()} result(s)]  "
        f"confidence={response.confidence:.2f}  decision={response.decision.value}"
    )
    print(header)
    print("-" * 60)
    if not response.has_results():
        print("  (no results in the knowledge store)")
        return
    if titles_only:
        print(summarize_titles(response))
    else:
        print(response.formatted_text)


def summarize_titles(response: KnowledgeResponse) -> str:
    """One line per result, grouped by category."""
    res = response.results
    lines: list[str] = []
    if res.concepts:
        lines.append("Concepts:")
        lines.extend(f"  • {c.title}  ({c.id})" for c in res.concepts)
    if res.patterns:
        lines.append("Patterns:")
        lines.extend(f"  • {p.name}  ({p.id})" for p in res.patterns)
    if res.commands:
        lines.append("Commands:")
        lines.extend(f"  • {c.tool} {c.command}" for c in res.commands)
    if res.errors:
        lines.append("Errors:")
        lines.extend(f"  • {e.code}: {e.title}" for e in res.errors)
    return "\n".join(lines)
