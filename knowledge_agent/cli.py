"""
`knowledge-agent` command line interface.

Commands
--------
knowledge-agent ingest [DIR]            -- load knowledge documents into the store
knowledge-agent ingest [DIR] --rebuild  -- clear the store first
knowledge-agent stats                   -- record counts per category
knowledge-agent search "<query>"        -- search concepts, patterns and commands
knowledge-agent search "<query>" --json
knowledge-agent concept <topic>         -- explain a concept
knowledge-agent pattern <use case>      -- find a pattern
knowledge-agent error <code>            -- explain a compiler error code
knowledge-agent command <tool> [action] -- find a tool command
knowledge-agent chat                    -- interactive session

Global options (before the command): ``--config``, ``--store``,
``--knowledge-dir``, ``--verbose``.

On first run (no store file yet) every command except ``ingest`` builds the
store from the knowledge directory before doing anything else.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from tqdm import tqdm

from .api import build_fetcher, open_store
from .cli_display import print_load_stats, print_response, setup_logger
from .config import Config
from .kb.errors import StoreError
from .kb.loader import KnowledgeLoader
from .kb.store import EntryStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _progress_bar(desc: str):
    """Return ``(callback, close)`` driving a tqdm bar from loader progress."""
    pbar = tqdm(total=None, unit="doc", desc=desc)

    def _progress(current: int, total: int, filename: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.set_postfix_str(os.path.basename(filename), refresh=False)
        pbar.update(1)

    return _progress, pbar.close


def _store_failure(exc: StoreError, store_path: str) -> None:
    """Print an actionable store error naming the store location and exit 1."""
    path = getattr(exc, "db_path", None) or store_path
    print(
        f"Knowledge store unavailable at {path}: {exc}\n"
        f"Check the path (--store / KNOWLEDGE_STORE_PATH) or rebuild it with "
        f"`knowledge-agent ingest --rebuild`.",
        file=sys.stderr,
    )
    sys.exit(1)


def _open(cfg: Config) -> EntryStore:
    """Open the store, ingesting the knowledge directory on first run."""
    first_run = not EntryStore.exists(cfg.STORE_PATH)
    progress, close = (None, None)
    if first_run:
        print(f"No knowledge store at {cfg.STORE_PATH}; building it from {cfg.KNOWLEDGE_DIR}")
        progress, close = _progress_bar("Ingesting")
    try:
        store, stats = open_store(config=cfg, progress_callback=progress)
    finally:
        if close is not None:
            close()
    if stats is not None:
        print_load_stats(stats)
    return store


def _fetcher(args: argparse.Namespace, cfg: Config):
    return build_fetcher(_open(cfg), cfg)


def _emit(response, as_json: bool) -> None:
    if as_json:
        print(json.dumps(response.to_dict(), indent=2))
    else:
        print_response(response)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------


def _cmd_ingest(args: argparse.Namespace, cfg: Config) -> None:
    """Load every knowledge document in DIR into the store."""
    directory = os.path.expanduser(args.directory or cfg.KNOWLEDGE_DIR)
    store = EntryStore(cfg.STORE_PATH)
    if args.rebuild:
        print(f"Clearing {store.db_path}")
        store.clear()

    print(f"Ingesting knowledge from: {directory}")
    progress, close = _progress_bar("Ingesting")
    try:
        stats = KnowledgeLoader(store).load_all(directory, progress_callback=progress)
    finally:
        close()
    print_load_stats(stats)


def _cmd_stats(args: argparse.Namespace, cfg: Config) -> None:
    """Print record counts per category."""
    store = _open(cfg)
    counts = store.counts()
    print("\nKnowledge Store")
    print("=" * 40)
    print(f"  {'location':<20} {store.db_path}")
    print(f"  {'schema version':<20} {store.schema_version()}")
    for category, n in counts.items():
        print(f"  {category.table:<20} {n}")
    print(f"  {'total':<20} {sum(counts.values())}")
    print(f"  {'index terms':<20} {store.index_size()}")
    print()


def _cmd_search(args: argparse.Namespace, cfg: Config) -> None:
    t0 = time.perf_counter()
    response = _fetcher(args, cfg).search(args.query)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    _emit(response, args.json)
    if not args.json:
        print(f"\n  Query time: {elapsed_ms:.1f}ms")


def _cmd_concept(args: argparse.Namespace, cfg: Config) -> None:
    _emit(_fetcher(args, cfg).explain_concept(" ".join(args.topic)), args.json)


def _cmd_pattern(args: argparse.Namespace, cfg: Config) -> None:
    _emit(_fetcher(args, cfg).find_pattern(" ".join(args.use_case)), args.json)


def _cmd_error(args: argparse.Namespace, cfg: Config) -> None:
    _emit(_fetcher(args, cfg).explain_error(args.code), args.json)


def _cmd_command(args: argparse.Namespace, cfg: Config) -> None:
    _emit(_fetcher(args, cfg).find_command(args.tool, " ".join(args.action)), args.json)


def _cmd_chat(args: argparse.Namespace, cfg: Config) -> None:
    """Line-oriented interactive session driving the worker bridge."""
    from .bridge import Error, Query, Quit, SlashCommand, build_worker
    from .bridge.commands import is_quit
    from .bridge.messages import WorkerState

    store = _open(cfg)
    worker = build_worker(build_fetcher(store, cfg), store, cfg)
    worker.start()

    def _show(result) -> None:
        if isinstance(result, Error):
            print(f"Error: {result.text}", file=sys.stderr)
        else:
            print(f"\n{result.text}\n")

    def _await_one() -> None:
        # Poll the result lane; the worker does all blocking work
        while worker.state != WorkerState.TERMINATED:
            results = worker.poll()
            if results:
                for r in results:
                    _show(r)
                return
            time.sleep(0.05)

    print("Knowledge agent. Type /help for commands, /quit to exit.")
    _await_one()  # start-up stats

    try:
        while True:
            try:
                line = input("> ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                if is_quit(line):
                    break
                if line.split()[0].lower() == "/clear":
                    print("\033[2J\033[H", end="")
                worker.send(SlashCommand(line))
            else:
                worker.send(Query(line))
            _await_one()
    except KeyboardInterrupt:
        print()
    finally:
        worker.send(Quit())
        worker.join(timeout=2)
    print("Goodbye!")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-agent",
        description="Local knowledge store for Rust concepts, patterns, commands and errors",
    )
    parser.add_argument("--config", help="Path to a .knowledge_agent.yaml file")
    parser.add_argument("--store", help="Knowledge store file (overrides config)")
    parser.add_argument("--knowledge-dir", dest="knowledge_dir",
                        help="Directory holding knowledge documents (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Echo log output to the terminal")

    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- ingest ---
    ingest_p = subparsers.add_parser("ingest", help="Load knowledge documents into the store")
    ingest_p.add_argument("directory", nargs="?", help="Knowledge directory")
    ingest_p.add_argument("--rebuild", action="store_true",
                          help="Clear the store before loading")
    ingest_p.set_defaults(func=_cmd_ingest)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", help="Show record counts per category")
    stats_p.set_defaults(func=_cmd_stats)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Search concepts, patterns and commands")
    search_p.add_argument("query", help="Free-text query")
    search_p.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    search_p.set_defaults(func=_cmd_search)

    # --- concept / pattern ---
    concept_p = subparsers.add_parser("concept", help="Explain a concept")
    concept_p.add_argument("topic", nargs="+")
    concept_p.add_argument("--json", action="store_true")
    concept_p.set_defaults(func=_cmd_concept)

    pattern_p = subparsers.add_parser("pattern", help="Find a pattern for a use case")
    pattern_p.add_argument("use_case", nargs="+", metavar="USE_CASE")
    pattern_p.add_argument("--json", action="store_true")
    pattern_p.set_defaults(func=_cmd_pattern)

    # --- error ---
    error_p = subparsers.add_parser("error", help="Explain a compiler error code")
    error_p.add_argument("code", help="Error code, e.g. E0382")
    error_p.add_argument("--json", action="store_true")
    error_p.set_defaults(func=_cmd_error)

    # --- command ---
    command_p = subparsers.add_parser("command", help="Find a command of a tool")
    command_p.add_argument("tool", help="Tool name, e.g. cargo")
    command_p.add_argument("action", nargs="*", help="What you want to do")
    command_p.add_argument("--json", action="store_true")
    command_p.set_defaults(func=_cmd_command)

    # --- chat ---
    chat_p = subparsers.add_parser("chat", help="Interactive session")
    chat_p.set_defaults(func=_cmd_chat)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for ``knowledge-agent``."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    if args.store:
        cfg.STORE_PATH = os.path.expanduser(args.store)
    if args.knowledge_dir:
        cfg.KNOWLEDGE_DIR = os.path.expanduser(args.knowledge_dir)

    try:
        setup_logger(cfg.LOG_DIR, verbose=args.verbose)
    except OSError as exc:
        print(f"Warning: file logging disabled ({exc})", file=sys.stderr)

    try:
        args.func(args, cfg)
    except StoreError as exc:
        _store_failure(exc, cfg.STORE_PATH)


if __name__ == "__main__":
    main()
