"""
Slash commands — parsed and executed on the worker thread.

Each command produces at most one result message.  Commands never raise
for "nothing found"; store failures propagate to the worker, which turns
them into an :class:`Error` naming the store location.
"""

import logging
from typing import Callable, Optional

from ..cli_display import summarize_titles
from ..kb.fetcher import KnowledgeFetcher, KnowledgeResponse
from ..kb.loader import LoadStats
from ..kb.store import EntryStore
from ..web_search import format_results
from .messages import Response, Result, Stats, SystemMessage

logger = logging.getLogger(__name__)

QUIT_ALIASES = frozenset({"quit", "exit", "q"})

HELP_TEXT = """Available Commands:

/help                      - Show this help message
/search <query>            - Search the knowledge store (titles only)
/concept <topic>           - Explain a concept
/pattern <use case>        - Find a pattern for a use case
/error <code>              - Explain a compiler error code, e.g. E0382
/command <tool> [action]   - Find a command, e.g. /command cargo run tests
/stats                     - Show knowledge store statistics
/web <query>               - Search the web (bypasses the knowledge store)
/clear                     - Clear chat history
/quit                      - Exit

Anything not starting with / is answered from the knowledge store."""


def parse_slash(text: str) -> tuple[str, str]:
    """Split ``"/name  some args"`` into ``("name", "some args")``.

    The name is lower-cased; a line without a leading slash gives ``("", text)``.
    """
    text = text.strip()
    if not text.startswith("/"):
        return "", text
    name, _, args = text[1:].partition(" ")
    return name.lower(), args.strip()


def is_quit(text: str) -> bool:
    name, _ = parse_slash(text)
    return name in QUIT_ALIASES


def stats_text(store: EntryStore) -> str:
    """Human-readable summary of what the store holds."""
    stats = LoadStats.from_store(store)
    return (
        "Knowledge Store Statistics:\n\n"
        f"  Concepts: {stats.concepts}\n"
        f"  Patterns: {stats.patterns}\n"
        f"  Commands: {stats.commands}\n"
        f"  Errors:   {stats.errors}\n"
        f"  Total:    {stats.total()}\n\n"
        f"Store location: {store.db_path}"
    )


def _direct(fn, *args):
    return fn(*args)


class SlashCommandRunner:
    """Executes slash commands against the fetcher and store.

    Parameters
    ----------
    fetcher:
        The fetch orchestrator.
    store:
        The store behind *fetcher*, used for ``/stats``.
    web_search_fn:
        ``fn(query) -> list[SearchResult]``, or ``None`` when web search is
        disabled.
    call_external:
        ``call_external(fn, *args)`` used for network calls so the worker can
        abandon them on quit.  Returns :data:`ABANDONED` when it did.
    """

    ABANDONED = object()

    def __init__(
        self,
        fetcher: KnowledgeFetcher,
        store: EntryStore,
        web_search_fn: Optional[Callable] = None,
        call_external: Optional[Callable] = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._web_search = web_search_fn
        self._call_external = call_external or _direct
        self._handlers = {
            "help": self._help,
            "search": self._search,
            "concept": self._concept,
            "pattern": self._pattern,
            "error": self._error,
            "command": self._command,
            "stats": self._stats,
            "web": self._web,
            "clear": self._clear,
        }

    def execute(self, text: str) -> Optional[Result]:
        """Run one slash command; ``None`` means the work was abandoned."""
        name, args = parse_slash(text)
        handler = self._handlers.get(name)
        if handler is None:
            return SystemMessage(f"Unknown command '/{name}'. Type /help for the list.")
        logger.debug("slash command /%s %r", name, args)
        return handler(args)

    # ── Handlers ──

    def _help(self, args: str) -> Result:
        return SystemMessage(HELP_TEXT)

    def _clear(self, args: str) -> Result:
        return SystemMessage("Chat history cleared.")

    def _stats(self, args: str) -> Result:
        return Stats(stats_text(self._store))

    def _search(self, args: str) -> Result:
        if not args:
            return SystemMessage("Usage: /search <query>")
        response = self._fetcher.search(args)
        if not response.has_results():
            return SystemMessage(
                f"No results for '{args}' in the knowledge store.\n"
                f"Try a web search with: /web {args}"
            )
        return Response(f"Search results for '{args}':\n\n{summarize_titles(response)}")

    def _concept(self, args: str) -> Result:
        if not args:
            return SystemMessage("Usage: /concept <topic>")
        return self._render(self._fetcher.explain_concept(args), args)

    def _pattern(self, args: str) -> Result:
        if not args:
            return SystemMessage("Usage: /pattern <use case>")
        return self._render(self._fetcher.find_pattern(args), args)

    def _error(self, args: str) -> Result:
        if not args:
            return SystemMessage("Usage: /error <code>")
        return self._render(self._fetcher.explain_error(args), args)

    def _command(self, args: str) -> Result:
        tool, _, action = args.partition(" ")
        if not tool:
            return SystemMessage("Usage: /command <tool> [action]")
        return self._render(self._fetcher.find_command(tool, action.strip()), args)

    def _web(self, args: str) -> Optional[Result]:
        if not args:
            return SystemMessage("Usage: /web <query>")
        if self._web_search is None:
            return SystemMessage("Web search is disabled (web_search.enabled is false).")
        results = self._call_external(self._web_search, args)
        if results is self.ABANDONED:
            return None
        if not results:
            return SystemMessage(f"No web results for '{args}'.")
        return Response(f"Web results for '{args}':\n\n{format_results(results)}")

    @staticmethod
    def _render(response: KnowledgeResponse, what: str) -> Result:
        if not response.has_results():
            return SystemMessage(
                f"Nothing about '{what}' in the knowledge store.\n"
                f"Try a web search with: /web {what}"
            )
        return Response(response.formatted_text)
