"""
Knowledge worker — the single lane that performs all blocking work.

The interactive lane sends commands with :meth:`KnowledgeWorker.send` and
collects results with :meth:`KnowledgeWorker.poll`, which never blocks.  One
daemon thread runs an explicit loop over a blocking ``queue.Queue.get()``
and processes commands one at a time, so results come back in the order the
commands were sent.

State machine::

    IDLE -> PROCESSING -> IDLE            (per command)
    IDLE | PROCESSING -> SHUTTING_DOWN -> TERMINATED   (on Quit)

On ``Quit`` any store work already running is allowed to finish, an
in-flight completion or web call is abandoned, and commands still queued
are dropped without a response.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

from ..kb.errors import StoreError
from ..kb.fetcher import KnowledgeFetcher
from ..kb.store import EntryStore
from ..llm.base import CompletionError, CompletionTimeoutError
from ..web_search import format_results
from .commands import SlashCommandRunner, is_quit, stats_text
from .messages import (
    Command,
    Error,
    Query,
    Quit,
    Response,
    Result,
    SlashCommand,
    Stats,
    SystemMessage,
    WorkerState,
    WorkerTerminatedError,
)

logger = logging.getLogger(__name__)

ABANDONED = SlashCommandRunner.ABANDONED


class _ExternalCall:
    """Outcome holder for one call run on a helper thread."""

    def __init__(self, fn, args):
        self._fn = fn
        self._args = args
        self.done = threading.Event()
        self.result = None
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.result = self._fn(*self._args)
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()


class KnowledgeWorker:
    """
    Runs the fetcher (and optional completion / web calls) off the
    interactive thread.

    Parameters
    ----------
    fetcher:
        Fetch orchestrator over *store*.
    store:
        The open Entry Store, owned by the caller.
    completion:
        Object with ``answer(question, knowledge, web_context) -> str``
        (normally a :class:`~knowledge_agent.llm.CompletionClient`), or
        ``None`` to return formatted knowledge as-is.
    web_search_fn:
        ``fn(query) -> list[SearchResult]`` used when the store has nothing,
        or ``None`` to disable the web fallback.
    poll_interval:
        How often (seconds) an in-flight external call checks for quit.
    """

    def __init__(
        self,
        fetcher: KnowledgeFetcher,
        store: EntryStore,
        completion=None,
        web_search_fn: Optional[Callable] = None,
        poll_interval: float = 0.05,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._completion = completion
        self._web_search = web_search_fn
        self._poll_interval = poll_interval

        self._commands: "queue.Queue[Command]" = queue.Queue()
        self._results: "queue.Queue[Result]" = queue.Queue()
        self._quit = threading.Event()
        self._state_lock = threading.Lock()
        self._state = WorkerState.IDLE
        self._thread: Optional[threading.Thread] = None
        self._runner = SlashCommandRunner(
            fetcher, store, web_search_fn, call_external=self._call_external
        )

    # ------------------------------------------------------------------
    # Interactive-lane API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the worker thread.  A :class:`Stats` result is emitted first."""
        if self._thread is not None:
            raise RuntimeError("worker already started")
        self._thread = threading.Thread(target=self._run, daemon=True, name="kb-worker")
        self._thread.start()

    def send(self, command: Command) -> None:
        """Enqueue *command*.  Never blocks.

        ``SlashCommand("/quit")`` (and its aliases) is treated as :class:`Quit`.

        Raises
        ------
        WorkerTerminatedError
            If the worker is shutting down or has terminated.
        """
        if isinstance(command, SlashCommand) and is_quit(command.text):
            command = Quit()

        with self._state_lock:
            if self._state in (WorkerState.SHUTTING_DOWN, WorkerState.TERMINATED):
                if isinstance(command, Quit):
                    return
                raise WorkerTerminatedError(f"worker is {self._state.value}")
            if isinstance(command, Quit):
                self._quit.set()
                if self._thread is None:
                    self._state = WorkerState.TERMINATED
                    return
                self._state = WorkerState.SHUTTING_DOWN
                logger.info("Quit requested, shutting down worker")

        self._commands.put(command)

    def poll(self) -> list[Result]:
        """Return every result available right now, oldest first."""
        results = []
        while True:
            try:
                results.append(self._results.get_nowait())
            except queue.Empty:
                return results

    def wait_for(self, timeout: Optional[float] = None) -> Optional[Result]:
        """Block for the next result; ``None`` if none arrives in *timeout*."""
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread to exit; returns True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def state(self) -> WorkerState:
        with self._state_lock:
            return self._state

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            self._emit(self._startup_stats())
            while True:
                command = self._commands.get()
                if isinstance(command, Quit) or self._quit.is_set():
                    break
                self._set_state(WorkerState.PROCESSING)
                result = self._handle(command)
                if result is not None:
                    self._emit(result)
                self._set_state(WorkerState.IDLE)
        finally:
            dropped = self._drain_commands()
            if dropped:
                logger.debug("Dropped %d queued command(s) on quit", dropped)
            with self._state_lock:
                self._state = WorkerState.TERMINATED
            logger.info("Worker terminated")

    def _emit(self, result: Result) -> None:
        # Checked under the state lock so nothing is emitted once Quit is sent
        with self._state_lock:
            if self._quit.is_set():
                logger.debug("Discarding %s produced after quit", type(result).__name__)
                return
            self._results.put(result)

    def _set_state(self, state: WorkerState) -> None:
        with self._state_lock:
            if self._state in (WorkerState.SHUTTING_DOWN, WorkerState.TERMINATED):
                return
            self._state = state

    def _drain_commands(self) -> int:
        count = 0
        while True:
            try:
                self._commands.get_nowait()
            except queue.Empty:
                return count
            count += 1

    def _startup_stats(self) -> Result:
        try:
            return Stats(stats_text(self._store))
        except StoreError as exc:
            return self._store_error(exc)

    # ------------------------------------------------------------------
    # Command handling
    # ------------------------------------------------------------------

    def _handle(self, command: Command) -> Optional[Result]:
        try:
            if isinstance(command, Query):
                return self._answer(command.text)
            if isinstance(command, SlashCommand):
                return self._runner.execute(command.text)
            raise TypeError(f"Unsupported command: {type(command).__name__}")
        except StoreError as exc:
            return self._store_error(exc)
        except CompletionTimeoutError as exc:
            logger.warning("Completion timed out: %s", exc)
            return Error(
                f"The completion service timed out ({exc}). "
                "Please retry in a moment."
            )
        except CompletionError as exc:
            logger.warning("Completion failed: %s", exc)
            return Error(
                f"The completion service is unreachable ({exc}). "
                "Check that it is running, then retry."
            )
        except Exception as exc:
            logger.exception("Unexpected error while handling %r", command)
            return Error(f"Internal error: {exc}")

    def _store_error(self, exc: StoreError) -> Error:
        path = getattr(exc, "db_path", None) or self._store.db_path
        logger.error("Knowledge store unavailable at %s: %s", path, exc)
        return Error(
            f"The knowledge store at {path} is unavailable ({exc}). "
            "Check the path, or rebuild it with: knowledge-agent ingest --rebuild"
        )

    def _answer(self, text: str) -> Optional[Result]:
        text = text.strip()
        if not text:
            return SystemMessage("Type a question, or /help for commands.")

        response = self._fetcher.search(text)
        logger.info(
            "query %r: %d result(s), confidence=%.2f, decision=%s",
            text, response.results.total(), response.confidence, response.decision.value,
        )

        knowledge = response.formatted_text if response.has_results() else ""
        web_context = ""
        if response.confidence == 0.0:
            if self._web_search is None:
                return SystemMessage(
                    f"Nothing found for '{text}' in the knowledge store.\n"
                    f"Try a web search with: /web {text}"
                )
            web_results = self._call_external(self._web_search, text)
            if web_results is ABANDONED:
                return None
            if not web_results:
                return SystemMessage(
                    f"Nothing found for '{text}' in the knowledge store or on the web.\n"
                    f"Try rephrasing, or search with other terms: /web <query>"
                )
            web_context = format_results(web_results)

        if self._completion is None:
            if knowledge:
                return Response(knowledge)
            return Response(f"From the web:\n\n{web_context}")

        answer = self._call_external(self._completion.answer, text, knowledge, web_context)
        if answer is ABANDONED:
            return None
        return Response(answer)

    def _call_external(self, fn, *args):
        """Run a network call, abandoning it if Quit arrives meanwhile.

        The call runs on its own daemon thread, so an abandoned call that
        never returns cannot keep the process alive.  Exceptions raised by
        *fn* are re-raised here, on the worker thread.
        """
        call = _ExternalCall(fn, args)
        thread = threading.Thread(target=call.run, daemon=True, name="kb-external")
        thread.start()
        while not call.done.wait(self._poll_interval):
            if self._quit.is_set():
                logger.info("Abandoning in-flight external call on quit")
                return ABANDONED
        if call.error is not None:
            raise call.error
        return call.result


def build_worker(fetcher: KnowledgeFetcher, store: EntryStore, config) -> KnowledgeWorker:
    """Create a worker wired to the completion client and web search from *config*."""
    from ..llm.completion import CompletionClient
    from ..web_cache import CachedWebSearch, WebSearchCache
    from ..web_search import web_search

    completion = None
    if config.COMPLETION_BASE_URL:
        completion = CompletionClient(
            base_url=config.COMPLETION_BASE_URL,
            model=config.COMPLETION_MODEL,
            api_key=config.COMPLETION_API_KEY,
            timeout=config.COMPLETION_TIMEOUT,
            max_tokens=config.COMPLETION_MAX_TOKENS,
            max_retries=config.LLM_MAX_RETRIES,
            retry_delay=config.LLM_RETRY_DELAY,
        )

    web_fn = None
    if config.WEB_SEARCH_ENABLED:
        try:
            cache = WebSearchCache(config.WEB_CACHE_DIR, config.WEB_CACHE_TTL_HOURS)
        except OSError as exc:
            logger.warning("Web cache disabled, cannot create %s: %s",
                           config.WEB_CACHE_DIR, exc)
            cache = None
        web_fn = CachedWebSearch(
            web_search,
            cache,
            provider=config.WEB_SEARCH_PROVIDER,
            api_key=config.WEB_SEARCH_API_KEY,
            max_results=config.WEB_SEARCH_MAX_RESULTS,
            timeout=config.WEB_SEARCH_TIMEOUT,
        )

    return KnowledgeWorker(fetcher, store, completion=completion, web_search_fn=web_fn)
