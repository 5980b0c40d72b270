"""
Programmatic API: open the knowledge store and build a fetcher.

Example usage::

    from knowledge_agent import open_fetcher

    fetcher = open_fetcher()
    response = fetcher.explain_error("E0382")
    print(response.confidence, response.decision)
    print(response.formatted_text)
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import Config
from .kb.confidence import ConfidencePolicy
from .kb.fetcher import KnowledgeFetcher
from .kb.loader import LoadStats, ensure_loaded
from .kb.query import KnowledgeQuery
from .kb.store import EntryStore

_logger = logging.getLogger(__name__)


def open_store(
    store_path: Optional[str] = None,
    knowledge_dir: Optional[str] = None,
    *,
    config: Optional[Config] = None,
    progress_callback=None,
) -> tuple[EntryStore, Optional[LoadStats]]:
    """Open (and on first run, populate) the knowledge store.

    A missing store file means first run: the store is created and the
    knowledge directory ingested before it is returned.  An existing but
    empty store is ingested too.

    Returns:
        ``(store, stats)`` where *stats* is ``None`` if no ingestion ran.

    Raises:
        StoreError: If the store cannot be opened or written.
    """
    cfg = config or Config.load()
    store_path = store_path or cfg.STORE_PATH
    knowledge_dir = knowledge_dir or cfg.KNOWLEDGE_DIR

    first_run = not EntryStore.exists(store_path)
    store = EntryStore(store_path)
    if first_run:
        _logger.info("No knowledge store at %s, creating it", store.db_path)
    stats = ensure_loaded(store, knowledge_dir, progress_callback)
    return store, stats


def build_fetcher(store: EntryStore, config: Optional[Config] = None) -> KnowledgeFetcher:
    """Wire a :class:`KnowledgeFetcher` over an open store."""
    cfg = config or Config.load()
    query = KnowledgeQuery(store, limit=cfg.SEARCH_LIMIT)
    policy = ConfidencePolicy(low=cfg.CONFIDENCE_LOW, high=cfg.CONFIDENCE_HIGH)
    return KnowledgeFetcher(query, policy)


def open_fetcher(
    store_path: Optional[str] = None,
    knowledge_dir: Optional[str] = None,
    *,
    config_path: Optional[str] = None,
) -> KnowledgeFetcher:
    """Open the store (ingesting on first run) and return a fetcher."""
    cfg = Config.load(config_path)
    store, _ = open_store(store_path, knowledge_dir, config=cfg)
    return build_fetcher(store, cfg)
