"""
knowledge_agent — local, queryable knowledge store for a conversational
front end.

Public API for library usage::

    from knowledge_agent import open_fetcher

    fetcher = open_fetcher("~/.knowledge_agent/data/knowledge.db")
    response = fetcher.explain_concept("ownership")
"""

from .api import open_fetcher, open_store

__all__ = ["open_fetcher", "open_store"]
