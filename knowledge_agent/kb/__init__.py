"""
Knowledge retrieval engine.

Layers, leaves first:
  - store:      SQLite Entry Store with a per-category term index
  - loader:     ingestion of knowledge documents into the store
  - query:      ranked per-category and cross-category search
  - confidence: result count -> confidence -> decision
  - fetcher:    request/response entry point combining query + confidence
"""

from .confidence import ConfidencePolicy, Decision, score_confidence
from .errors import IngestWarning, MalformedRecordError, StoreError, StoreIOError
from .fetcher import (
    ExplainConcept,
    ExplainError,
    FetchRequest,
    FindCommand,
    FindPattern,
    KnowledgeFetcher,
    KnowledgeResponse,
    Search,
)
from .loader import KnowledgeLoader, LoadStats, ensure_loaded
from .models import Category, CodeExample, Command, CommandFlag, Concept, ErrorEntry, Pattern
from .query import KnowledgeQuery, SearchResults
from .store import EntryStore

__version__ = "1.0.0"
