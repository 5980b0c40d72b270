"""
Knowledge fetcher — the single request/response entry point over the store.

A request is one of five frozen dataclasses (a closed union).  Each variant
maps to exactly one query-engine call, and the response's confidence is
scored from the results of that call only.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Union

from .confidence import ConfidencePolicy, Decision, score_confidence
from .models import Category
from .query import KnowledgeQuery, SearchResults

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExplainConcept:
    """Explain a concept, e.g. "What is ownership?"."""

    topic: str
    type = "explain_concept"


@dataclass(frozen=True)
class FindPattern:
    """Find a pattern for a use case, e.g. "builder with optional fields"."""

    use_case: str
    type = "find_pattern"


@dataclass(frozen=True)
class ExplainError:
    """Explain a compiler error code, e.g. "E0382"."""

    error_code: str
    type = "explain_error"


@dataclass(frozen=True)
class FindCommand:
    """Find a command of one tool, e.g. cargo + "run tests"."""

    tool: str
    action: str
    type = "find_command"


@dataclass(frozen=True)
class Search:
    """General search across concepts, patterns and commands."""

    query: str
    type = "search"


FetchRequest = Union[ExplainConcept, FindPattern, ExplainError, FindCommand, Search]

_REQUEST_TYPES = {
    cls.type: cls
    for cls in (ExplainConcept, FindPattern, ExplainError, FindCommand, Search)
}


def request_to_dict(request: FetchRequest) -> dict:
    """Serialize a request with a ``"type"`` tag."""
    return {"type": request.type, **asdict(request)}


def request_from_dict(data: dict) -> FetchRequest:
    """
    Build a request from its tagged dict form.

    Raises
    ------
    ValueError
        On an unknown ``type`` or missing fields.
    """
    kind = data.get("type")
    cls = _REQUEST_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown fetch request type: {kind!r}")
    try:
        return cls(**{k: str(v) for k, v in data.items() if k != "type"})
    except TypeError as exc:
        raise ValueError(f"Invalid {kind} request: {exc}") from exc


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

@dataclass
class KnowledgeResponse:
    """Results of one fetch plus their rendering and confidence."""

    request: FetchRequest
    results: SearchResults
    formatted_text: str
    confidence: float
    decision: Decision

    def has_results(self) -> bool:
        return not self.results.is_empty()

    def to_dict(self) -> dict:
        return {
            "request": request_to_dict(self.request),
            "results": self.results.to_dict(),
            "formatted_text": self.formatted_text,
            "confidence": self.confidence,
            "decision": self.decision.value,
        }


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

class KnowledgeFetcher:
    """
    Combines :class:`KnowledgeQuery` and confidence scoring.

    Store errors propagate unchanged; a request that matches nothing is not
    an error and yields confidence 0.0.
    """

    def __init__(
        self,
        query: KnowledgeQuery,
        policy: ConfidencePolicy | None = None,
    ) -> None:
        self._query = query
        self._policy = policy or ConfidencePolicy()

    @property
    def query(self) -> KnowledgeQuery:
        return self._query

    @property
    def policy(self) -> ConfidencePolicy:
        return self._policy

    def fetch(self, request: FetchRequest) -> KnowledgeResponse:
        """Run *request* and score its results."""
        results = self._dispatch(request)
        confidence = score_confidence(results.total())
        decision = self._policy.decide(confidence)
        logger.debug(
            "fetch %s: %d result(s), confidence=%.2f, decision=%s",
            request, results.total(), confidence, decision.value,
        )
        return KnowledgeResponse(
            request=request,
            results=results,
            formatted_text=results.format(),
            confidence=confidence,
            decision=decision,
        )

    def _dispatch(self, request: FetchRequest) -> SearchResults:
        q = self._query
        if isinstance(request, ExplainConcept):
            return SearchResults(concepts=q.search_category(Category.CONCEPT, request.topic))
        if isinstance(request, FindPattern):
            return SearchResults(patterns=q.search_category(Category.PATTERN, request.use_case))
        if isinstance(request, ExplainError):
            error = q.lookup_error(request.error_code)
            return SearchResults(errors=[error] if error is not None else [])
        if isinstance(request, FindCommand):
            return SearchResults(commands=q.find_commands(request.tool, request.action))
        if isinstance(request, Search):
            return q.search_all(request.query)
        raise TypeError(f"Unsupported fetch request: {type(request).__name__}")

    # ------------------------------------------------------------------
    # Convenience wrappers
    # ------------------------------------------------------------------

    def explain_concept(self, topic: str) -> KnowledgeResponse:
        return self.fetch(ExplainConcept(topic))

    def find_pattern(self, use_case: str) -> KnowledgeResponse:
        return self.fetch(FindPattern(use_case))

    def explain_error(self, error_code: str) -> KnowledgeResponse:
        return self.fetch(ExplainError(error_code))

    def find_command(self, tool: str, action: str) -> KnowledgeResponse:
        return self.fetch(FindCommand(tool, action))

    def search(self, query: str) -> KnowledgeResponse:
        return self.fetch(Search(query))

