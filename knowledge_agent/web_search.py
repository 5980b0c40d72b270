"""
Web search fallback — consulted only when the local store has nothing.

Supports DuckDuckGo (free, no key), Serper and SerpAPI.  Every provider
returns a list of :class:`SearchResult`; any failure yields an empty list so
the caller can degrade to a "nothing found" message.
"""

import logging
import re
from dataclasses import asdict, dataclass
from html.parser import HTMLParser
from urllib.parse import quote_plus, unquote

import requests

logger = logging.getLogger(__name__)

PROVIDERS = ("duckduckgo", "serper", "serpapi")


@dataclass
class SearchResult:
    """A single web search result."""
    title: str
    url: str
    snippet: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SearchResult":
        return cls(
            title=str(data.get("title", "")),
            url=str(data.get("url", "")),
            snippet=str(data.get("snippet", "")),
        )


# ── HTML text extraction ─────────────────────────────────────


class _HTMLTextExtractor(HTMLParser):
    """Collect the text nodes of an HTML fragment."""

    def __init__(self):
        super().__init__()
        self._pieces: list[str] = []

    def handle_data(self, data):
        self._pieces.append(data)

    def get_text(self) -> str:
        return " ".join("".join(self._pieces).split())


def _html_to_text(html: str) -> str:
    extractor = _HTMLTextExtractor()
    extractor.feed(html)
    extractor.close()
    return extractor.get_text()


# ── DuckDuckGo provider ─────────────────────────────────────

_DDG_LINK = re.compile(
    r'<a[^>]+class="result__a"[^>]*href="([^"]*)"[^>]*>(.*?)</a>',
    re.DOTALL,
)
_DDG_SNIPPET = re.compile(
    r'<a[^>]+class="result__snippet"[^>]*>(.*?)</a>',
    re.DOTALL,
)


def parse_duckduckgo_html(html: str, max_results: int) -> list[SearchResult]:
    """Extract results from a DuckDuckGo HTML results page."""
    links = _DDG_LINK.findall(html)
    snippets = _DDG_SNIPPET.findall(html)

    results: list[SearchResult] = []
    for i, (href, title_html) in enumerate(links):
        if len(results) >= max_results:
            break
        title = _html_to_text(title_html)
        snippet = _html_to_text(snippets[i]) if i < len(snippets) else ""
        # DuckDuckGo wraps URLs in a redirect
        url = href
        match = re.search(r"uddg=([^&]+)", href)
        if match:
            url = unquote(match.group(1))
        if title and url:
            results.append(SearchResult(title=title, url=url, snippet=snippet))
    return results


def _search_duckduckgo(query: str, max_results: int, timeout: float) -> list[SearchResult]:
    url = f"https://html.duckduckgo.com/html/?q={quote_plus(query)}"
    headers = {
        "User-Agent": (
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
    }
    try:
        resp = requests.get(url, headers=headers, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("DuckDuckGo request failed: %s", exc)
        return []
    return parse_duckduckgo_html(resp.text, max_results)


# ── Serper provider ──────────────────────────────────────────


def _search_serper(query: str, api_key: str, max_results: int,
                   timeout: float) -> list[SearchResult]:
    headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}
    payload = {"q": query, "num": min(max_results, 10)}
    try:
        resp = requests.post("https://google.serper.dev/search", headers=headers,
                             json=payload, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Serper request failed: %s", exc)
        return []

    return [
        SearchResult(
            title=item.get("title", ""),
            url=item.get("link", ""),
            snippet=item.get("snippet", ""),
        )
        for item in data.get("organic", [])[:max_results]
    ]


# ── SerpAPI provider ─────────────────────────────────────────


def _search_serpapi(query: str, api_key: str, max_results: int,
                    timeout: float) -> list[SearchResult]:
    params = {
        "api_key": api_key,
        "q": query,
        "engine": "google",
        "num": min(max_results, 10),
    }
    try:
        resp = requests.get("https://serpapi.com/search", params=params, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("SerpAPI request failed: %s", exc)
        return []

    return [
        SearchResult(
            title=item.get("title", ""),
            url=item.get("link", ""),
            snippet=item.get("snippet", ""),
        )
        for item in data.get("organic_results", [])[:max_results]
    ]


# ── Public API ───────────────────────────────────────────────


def web_search(query: str, provider: str = "duckduckgo", api_key: str = "",
               max_results: int = 5, timeout: float = 10.0) -> list[SearchResult]:
    """Run a web search using the configured provider.

    Args:
        query: Search query string.
        provider: One of ``"duckduckgo"``, ``"serper"``, ``"serpapi"``.
        api_key: API key (required for serper/serpapi).
        max_results: Maximum number of results to return.
        timeout: Request timeout in seconds.

    Returns:
        List of :class:`SearchResult`. Empty list on failure.
    """
    query = query.strip()
    if not query:
        return []
    provider = provider.lower().strip()

    if provider in ("serper", "serpapi"):
        if not api_key:
            logger.warning("%s provider requires web_search.api_key", provider)
            return []
        if provider == "serper":
            return _search_serper(query, api_key, max_results, timeout)
        return _search_serpapi(query, api_key, max_results, timeout)

    if provider != "duckduckgo":
        logger.warning("Unknown provider '%s', falling back to DuckDuckGo", provider)
    return _search_duckduckgo(query, max_results, timeout)


def format_results(results: list[SearchResult]) -> str:
    """Render web results as a numbered plain-text list."""
    lines = []
    for i, result in enumerate(results, 1):
        lines.append(f"{i}. {result.title} ({result.url})")
        if result.snippet:
            lines.append(f"   {result.snippet}")
    return "\n".join(lines)
