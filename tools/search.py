"""
tools/search.py — Web Search Tool

Web search via DuckDuckGo's HTML endpoint, parsed with BeautifulSoup.
No API key required. Results whose host is on the resilience blocklist are
dropped before they can become evidence.

Registered tools:
  - search → Fact(source="Web Search", key="search:<query>")
"""

from __future__ import annotations

import urllib.parse
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from exceptions import ResilienceNotInitializedError
from observability.logger import get_logger
from resilience.service import get_resilience
from tools.tool_registry import registry
from tools.types import Fact

log = get_logger(__name__)

_DDG_URL = "https://html.duckduckgo.com/html/"
_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}
_SOURCE = "Web Search"
_TIMEOUT = 15.0
_DEFAULT_MAX_RESULTS = 5


@registry.register(
    name="search",
    description=(
        "Search the web and return the top results (title, URL, snippet). "
        "Use for visa/entry rules, events, and anything the other tools do not cover."
    ),
    source=_SOURCE,
    host="html.duckduckgo.com",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query"},
            "max_results": {
                "type": "integer",
                "description": "Maximum number of results to return (default: 5, max: 10)",
                "default": 5,
            },
        },
        "required": ["query"],
    },
)
async def search(query: str, max_results: int = _DEFAULT_MAX_RESULTS) -> Fact:
    max_results = min(max_results, 10)
    log.debug("search.start", query=query, max_results=max_results)

    async with httpx.AsyncClient(headers=_HEADERS, timeout=_TIMEOUT, follow_redirects=True) as client:
        response = await client.post(_DDG_URL, data={"q": query, "b": "", "kl": "us-en"})
        response.raise_for_status()

    results = filter_blocked(parse_ddg_results(response.text, max_results * 2))[:max_results]
    log.debug("search.complete", query=query, result_count=len(results))

    return Fact(
        source=_SOURCE,
        key=f"search:{query}",
        value=[{"title": r["title"], "url": r["url"], "snippet": r["snippet"]} for r in results],
        url=results[0]["url"] if results else None,
    )


def filter_blocked(results: list[dict], blocked: Optional[set[str]] = None) -> list[dict]:
    """Drop results whose host is currently blocklisted."""
    if blocked is None:
        try:
            blocked = set(get_resilience().blocklist.blocked_hosts())
        except ResilienceNotInitializedError:
            blocked = set()
    if not blocked:
        return results
    kept = []
    for r in results:
        host = (urllib.parse.urlparse(r["url"]).hostname or "").lower()
        if host in blocked:
            log.debug("search.result_blocked", host=host)
            continue
        kept.append(r)
    return kept


def parse_ddg_results(html: str, max_results: int) -> list[dict]:
    """Parse DuckDuckGo HTML search results page."""
    soup = BeautifulSoup(html, "html.parser")
    results = []

    for result in soup.select(".result"):
        if len(results) >= max_results:
            break

        title_tag = result.select_one(".result__title a")
        if not title_tag:
            continue

        title = title_tag.get_text(strip=True)
        url = _clean_ddg_url(title_tag.get("href", ""))
        if not url or not title:
            continue

        snippet_tag = result.select_one(".result__snippet")
        snippet = snippet_tag.get_text(strip=True) if snippet_tag else ""

        results.append({"title": title, "url": url, "snippet": snippet})

    return results


def _clean_ddg_url(raw_url: str) -> Optional[str]:
    """
    DuckDuckGo wraps URLs in a redirect. Extract the actual URL.
    Handles both /l/?uddg=... format and direct URLs.
    """
    if not raw_url:
        return None

    if raw_url.startswith("/l/?") or raw_url.startswith("//duckduckgo.com/l/?"):
        parsed = urllib.parse.urlparse("https://duckduckgo.com" + raw_url.removeprefix("//duckduckgo.com"))
        params = urllib.parse.parse_qs(parsed.query)
        if "uddg" in params:
            return urllib.parse.unquote(params["uddg"][0])

    if raw_url.startswith("http"):
        return raw_url

    return None
