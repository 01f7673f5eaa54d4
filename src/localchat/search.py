from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any
from urllib.parse import quote, quote_plus

import httpx
from pydantic import BaseModel

from localchat.errors import LocalChatError

logger = logging.getLogger(__name__)

DUCKDUCKGO_API_URL = "https://api.duckduckgo.com/"
WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
MAX_RESULTS = 10
SNIPPET_CHARS = 300


class WebSearchError(LocalChatError):
    pass


class SearchResult(BaseModel):
    title: str
    link: str
    snippet: str
    source: str | None = None


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]
    summary: str


def _manual_search_link(query: str) -> str:
    return f"https://duckduckgo.com/?q={quote_plus(query)}"


def _parse_duckduckgo(data: Any, source: str = "DuckDuckGo") -> list[SearchResult]:
    topics = data.get("RelatedTopics") if isinstance(data, dict) else None
    if not isinstance(topics, list):
        return []

    results: list[SearchResult] = []
    for topic in topics:
        if not isinstance(topic, dict):
            continue
        text = topic.get("Text") or ""
        link = topic.get("FirstURL") or ""
        if not text or not link:
            continue
        title, _, rest = text.partition(" - ")
        results.append(
            SearchResult(title=title or text, link=link, snippet=rest or text, source=source)
        )
    return results


def _parse_wikipedia(data: Any) -> list[SearchResult]:
    pages = (data.get("query") or {}).get("pages") if isinstance(data, dict) else None
    if not isinstance(pages, dict):
        return []

    results: list[SearchResult] = []
    for page in pages.values():
        title = page.get("title") or ""
        extract = page.get("extract") or ""
        snippet = extract[:SNIPPET_CHARS] + ("..." if len(extract) > SNIPPET_CHARS else "")
        link = page.get("canonicalurl") or f"https://en.wikipedia.org/wiki/{quote(title)}"
        results.append(SearchResult(title=title, link=link, snippet=snippet, source="Wikipedia"))
    return results


async def search_duckduckgo(client: httpx.AsyncClient, query: str) -> list[SearchResult]:
    try:
        resp = await client.get(
            DUCKDUCKGO_API_URL,
            params={"q": query, "format": "json", "no_html": 1, "skip_disambig": 1},
        )
        resp.raise_for_status()
        return _parse_duckduckgo(resp.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"DuckDuckGo search failed for {query!r}: {e}")
        return []


async def search_wikipedia(client: httpx.AsyncClient, query: str) -> list[SearchResult]:
    try:
        resp = await client.get(
            WIKIPEDIA_API_URL,
            params={
                "action": "query",
                "format": "json",
                "origin": "*",
                "prop": "extracts|info",
                "exintro": 1,
                "explaintext": 1,
                "inprop": "url",
                "generator": "search",
                "gsrlimit": 3,
                "gsrsearch": query,
            },
        )
        resp.raise_for_status()
        return _parse_wikipedia(resp.json())
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Wikipedia search failed for {query!r}: {e}")
        return []


def _dedupe(results: list[SearchResult]) -> list[SearchResult]:
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        if not result.link or result.link in seen:
            continue
        seen.add(result.link)
        unique.append(result)
    return unique


def create_search_summary(query: str, results: list[SearchResult], today: date | None = None) -> str:
    if not results:
        return f'No results found for "{query}".'

    today = today or date.today()
    lines = [f'Search results for "{query}" as of {today.isoformat()}:', ""]
    for idx, result in enumerate(results, start=1):
        lines.append(f"[{idx}] {result.title}")
        lines.append(f"Source: {result.source or 'Web'}")
        lines.append(f"URL: {result.link}")
        lines.append(result.snippet)
        lines.append("")
    lines.append("---")
    lines.append(
        f"These search results are provided to help answer the user's query about \"{query}\". "
        "Please use this information to form a comprehensive response. "
        "If the information is insufficient, you may acknowledge the limitations in the search results."
    )
    return "\n".join(lines)


def build_search_prompt(query: str, summary: str) -> str:
    return (
        f'I searched for "{query}" and found these results:\n\n'
        f"{summary}\n\n"
        f'Based on these search results, please provide a comprehensive answer to my query: "{query}"'
    )


def is_placeholder(result: SearchResult) -> bool:
    return result.source == "Search System"


async def web_search(
    *,
    query: str,
    client: httpx.AsyncClient | None = None,
    max_results: int = MAX_RESULTS,
    timeout: float = 15.0,
) -> SearchResponse:
    query = (query or "").strip()
    if not query:
        raise WebSearchError("query is required")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        wikipedia, duckduckgo = await asyncio.gather(
            search_wikipedia(client, query), search_duckduckgo(client, query)
        )
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        f"Search for {query!r}: wikipedia={len(wikipedia)} duckduckgo={len(duckduckgo)}"
    )
    results = _dedupe([*wikipedia, *duckduckgo])[: max(1, int(max_results))]

    if not results:
        results = [
            SearchResult(
                title=f'No results for "{query}"',
                link=_manual_search_link(query),
                snippet=(
                    f'No results found for "{query}". Try rephrasing your query '
                    "or visit DuckDuckGo for manual search."
                ),
                source="Search System",
            )
        ]

    return SearchResponse(query=query, results=results, summary=create_search_summary(query, results))
