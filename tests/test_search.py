import asyncio
from datetime import date

import httpx
import pytest

from localchat.search import (
    SearchResult,
    WebSearchError,
    build_search_prompt,
    create_search_summary,
    is_placeholder,
    web_search,
)


def _wikipedia_payload():
    return {
        "query": {
            "pages": {
                "1": {
                    "title": "Python (programming language)",
                    "extract": "Python is a high-level language. " * 20,
                    "canonicalurl": "https://en.wikipedia.org/wiki/Python_(programming_language)",
                }
            }
        }
    }


def _duckduckgo_payload():
    return {
        "RelatedTopics": [
            {
                "Text": "Python - A programming language",
                "FirstURL": "https://duckduckgo.com/Python",
            },
            {
                "Text": "Duplicate of the Wikipedia page",
                "FirstURL": "https://en.wikipedia.org/wiki/Python_(programming_language)",
            },
            {"Name": "Category group without text"},
        ]
    }


def _search(handler, query="python"):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await web_search(query=query, client=client)

    return asyncio.run(scenario())


def test_results_are_merged_wikipedia_first_and_deduplicated():
    def handler(request):
        if request.url.host == "en.wikipedia.org":
            assert request.url.params["gsrsearch"] == "python"
            return httpx.Response(200, json=_wikipedia_payload())
        return httpx.Response(200, json=_duckduckgo_payload())

    response = _search(handler)
    assert [r.source for r in response.results] == ["Wikipedia", "DuckDuckGo"]
    assert response.results[0].snippet.endswith("...")
    assert len(response.results[0].snippet) == 303
    assert response.results[1].title == "Python"
    assert response.results[1].snippet == "A programming language"
    assert 'Search results for "python"' in response.summary


def test_one_failing_source_does_not_fail_the_search():
    def handler(request):
        if request.url.host == "en.wikipedia.org":
            return httpx.Response(503)
        return httpx.Response(200, json=_duckduckgo_payload())

    response = _search(handler)
    assert len(response.results) == 2
    assert all(r.source == "DuckDuckGo" for r in response.results)


def test_no_results_yields_placeholder():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    response = _search(handler, "obscure thing")
    assert len(response.results) == 1
    assert is_placeholder(response.results[0])
    assert "duckduckgo.com/?q=obscure+thing" in response.results[0].link


def test_empty_query_rejected():
    with pytest.raises(WebSearchError):
        asyncio.run(web_search(query="   "))


def test_summary_and_prompt_format():
    results = [SearchResult(title="T", link="https://x.test", snippet="S", source=None)]
    summary = create_search_summary("q", results, today=date(2024, 5, 1))
    assert summary.startswith('Search results for "q" as of 2024-05-01:')
    assert "[1] T\nSource: Web\nURL: https://x.test\nS" in summary
    assert create_search_summary("q", []) == 'No results found for "q".'

    prompt = build_search_prompt("q", summary)
    assert prompt.startswith('I searched for "q" and found these results:')
    assert prompt.endswith('please provide a comprehensive answer to my query: "q"')
