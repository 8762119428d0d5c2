from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from research_engine.tools.tavily_search import SearchResult


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class FakeClient:
    def __init__(self, payload):
        self.payload = payload
        self.calls: list[tuple[tuple, dict]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def get(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return FakeResponse(self.payload)


@pytest.mark.asyncio
async def test_search_provider_uses_brave_when_configured():
    with (
        patch("research_engine.tools.search_provider.settings") as mock_settings,
        patch("research_engine.tools.search_provider.brave_search.search", new=AsyncMock(return_value=[
            SearchResult(title="t", url="https://a.com", content="c", score=0.0)
        ])) as brave_search,
        patch("research_engine.tools.search_provider.tavily_search.search", new=AsyncMock()) as tavily_search,
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = True

        from research_engine.tools import search_provider

        result = await search_provider.search("query", max_results=3, language="de-DE")

    assert result.provider == "brave"
    assert len(result.results) == 1
    assert brave_search.await_args.kwargs == {"query": "query", "max_results": 3, "language": "de-DE"}
    tavily_search.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_provider_falls_back_to_tavily_on_brave_error():
    with (
        patch("research_engine.tools.search_provider.settings") as mock_settings,
        patch("research_engine.tools.search_provider.brave_search.search", new=AsyncMock(side_effect=RuntimeError("brave down"))),
        patch("research_engine.tools.search_provider.tavily_search.search", new=AsyncMock(return_value=[
            SearchResult(title="t2", url="https://b.com", content="c2", score=0.9)
        ])) as tavily_search,
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = True

        from research_engine.tools import search_provider

        result = await search_provider.search("query", max_results=5)

    assert result.provider == "tavily"
    assert result.fallback_from == "brave"
    assert "brave down" in (result.fallback_reason or "")
    tavily_search.assert_awaited_once()


@pytest.mark.asyncio
async def test_search_provider_falls_back_when_searxng_returns_nothing():
    with (
        patch("research_engine.tools.search_provider.settings") as mock_settings,
        patch("research_engine.tools.search_provider.searxng_search.search", new=AsyncMock(return_value=[])),
        patch("research_engine.tools.search_provider.tavily_search.search", new=AsyncMock(return_value=[
            SearchResult(title="t", url="https://c.com", content="c", score=0.5)
        ])),
    ):
        mock_settings.search_provider = "searxng"
        mock_settings.search_fallback_to_tavily = True

        from research_engine.tools import search_provider

        result = await search_provider.search("query")

    assert result.provider == "tavily"
    assert result.fallback_from == "searxng"
    assert result.fallback_reason == "searxng returned zero results"


@pytest.mark.asyncio
async def test_search_provider_raises_without_fallback():
    with (
        patch("research_engine.tools.search_provider.settings") as mock_settings,
        patch("research_engine.tools.search_provider.brave_search.search", new=AsyncMock(side_effect=RuntimeError("brave down"))),
        patch("research_engine.tools.search_provider.tavily_search.search", new=AsyncMock()) as tavily_search,
    ):
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = False

        from research_engine.tools import search_provider

        with pytest.raises(RuntimeError):
            await search_provider.search("query")

    tavily_search.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("research_engine.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"
        mock_settings.search_fallback_to_tavily = True

        from research_engine.tools import search_provider

        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_brave_search_maps_response_shape_and_language():
    from research_engine.tools import brave_search

    client = FakeClient(
        {
            "web": {
                "results": [
                    {"title": "Result 1", "url": "https://example.com/1", "description": "Desc 1"},
                    {
                        "title": "Result 2",
                        "url": "https://example.com/2",
                        "extra_snippets": ["Snippet 2a", "Snippet 2b"],
                    },
                ]
            }
        }
    )

    with (
        patch("research_engine.tools.brave_search.settings") as mock_settings,
        patch("research_engine.tools.brave_search.httpx.AsyncClient", return_value=client),
    ):
        mock_settings.brave_api_key = "brave-key"
        results = await brave_search.search("query", max_results=2, language="de-DE")

    assert [r.content for r in results] == ["Desc 1", "Snippet 2a Snippet 2b"]
    _, kwargs = client.calls[0]
    assert kwargs["params"] == {"q": "query", "count": 2, "search_lang": "de", "country": "DE"}
    assert kwargs["headers"]["X-Subscription-Token"] == "brave-key"


@pytest.mark.asyncio
async def test_brave_search_requires_api_key():
    from research_engine.tools import brave_search

    with patch("research_engine.tools.brave_search.settings") as mock_settings:
        mock_settings.brave_api_key = ""
        with pytest.raises(RuntimeError):
            await brave_search.search("query")


@pytest.mark.asyncio
async def test_searxng_search_queries_json_api():
    from research_engine.tools import searxng_search

    client = FakeClient(
        {
            "results": [
                {"title": "A", "url": "https://a.de", "content": " Inhalt A ", "score": 2.5},
                {"title": "no url"},
                {"title": "B", "url": "https://b.de", "content": "Inhalt B"},
            ]
        }
    )

    with (
        patch("research_engine.tools.searxng_search.settings") as mock_settings,
        patch("research_engine.tools.searxng_search.httpx.AsyncClient", return_value=client),
    ):
        mock_settings.searxng_base_url = "http://searx.local/"
        results = await searxng_search.search("Klimaschutz", max_results=10, language="de-DE")

    args, kwargs = client.calls[0]
    assert args[0] == "http://searx.local/search"
    assert kwargs["params"]["format"] == "json"
    assert kwargs["params"]["language"] == "de-DE"
    assert [r.url for r in results] == ["https://a.de", "https://b.de"]
    assert results[0].content == "Inhalt A"
    assert results[1].score == 0.0


def test_brave_params_cap_count_at_api_limit():
    from research_engine.tools import brave_search

    params = brave_search._params("Tempolimit", 50, "de-DE")

    assert params["count"] == 20
    assert params["search_lang"] == "de"
    assert params["country"] == "DE"
    assert brave_search._params("Tempolimit", 5, None) == {"q": "Tempolimit", "count": 5}
