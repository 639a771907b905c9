"""
Web Search Backends

Real-time web search used to ground recommendations, via the Tavily or Brave
search APIs. Both return SearchResult lists in search-rank order.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

import aiohttp

from .errors import ConfigurationError, ProviderError
from .models import SearchResult, ToolConfiguration

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 400
SNIPPET_LENGTH = 1000


class WebSearchBackend(Protocol):
    name: str

    async def search(self, query: str, max_results: int) -> List[SearchResult]: ...


def truncate_query(query: str, limit: int = MAX_QUERY_LENGTH) -> str:
    query = " ".join(query.split())
    if len(query) <= limit:
        return query
    return query[:limit].rstrip()


class TavilyWebSearch:
    """Tavily search API (POST /search, basic depth)."""

    name = "tavily"
    DEFAULT_URL = "https://api.tavily.com/search"

    def __init__(self, api_key: str, base_url: str = "", timeout: int = 30):
        if not api_key:
            raise ConfigurationError("Tavily API key is not configured")
        self.api_key = api_key
        self.url = base_url or self.DEFAULT_URL
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ToolConfiguration) -> "TavilyWebSearch":
        return cls(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)

    async def search(self, query: str, max_results: int) -> List[SearchResult]:
        """
        Search the web.

        Args:
            query: Search query string (truncated to the API limit)
            max_results: Maximum number of results

        Returns:
            Search results in rank order

        Raises:
            ProviderError: On HTTP or network failure
        """
        payload = {
            "api_key": self.api_key,
            "query": truncate_query(query),
            "max_results": max_results,
            "search_depth": "basic",
            "include_answer": False,
            "include_raw_content": False,
        }

        logger.info(f"Tavily search: '{payload['query']}' (max_results={max_results})")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderError(f"Tavily API error {response.status}: {error_text[:200]}")
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Tavily search failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Tavily returned invalid JSON: {e}") from e

        results = []
        try:
            for item in (data.get("results") or [])[:max_results]:
                results.append(SearchResult(
                    title=item.get("title") or "",
                    url=item.get("url") or "",
                    snippet=(item.get("content") or "")[:SNIPPET_LENGTH],
                    score=float(item.get("score") or 0.0),
                ))
        except (ValueError, TypeError, AttributeError) as e:
            raise ProviderError(f"Tavily returned a malformed response: {e}") from e

        logger.info(f"Tavily returned {len(results)} results")
        return results


class BraveWebSearch:
    """Brave web search API (GET /res/v1/web/search)."""

    name = "brave"
    DEFAULT_URL = "https://api.search.brave.com/res/v1/web/search"

    def __init__(self, api_key: str, base_url: str = "", timeout: int = 30):
        if not api_key:
            raise ConfigurationError("Brave API key is not configured")
        self.api_key = api_key
        self.url = base_url or self.DEFAULT_URL
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ToolConfiguration) -> "BraveWebSearch":
        return cls(api_key=config.api_key, base_url=config.base_url, timeout=config.timeout)

    async def search(self, query: str, max_results: int) -> List[SearchResult]:
        params = {
            "q": truncate_query(query),
            "count": str(min(max_results, 20)),
        }
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key,
        }

        logger.info(f"Brave search: '{params['q']}' (count={params['count']})")
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.url,
                    params=params,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderError(f"Brave API error {response.status}: {error_text[:200]}")
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Brave search failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Brave returned invalid JSON: {e}") from e

        results = []
        try:
            web_results = (data.get("web") or {}).get("results") or []
            total = len(web_results)
            for rank, item in enumerate(web_results[:max_results]):
                results.append(SearchResult(
                    title=item.get("title") or "",
                    url=item.get("url") or "",
                    snippet=(item.get("description") or "")[:SNIPPET_LENGTH],
                    # Brave has no relevance score; derive one from rank
                    score=round(1.0 - rank / max(total, 1), 4),
                ))
        except (ValueError, TypeError, AttributeError) as e:
            raise ProviderError(f"Brave returned a malformed response: {e}") from e

        logger.info(f"Brave returned {len(results)} results")
        return results


SEARCH_BACKENDS = {
    "tavily": TavilyWebSearch,
    "brave": BraveWebSearch,
}


def create_web_search(config: Optional[ToolConfiguration]) -> Optional[WebSearchBackend]:
    """Build a search backend from a tool configuration, or None when absent."""
    if config is None:
        return None
    backend_cls = SEARCH_BACKENDS.get(config.tool_name.lower())
    if backend_cls is None:
        raise ConfigurationError(
            f"Unknown search tool '{config.tool_name}' (known: {', '.join(sorted(SEARCH_BACKENDS))})"
        )
    return backend_cls.from_config(config)
