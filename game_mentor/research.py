"""
Research Gatherer

Runs a web search for the user's question and, in full-article mode, fetches
each hit's page concurrently. Individual fetch failures are skipped; the hit's
snippet stands in for the article when it has one.
"""

import asyncio
import logging
from typing import List, Optional

from .article_reader import ArticleFetcher
from .cancellation import CancellationToken, guarded
from .errors import AnalysisCancelledError, ProviderError
from .models import AnalysisRequest, ResearchMode, ResearchResult, SearchResult
from .progress import AnalysisProgress, JobStatus, ProgressSink
from .web_search import MAX_QUERY_LENGTH, WebSearchBackend, truncate_query

logger = logging.getLogger(__name__)

SEARCH_TAG = "search-web"
DESCRIPTION_HINT_LENGTH = 150


def article_tag(index: int) -> str:
    return f"article-{index}"


class ResearchGatherer:
    """
    Web research with swappable search and article-fetch backends.
    """

    def __init__(
        self,
        search_backend: WebSearchBackend,
        article_fetcher: Optional[ArticleFetcher] = None,
        max_results: int = 8,
        concurrency: int = 4,
    ):
        """
        Args:
            search_backend: Web search capability
            article_fetcher: Page reader used in full-article mode
            max_results: Upper bound on returned results
            concurrency: Maximum simultaneous article fetches
        """
        self.search_backend = search_backend
        self.article_fetcher = article_fetcher
        self.max_results = max_results
        self.concurrency = max(1, concurrency)

    def build_query(self, request: AnalysisRequest, description: Optional[str] = None) -> str:
        query = f"Give me accurate information about: {request.prompt.strip()}. Prefer recent results."
        if request.has_domain:
            query = f"{request.game_name.strip()}, {query}"
        if description:
            hint = " ".join(description.split())[:DESCRIPTION_HINT_LENGTH]
            query = f"{query} Context: {hint}"
        return truncate_query(query, MAX_QUERY_LENGTH)

    async def research(
        self,
        request: AnalysisRequest,
        mode: ResearchMode = ResearchMode.SUMMARY_ONLY,
        progress_sink: Optional[ProgressSink] = None,
        cancellation_token: Optional[CancellationToken] = None,
        description: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[ResearchResult]:
        """
        Gather research results for a request.

        Args:
            request: The analysis request
            mode: SUMMARY_ONLY uses snippets, FULL_ARTICLE fetches pages
            progress_sink: Receives a snapshot after every progress change
            cancellation_token: Observed by every network call
            description: Optional image description used to sharpen the query
            max_results: Override for the configured result cap

        Returns:
            Results in search-rank order, never more than max_results

        Raises:
            ProviderError: If the search itself fails
            AnalysisCancelledError: If cancelled
        """
        limit = max_results if max_results is not None else self.max_results
        progress = AnalysisProgress()
        progress.add_job(SEARCH_TAG, "Searching the web", JobStatus.IN_PROGRESS, 0)
        progress.report(progress_sink)

        query = self.build_query(request, description)
        try:
            hits = await guarded(self.search_backend.search(query, limit), cancellation_token)
        except ProviderError:
            progress.update_job(SEARCH_TAG, JobStatus.FAILED, 100)
            progress.report(progress_sink)
            raise

        hits = hits[:limit]
        progress.update_job(SEARCH_TAG, JobStatus.COMPLETED, name=f"Found {len(hits)} search results")
        for index, hit in enumerate(hits, start=1):
            progress.add_job(article_tag(index), f"Article {index}: {hit.title}")
        progress.report(progress_sink)

        if mode == ResearchMode.FULL_ARTICLE and self.article_fetcher is None:
            logger.warning("Full-article research requested without an article fetcher; using snippets")
            mode = ResearchMode.SUMMARY_ONLY

        if mode == ResearchMode.SUMMARY_ONLY:
            results = self._from_snippets(hits, progress, progress_sink)
        else:
            results = await self._from_articles(hits, progress, progress_sink, cancellation_token)

        logger.info(f"Research complete: {len(results)} of {len(hits)} results usable ({mode.value})")
        return results[:limit]

    def _from_snippets(
        self,
        hits: List[SearchResult],
        progress: AnalysisProgress,
        progress_sink: Optional[ProgressSink],
    ) -> List[ResearchResult]:
        results = []
        for index, hit in enumerate(hits, start=1):
            if hit.snippet.strip():
                results.append(_snippet_result(hit))
                progress.update_job(article_tag(index), JobStatus.COMPLETED)
            else:
                progress.update_job(article_tag(index), JobStatus.FAILED, 100, name=f"No content for article {index}: {hit.title}")
        progress.report(progress_sink)
        return results

    async def _from_articles(
        self,
        hits: List[SearchResult],
        progress: AnalysisProgress,
        progress_sink: Optional[ProgressSink],
        cancellation_token: Optional[CancellationToken],
    ) -> List[ResearchResult]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(index: int, hit: SearchResult) -> Optional[ResearchResult]:
            tag = article_tag(index)
            async with semaphore:
                if cancellation_token is not None:
                    cancellation_token.raise_if_cancelled()
                progress.update_job(tag, JobStatus.IN_PROGRESS, 50, name=f"Reading article {index}: {hit.title}")
                progress.report(progress_sink)
                try:
                    content = await guarded(self.article_fetcher.read(hit.url), cancellation_token)
                except AnalysisCancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Skipping article {index} ({hit.url}): {e}")
                    progress.update_job(tag, JobStatus.FAILED, 100, name=f"Error with article {index}: {hit.title}")
                    progress.report(progress_sink)
                    return _snippet_result(hit) if hit.snippet.strip() else None

            progress.update_job(tag, JobStatus.COMPLETED, 100, name=f"Converted article {index}: {hit.title}")
            progress.report(progress_sink)
            return ResearchResult(title=hit.title, url=hit.url, content=content, score=hit.score)

        tasks = [asyncio.ensure_future(fetch(index, hit)) for index, hit in enumerate(hits, start=1)]
        try:
            fetched = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return [result for result in fetched if result is not None]


def _snippet_result(hit: SearchResult) -> ResearchResult:
    return ResearchResult(title=hit.title, url=hit.url, content=hit.snippet, score=hit.score)
