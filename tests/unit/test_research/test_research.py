"""
Unit tests for game_mentor/research.py

Tests query framing, both research modes, partial-failure degradation,
result caps, ordering under concurrency and progress reporting.
"""

import asyncio

import pytest

from game_mentor.cancellation import CancellationToken
from game_mentor.errors import AnalysisCancelledError, ProviderError
from game_mentor.models import AnalysisRequest, ResearchMode
from game_mentor.progress import JobStatus
from game_mentor.research import SEARCH_TAG, ResearchGatherer

from conftest import MockArticleFetcher, MockSearchBackend
from fixtures.responses import create_search_results


class TestBuildQuery:
    """Tests for search query framing."""

    def test_includes_game_and_prompt(self, sample_request, mock_search):
        query = ResearchGatherer(mock_search).build_query(sample_request)
        assert query.startswith("Hollow Knight, Give me accurate information about: How do I beat this boss?")
        assert query.endswith("Prefer recent results.")

    def test_without_game(self, png_image, mock_search):
        """Should omit the game prefix when no game is named."""
        request = AnalysisRequest(image=png_image, prompt="What now?")
        query = ResearchGatherer(mock_search).build_query(request)
        assert query.startswith("Give me accurate information about: What now?")

    def test_description_hint_and_limit(self, png_image, mock_search):
        """Should append a description hint and stay within 400 characters."""
        request = AnalysisRequest(image=png_image, prompt="x" * 380, game_name="Celeste")
        query = ResearchGatherer(mock_search).build_query(request, description="A snowy cliff " * 50)
        assert len(query) <= 400


class TestSummaryOnly:
    """Tests for SUMMARY_ONLY mode."""

    @pytest.mark.asyncio
    async def test_returns_snippets(self, sample_request, mock_search, search_results):
        """Should return snippets verbatim in rank order with one search call."""
        fetcher = MockArticleFetcher()
        gatherer = ResearchGatherer(mock_search, fetcher)

        results = await gatherer.research(sample_request, ResearchMode.SUMMARY_ONLY)

        assert [r.url for r in results] == [h.url for h in search_results]
        assert [r.content for r in results] == [h.snippet for h in search_results]
        assert len(mock_search.queries) == 1
        assert fetcher.requested == []

    @pytest.mark.asyncio
    async def test_empty_snippets_dropped(self, sample_request):
        """Should skip hits without a snippet and mark their jobs failed."""
        hits = create_search_results(2)
        hits[0] = hits[0].model_copy(update={"snippet": ""})
        snapshots = []

        results = await ResearchGatherer(MockSearchBackend(hits)).research(
            sample_request, ResearchMode.SUMMARY_ONLY, progress_sink=snapshots.append
        )

        assert [r.url for r in results] == [hits[1].url]
        final = snapshots[-1]
        assert final.job("article-1").status == JobStatus.FAILED
        assert final.job("article-2").status == JobStatus.COMPLETED
        assert final.total_percentage == 100.0


class TestFullArticle:
    """Tests for FULL_ARTICLE mode."""

    @pytest.mark.asyncio
    async def test_fetches_articles(self, sample_request, mock_search, search_results):
        """Should replace snippets with fetched article text."""
        fetcher = MockArticleFetcher({h.url: f"Full text of {h.title}" for h in search_results})

        results = await ResearchGatherer(mock_search, fetcher).research(sample_request, ResearchMode.FULL_ARTICLE)

        assert [r.content for r in results] == [f"Full text of {h.title}" for h in search_results]
        assert sorted(fetcher.requested) == sorted(h.url for h in search_results)

    @pytest.mark.asyncio
    async def test_all_fetches_fail_returns_snippets(self, sample_request, mock_search, search_results):
        """Should not abort when every fetch fails; snippets stand in."""
        fetcher = MockArticleFetcher({})
        snapshots = []

        results = await ResearchGatherer(mock_search, fetcher).research(
            sample_request, ResearchMode.FULL_ARTICLE, progress_sink=snapshots.append
        )

        assert len(results) == len(search_results)
        assert [r.content for r in results] == [h.snippet for h in search_results]
        final = snapshots[-1]
        assert all(final.job(f"article-{i}").status == JobStatus.FAILED for i in range(1, 4))
        assert final.job(SEARCH_TAG).status == JobStatus.COMPLETED
        assert final.total_percentage == 100.0

    @pytest.mark.asyncio
    async def test_failed_fetch_without_snippet_skipped(self, sample_request):
        """Should drop a failed fetch when there is no snippet to fall back on."""
        hits = create_search_results(2, with_snippets=False)
        fetcher = MockArticleFetcher({hits[1].url: "Second article"})

        results = await ResearchGatherer(MockSearchBackend(hits), fetcher).research(
            sample_request, ResearchMode.FULL_ARTICLE
        )

        assert [r.content for r in results] == ["Second article"]

    @pytest.mark.asyncio
    async def test_order_preserved_despite_completion_order(self, sample_request):
        """Should return results in search rank even when later fetches finish first."""
        hits = create_search_results(4)
        fetcher = MockArticleFetcher(
            {h.url: h.title for h in hits},
            delays={hits[0].url: 0.05, hits[1].url: 0.03, hits[2].url: 0.0, hits[3].url: 0.01},
        )

        results = await ResearchGatherer(MockSearchBackend(hits), fetcher, concurrency=4).research(
            sample_request, ResearchMode.FULL_ARTICLE
        )

        assert [r.title for r in results] == [h.title for h in hits]

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, sample_request):
        """Should never run more fetches at once than the worker bound."""
        hits = create_search_results(6)
        fetcher = MockArticleFetcher({h.url: "x" for h in hits}, delays={h.url: 0.01 for h in hits})

        await ResearchGatherer(MockSearchBackend(hits), fetcher, concurrency=2).research(
            sample_request, ResearchMode.FULL_ARTICLE
        )

        assert fetcher.max_active == 2

    @pytest.mark.asyncio
    async def test_without_fetcher_uses_snippets(self, sample_request, mock_search, search_results):
        """Should fall back to snippets when no article fetcher is configured."""
        results = await ResearchGatherer(mock_search).research(sample_request, ResearchMode.FULL_ARTICLE)
        assert [r.content for r in results] == [h.snippet for h in search_results]


class TestLimitsAndFailures:
    """Tests for caps, search failure and cancellation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [ResearchMode.SUMMARY_ONLY, ResearchMode.FULL_ARTICLE])
    async def test_max_results_cap(self, sample_request, mode):
        """Should never return more than max_results."""
        hits = create_search_results(10)

        class GreedySearch(MockSearchBackend):
            async def search(self, query, max_results):
                return self.results

        fetcher = MockArticleFetcher({h.url: "text" for h in hits})
        results = await ResearchGatherer(GreedySearch(hits), fetcher, max_results=3).research(sample_request, mode)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_search_failure_raises(self, sample_request):
        """Should raise ProviderError and report the search job as failed."""
        snapshots = []
        gatherer = ResearchGatherer(MockSearchBackend(error=ProviderError("search down")))

        with pytest.raises(ProviderError):
            await gatherer.research(sample_request, progress_sink=snapshots.append)

        assert snapshots[-1].job(SEARCH_TAG).status == JobStatus.FAILED
        assert snapshots[-1].total_percentage == 100.0

    @pytest.mark.asyncio
    async def test_progress_adds_article_jobs(self, sample_request, mock_search):
        """Should report one job per search hit after the search job."""
        snapshots = []
        await ResearchGatherer(mock_search).research(sample_request, progress_sink=snapshots.append)

        assert snapshots[0].tags == [SEARCH_TAG]
        assert snapshots[-1].tags == [SEARCH_TAG, "article-1", "article-2", "article-3"]
        assert snapshots[-1].total_percentage == 100.0

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, sample_request, mock_search):
        """Should raise AnalysisCancelledError without searching."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(AnalysisCancelledError):
            await ResearchGatherer(mock_search).research(sample_request, cancellation_token=token)
        assert mock_search.queries == []

    @pytest.mark.asyncio
    async def test_cancel_during_fetch(self, sample_request, mock_search, search_results):
        """Should abandon in-flight fetches when cancelled."""
        token = CancellationToken()
        fetcher = MockArticleFetcher({h.url: "x" for h in search_results}, delays={h.url: 10 for h in search_results})

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(AnalysisCancelledError):
            await asyncio.wait_for(
                ResearchGatherer(mock_search, fetcher).research(
                    sample_request, ResearchMode.FULL_ARTICLE, cancellation_token=token
                ),
                timeout=2,
            )
        await canceller
