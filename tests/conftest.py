"""
Shared test fixtures for game-mentor.

Provides mock implementations of:
- LLM provider backends
- Web search backends
- Article fetchers
- Sample images, requests and rule directories
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytest

# Make the package importable without installation
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from game_mentor.errors import ProviderError
from game_mentor.models import AnalysisRequest, RawImage, SearchResult

from fixtures.responses import (
    create_description_payload,
    create_image_bytes,
    create_recommendation_payload,
    create_rule,
    create_search_results,
    write_rule_file,
)


# ============================================================================
# LLM PROVIDER MOCKING
# ============================================================================

class MockLLMBackend:
    """
    Mock bound provider.

    Responses are consumed in order; an Exception instance is raised instead
    of returned. Every call's keyword arguments are recorded in `calls`.
    """

    def __init__(self, responses: Optional[List[Union[Dict[str, Any], Exception]]] = None, name: str = "mock-provider"):
        self.name = name
        self.model = "mock-model"
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate_json(self, system_prompt, user_text, schema, image=None,
                            temperature=0.7, label="", cancellation_token=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_text": user_text,
            "schema": schema,
            "image": image,
            "temperature": temperature,
            "label": label,
        })
        if not self.responses:
            raise AssertionError(f"Unexpected provider call: {label}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class BlockingLLMBackend(MockLLMBackend):
    """Provider whose call never completes until cancelled."""

    async def generate_json(self, system_prompt, user_text, schema, image=None,
                            temperature=0.7, label="", cancellation_token=None):
        self.calls.append({"label": label})
        never = asyncio.get_running_loop().create_future()
        if cancellation_token is None:
            return await never
        return await cancellation_token.guard(never)


@pytest.fixture
def mock_provider_factory():
    """Build a MockLLMBackend with queued responses."""
    def _make(*responses, name: str = "mock-provider") -> MockLLMBackend:
        return MockLLMBackend(list(responses), name=name)
    return _make


@pytest.fixture
def happy_provider():
    """Provider answering one description call then one synthesis call."""
    return MockLLMBackend([create_description_payload(), create_recommendation_payload()])


# ============================================================================
# WEB SEARCH / ARTICLE MOCKING
# ============================================================================

class MockSearchBackend:
    """Mock web search returning fixed results (or raising)."""

    name = "mock-search"

    def __init__(self, results: Optional[List[SearchResult]] = None, error: Optional[Exception] = None):
        self.results = results or []
        self.error = error
        self.queries: List[str] = []

    async def search(self, query: str, max_results: int) -> List[SearchResult]:
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.results[:max_results]


class MockArticleFetcher:
    """
    Mock article reader.

    `pages` maps URL to text; URLs missing from it raise ProviderError.
    `delays` optionally maps URL to a sleep before answering.
    """

    def __init__(self, pages: Optional[Dict[str, str]] = None, delays: Optional[Dict[str, float]] = None):
        self.pages = pages or {}
        self.delays = delays or {}
        self.requested: List[str] = []
        self.active = 0
        self.max_active = 0

    async def read(self, url: str) -> str:
        self.requested.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(url, 0))
            if url not in self.pages:
                raise ProviderError(f"Failed to fetch {url}: 404")
            return self.pages[url]
        finally:
            self.active -= 1


@pytest.fixture
def search_results():
    return create_search_results(3)


@pytest.fixture
def mock_search(search_results):
    return MockSearchBackend(search_results)


# ============================================================================
# SAMPLE DATA FIXTURES
# ============================================================================

@pytest.fixture
def png_bytes():
    return create_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes():
    return create_image_bytes("JPEG")


@pytest.fixture
def png_image(png_bytes):
    return RawImage(data=png_bytes, mime_type="image/png")


@pytest.fixture
def jpeg_image(jpeg_bytes):
    return RawImage(data=jpeg_bytes, mime_type="image/jpeg")


@pytest.fixture
def sample_request(png_image):
    return AnalysisRequest(
        image=png_image,
        prompt="How do I beat this boss?",
        game_name="Hollow Knight",
    )


@pytest.fixture
def rules_dir(tmp_path):
    """
    Rules directory with two files for "Hollow Knight":
    combat.json (nested rules) and exploration/map.json.
    """
    root = tmp_path / "rules"
    game_dir = root / "Hollow Knight"
    write_rule_file(game_dir, "combat", [
        create_rule("c1", "Dodge before attacking", "Combat", children=[
            create_rule("c1a", "Dash through slow attacks", "Combat"),
        ]),
        create_rule("c2", "Heal only when safe", "Combat"),
    ])
    write_rule_file(game_dir / "exploration", "map", [
        create_rule("e1", "Buy the map from Cornifer", "Exploration"),
    ])
    return root
