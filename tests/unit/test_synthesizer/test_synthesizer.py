"""
Unit tests for game_mentor/synthesizer.py

Tests prompt composition and strict parsing of the structured recommendation.
"""

import pytest

from game_mentor.errors import ParseError, ProviderError
from game_mentor.models import RECOMMENDATION_SCHEMA, Priority, ResearchResult
from game_mentor.synthesizer import RESEARCH_PREAMBLE, RecommendationSynthesizer, parse_recommendation

from fixtures.responses import create_recommendation_item, create_recommendation_payload


@pytest.fixture
def synthesizer():
    return RecommendationSynthesizer()


@pytest.fixture
def research():
    return [
        ResearchResult(title="Boss guide", url="https://example.com/boss", content="Dodge the slam."),
        ResearchResult(title="Charms", url="https://example.com/charms", content="Use Quick Slash."),
    ]


class TestBuildPrompt:
    """Tests for build_prompt."""

    def test_includes_all_parts(self, synthesizer, research):
        """Should combine game, rules, research, description and question."""
        system_prompt, user_text = synthesizer.build_prompt(
            "A boss arena", research, "\n=== GAME KNOWLEDGE RULES ===\n- Heal\n", "How do I win?", "Hollow Knight"
        )

        assert system_prompt.startswith("You are an expert game advisor. The game being analyzed is 'Hollow Knight'.")
        assert "=== GAME KNOWLEDGE RULES ===" in system_prompt
        assert RESEARCH_PREAMBLE in system_prompt
        assert "[1] Boss guide\nhttps://example.com/boss\nDodge the slam." in system_prompt
        assert "[2] Charms" in system_prompt
        assert "A boss arena" in user_text
        assert "How do I win?" in user_text

    def test_no_game_no_research_no_rules(self, synthesizer):
        """Should omit optional sections when they are empty."""
        system_prompt, _ = synthesizer.build_prompt("desc", [], "", "Q")
        assert "The game being analyzed" not in system_prompt
        assert RESEARCH_PREAMBLE not in system_prompt
        assert "GAME KNOWLEDGE RULES" not in system_prompt

    def test_deterministic(self, synthesizer, research):
        """Should produce identical prompts for identical inputs."""
        first = synthesizer.build_prompt("d", research, "r", "q", "g")
        second = synthesizer.build_prompt("d", list(research), "r", "q", "g")
        assert first == second


class TestParseRecommendation:
    """Tests for parse_recommendation."""

    def test_valid(self):
        """Should build a Recommendation with the provider name."""
        rec = parse_recommendation(create_recommendation_payload(), "openai-main")
        assert rec.provider_used == "openai-main"
        assert rec.recommendations[0].priority == Priority.HIGH
        assert 0.0 <= rec.confidence <= 1.0

    @pytest.mark.parametrize("field", ["analysis", "summary", "recommendations", "confidence"])
    def test_missing_field(self, field):
        """Should raise ParseError when a required field is missing."""
        payload = create_recommendation_payload()
        del payload[field]
        with pytest.raises(ParseError, match=field):
            parse_recommendation(payload, "p")

    @pytest.mark.parametrize("confidence", [1.2, -0.01, "high"])
    def test_bad_confidence(self, confidence):
        """Should reject out-of-range or non-numeric confidence."""
        with pytest.raises(ParseError):
            parse_recommendation(create_recommendation_payload(confidence=confidence), "p")

    @pytest.mark.parametrize("priority", ["urgent", "none", "", "HIGHEST"])
    def test_bad_priority_not_coerced(self, priority):
        """Should reject priorities outside the closed set."""
        payload = create_recommendation_payload(items=[create_recommendation_item(priority=priority)])
        with pytest.raises(ParseError):
            parse_recommendation(payload, "p")

    def test_recommendations_not_list(self):
        with pytest.raises(ParseError):
            parse_recommendation(create_recommendation_payload(recommendations="do stuff"), "p")

    def test_missing_item_field(self):
        """Should reject an item missing its action."""
        item = create_recommendation_item()
        del item["action"]
        with pytest.raises(ParseError):
            parse_recommendation(create_recommendation_payload(items=[item]), "p")

    def test_insecure_link_dropped(self):
        """Should treat a non-https link as absent rather than failing."""
        payload = create_recommendation_payload(items=[
            create_recommendation_item(reference_link="http://example.com"),
            create_recommendation_item(reference_link=None),
        ])
        rec = parse_recommendation(payload, "p")
        assert [i.reference_link for i in rec.recommendations] == [None, None]

    def test_item_order_kept(self):
        payload = create_recommendation_payload(items=[
            create_recommendation_item(priority="low", action="first"),
            create_recommendation_item(priority="high", action="second"),
        ])
        rec = parse_recommendation(payload, "p")
        assert [i.action for i in rec.recommendations] == ["first", "second"]


class TestSynthesize:
    """Tests for the synthesis call."""

    @pytest.mark.asyncio
    async def test_single_structured_call(self, synthesizer, research, mock_provider_factory):
        """Should make one call with the recommendation schema."""
        provider = mock_provider_factory(create_recommendation_payload(confidence=0.65))

        rec = await synthesizer.synthesize("desc", research, "", "What now?", provider, game_name="Celeste")

        assert rec.confidence == 0.65
        assert rec.provider_used == "mock-provider"
        assert len(provider.calls) == 1
        assert provider.calls[0]["schema"] is RECOMMENDATION_SCHEMA
        assert provider.calls[0]["label"] == "analyze-llm"

    @pytest.mark.asyncio
    async def test_parse_error_not_retried(self, synthesizer, mock_provider_factory):
        """Should raise ParseError after a single bad response."""
        provider = mock_provider_factory(
            create_recommendation_payload(items=[create_recommendation_item(priority="urgent")]),
            create_recommendation_payload(),
        )
        with pytest.raises(ParseError):
            await synthesizer.synthesize("desc", [], "", "q", provider)
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_provider_error(self, synthesizer, mock_provider_factory):
        provider = mock_provider_factory(ProviderError("rate limited"))
        with pytest.raises(ProviderError):
            await synthesizer.synthesize("desc", [], "", "q", provider)
