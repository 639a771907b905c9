"""
Recommendation Synthesizer

Combines the image description, research excerpts, rule text and the user's
question into one prompt, requests a structured recommendation and validates
it strictly. There is no retry on a bad response.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .cancellation import CancellationToken
from .config import load_prompt_template
from .errors import ParseError
from .models import (
    RECOMMENDATION_SCHEMA,
    RawImage,
    Recommendation,
    RecommendationItem,
    ResearchResult,
)
from .providers import LLMBackend

logger = logging.getLogger(__name__)

RESEARCH_PREAMBLE = "I have included results from my research below. Use this information to help you with your analysis."
REQUIRED_FIELDS = ("analysis", "summary", "recommendations", "confidence")


def parse_recommendation(data: Dict[str, Any], provider_name: str) -> Recommendation:
    """
    Validate a decoded synthesis response.

    Raises:
        ParseError: On missing fields, an out-of-range confidence or a
            priority outside {high, medium, low}
    """
    missing = [name for name in REQUIRED_FIELDS if name not in data or data[name] is None]
    if missing:
        raise ParseError(f"Recommendation response missing fields: {', '.join(missing)}")

    items = data["recommendations"]
    if not isinstance(items, list):
        raise ParseError("Recommendation response field 'recommendations' must be a list")

    try:
        parsed_items = [RecommendationItem.model_validate(item) for item in items]
        return Recommendation(
            analysis=data["analysis"],
            summary=data["summary"],
            recommendations=parsed_items,
            confidence=data["confidence"],
            provider_used=provider_name,
        )
    except PydanticValidationError as e:
        raise ParseError(f"Invalid recommendation response: {e}") from e


class RecommendationSynthesizer:
    """Final structured synthesis call."""

    def __init__(self, temperature: float = 0.7):
        self.temperature = temperature
        self.prompt_template = load_prompt_template("recommendation")

    def build_prompt(
        self,
        description: str,
        research_results: Optional[List[ResearchResult]],
        rule_text: str,
        user_prompt: str,
        game_name: str = "",
    ) -> Tuple[str, str]:
        """
        Compose the synthesis prompt.

        Returns:
            (system_prompt, user_text)
        """
        game_clause = f"The game being analyzed is '{game_name.strip()}'. " if game_name and game_name.strip() else ""
        system_prompt = self.prompt_template.format(game_clause=game_clause).rstrip()

        if rule_text:
            system_prompt += "\n" + rule_text.rstrip()

        if research_results:
            system_prompt += f"\n\n{RESEARCH_PREAMBLE}"
            for index, result in enumerate(research_results, start=1):
                system_prompt += f"\n\n[{index}] {result.title}\n{result.url}\n{result.content}"

        user_text = (
            f"## SCREENSHOT DESCRIPTION\n\n{description.strip()}\n\n"
            f"## QUESTION\n\n{user_prompt.strip()}"
        )
        return system_prompt, user_text

    async def synthesize(
        self,
        description: str,
        research_results: Optional[List[ResearchResult]],
        rule_text: str,
        user_prompt: str,
        provider: LLMBackend,
        game_name: str = "",
        image: Optional[RawImage] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Recommendation:
        """
        Request and validate a Recommendation.

        Raises:
            ProviderError: On upstream failure
            ParseError: If the response does not match the Recommendation shape
        """
        system_prompt, user_text = self.build_prompt(
            description, research_results, rule_text, user_prompt, game_name
        )
        logger.info(
            f"Synthesizing recommendation with {provider.name}: "
            f"{len(research_results or [])} research results, rules={'yes' if rule_text else 'no'}"
        )

        data = await provider.generate_json(
            system_prompt=system_prompt,
            user_text=user_text,
            schema=RECOMMENDATION_SCHEMA,
            image=image,
            temperature=self.temperature,
            label="analyze-llm",
            cancellation_token=cancellation_token,
        )

        recommendation = parse_recommendation(data, provider.name)
        logger.info(
            f"Recommendation ready: {len(recommendation.recommendations)} items, "
            f"confidence {recommendation.confidence:.2f}"
        )
        return recommendation
