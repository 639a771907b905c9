"""
Data models and structured-output schemas for game_mentor.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ValidationError
from .image_utils import detect_mime_type, encode_png


# Structured output schema for the image description call.
IMAGE_DESCRIPTION_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "relevance": {"type": "number"},
    },
    "required": ["description", "relevance"],
}

# Structured output schema for the recommendation synthesis call.
RECOMMENDATION_SCHEMA = {
    "type": "object",
    "properties": {
        "analysis": {"type": "string"},
        "summary": {"type": "string"},
        "recommendations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                    "action": {"type": "string"},
                    "reasoning": {"type": "string"},
                    "context": {"type": "string"},
                    "referenceLink": {"type": "string", "nullable": True},
                },
                "required": ["priority", "action", "reasoning", "context", "referenceLink"],
            },
        },
        "confidence": {"type": "number"},
    },
    "required": ["analysis", "summary", "recommendations", "confidence"],
}


# ============================================================================
# INPUT MODELS
# ============================================================================

class RawImage(BaseModel):
    """Image bytes plus MIME type. Invalid values fail construction."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str

    @model_validator(mode="after")
    def _check_image(self) -> "RawImage":
        if not self.data:
            raise ValidationError("Image data cannot be empty")
        if not self.mime_type or not self.mime_type.lower().startswith("image/"):
            raise ValidationError(f"Invalid image MIME type: {self.mime_type!r}")
        return self

    @classmethod
    def from_file(cls, path: str) -> "RawImage":
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise ValidationError(f"Cannot read image file {path}: {e}") from e
        return cls(data=data, mime_type=detect_mime_type(data, str(file_path)))

    def convert_to_png(self) -> "RawImage":
        """Return this image as PNG. Already-PNG images are returned unchanged."""
        if self.mime_type == "image/png":
            return self
        if self.mime_type.strip().lower() == "image/png":
            # Same bytes, canonical MIME string
            return RawImage(data=self.data, mime_type="image/png")
        try:
            png_bytes = encode_png(self.data)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return RawImage(data=png_bytes, mime_type="image/png")


class AnalysisRequest(BaseModel):
    """A screenshot plus the user's question. Immutable once validated."""
    model_config = ConfigDict(frozen=True)

    image: RawImage
    prompt: str
    game_name: str = ""
    rule_files: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_prompt(self) -> "AnalysisRequest":
        if not self.prompt or not self.prompt.strip():
            raise ValidationError("Prompt cannot be empty")
        return self

    @property
    def has_domain(self) -> bool:
        return bool(self.game_name and self.game_name.strip())


# ============================================================================
# CONFIGURATION MODELS
# ============================================================================

class ProviderConfiguration(BaseModel):
    """A named LLM endpoint."""
    name: str
    provider_type: str
    api_key: str = ""
    model: str
    base_url: str = ""
    timeout: int = Field(default=60, gt=0)
    supports_web_search: bool = False
    retrieval_augmented: bool = False


class ToolConfiguration(BaseModel):
    """A named research tool (web search backend or article reader)."""
    tool_name: str
    api_key: str = ""
    base_url: str = ""
    timeout: int = Field(default=30, gt=0)
    max_results: int = Field(default=8, gt=0)
    max_article_length: int = Field(default=20000, gt=0)


# ============================================================================
# DOMAIN MODELS
# ============================================================================

class GameRule(BaseModel):
    """One node of a rule forest. Children are owned, never shared."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    rule_id: str = Field(alias="RuleId")
    rule_text: str = Field(alias="RuleText")
    category: str = Field(default="General", alias="Category")
    children: List["GameRule"] = Field(default_factory=list, alias="Children")

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, data):
        # Rule files are written both as PascalCase and camelCase
        if not isinstance(data, dict):
            return data
        aliases = {"ruleid": "RuleId", "ruletext": "RuleText", "category": "Category", "children": "Children"}
        normalized = {}
        for key, value in data.items():
            if key in cls.model_fields:
                normalized[key] = value
            else:
                normalized[aliases.get(key.lower(), key)] = value
        return normalized

    @field_validator("children", mode="before")
    @classmethod
    def _null_children(cls, value):
        return value or []


class ResearchMode(str, Enum):
    SUMMARY_ONLY = "summary_only"
    FULL_ARTICLE = "full_article"


class SearchResult(BaseModel):
    """One web search hit, in search-rank order."""
    title: str = ""
    url: str = ""
    snippet: str = ""
    score: float = 0.0


class ResearchResult(BaseModel):
    """One research source, either a search snippet or article text."""
    title: str = ""
    url: str = ""
    content: str = ""
    score: float = 0.0


class ImageDescription(BaseModel):
    description: str
    relevance: float = Field(ge=0.0, le=1.0)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def normalize_reference_link(value: Optional[str]) -> Optional[str]:
    """Keep only absolute https URLs; anything else becomes None."""
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    parsed = urlparse(candidate)
    if parsed.scheme != "https" or not parsed.netloc:
        return None
    return candidate


class RecommendationItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    priority: Priority
    action: str
    reasoning: str
    context: str
    reference_link: Optional[str] = Field(default=None, alias="referenceLink")

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value):
        # Case is normalised; unknown values still fail validation
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("reference_link", mode="before")
    @classmethod
    def _https_only(cls, value):
        return normalize_reference_link(value)


class Recommendation(BaseModel):
    """Final structured answer returned to the caller."""
    model_config = ConfigDict(frozen=True)

    analysis: str
    summary: str
    recommendations: List[RecommendationItem] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider_used: str = ""
    rejected: bool = False
