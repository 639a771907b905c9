"""
Game Mentor

Turns a game screenshot and a question into a structured, prioritized
recommendation: describe the image with a vision model, optionally research
the web and inject curated game rules, then synthesize a validated answer.
"""

from .cancellation import CancellationToken
from .image_describer import ImageDescriber
from .models import AnalysisRequest, RawImage, Recommendation, ResearchMode
from .orchestrator import AnalysisOrchestrator
from .progress import AnalysisProgress
from .providers import ProviderRegistry
from .research import ResearchGatherer
from .result_cache import ResultCache
from .rules import RuleRepository
from .synthesizer import RecommendationSynthesizer

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisProgress",
    "AnalysisRequest",
    "CancellationToken",
    "ImageDescriber",
    "ProviderRegistry",
    "RawImage",
    "Recommendation",
    "RecommendationSynthesizer",
    "ResearchGatherer",
    "ResearchMode",
    "ResultCache",
    "RuleRepository",
]
