"""
Analysis Orchestrator

Runs one analysis request through the pipeline:

    validate -> cache check -> describe image -> relevance gate
             -> research -> rules -> synthesize -> cache write

Stages run strictly in sequence. Each run owns its own AnalysisProgress and
reports a snapshot to the caller's sink at every stage transition.
"""

import logging
from typing import List, Optional

from .cancellation import CancellationToken
from .errors import AnalysisCancelledError, MentorError, ProviderError, ValidationError
from .image_describer import ImageDescriber
from .models import AnalysisRequest, Recommendation, ResearchMode, ResearchResult
from .progress import TERMINAL_STATUSES, AnalysisProgress, JobStatus, ProgressSink, ProgressSnapshot
from .providers import LLMBackend
from .research import SEARCH_TAG, ResearchGatherer
from .result_cache import ResultCache
from .rules import RuleRepository
from .synthesizer import RecommendationSynthesizer

logger = logging.getLogger(__name__)

DESCRIBE_TAG = "describe-image"
RULES_TAG = "load-rules"
SYNTHESIZE_TAG = "analyze-llm"

# Domain label used for the description call when the request names no game
GENERIC_DOMAIN = "any video game"


class AnalysisOrchestrator:
    """Sequences the pipeline stages for one provider."""

    def __init__(
        self,
        provider: LLMBackend,
        describer: Optional[ImageDescriber] = None,
        synthesizer: Optional[RecommendationSynthesizer] = None,
        research_gatherer: Optional[ResearchGatherer] = None,
        rule_repository: Optional[RuleRepository] = None,
        result_cache: Optional[ResultCache] = None,
        relevance_threshold: float = 0.5,
        research_mode: ResearchMode = ResearchMode.SUMMARY_ONLY,
    ):
        """
        Args:
            provider: Bound LLM backend used for both model calls
            describer: Image description stage
            synthesizer: Recommendation synthesis stage
            research_gatherer: Optional research stage; skipped when None
            rule_repository: Optional rule source; skipped when None
            result_cache: Optional cache consulted at entry and populated at exit
            relevance_threshold: Minimum image relevance to continue past description
            research_mode: Default research mode
        """
        self.provider = provider
        self.describer = describer or ImageDescriber()
        self.synthesizer = synthesizer or RecommendationSynthesizer()
        self.research_gatherer = research_gatherer
        self.rule_repository = rule_repository
        self.result_cache = result_cache
        self.relevance_threshold = relevance_threshold
        self.research_mode = research_mode

        logger.info(
            f"AnalysisOrchestrator initialized: provider={provider.name}, "
            f"research={'on' if research_gatherer else 'off'}, rules={'on' if rule_repository else 'off'}, "
            f"cache={'on' if result_cache else 'off'}"
        )

    def _plan_jobs(self, request: AnalysisRequest) -> AnalysisProgress:
        progress = AnalysisProgress()
        progress.add_job(DESCRIBE_TAG, "Describing screenshot")
        if self.research_gatherer is not None:
            progress.add_job(SEARCH_TAG, "Searching the web")
        if self._uses_rules(request):
            progress.add_job(RULES_TAG, "Loading game rules")
        progress.add_job(SYNTHESIZE_TAG, "Generating recommendations")
        return progress

    def _uses_rules(self, request: AnalysisRequest) -> bool:
        return self.rule_repository is not None and request.has_domain

    async def analyze(
        self,
        request: AnalysisRequest,
        cancellation_token: Optional[CancellationToken] = None,
        progress_sink: Optional[ProgressSink] = None,
        use_cache: bool = True,
        research_mode: Optional[ResearchMode] = None,
    ) -> Recommendation:
        """
        Analyze a screenshot and return a Recommendation.

        Raises:
            ValidationError: Malformed request
            ConfigurationError: Bad provider or tool configuration
            ProviderError: Description or synthesis failed (with `stage` set)
            ParseError: A model response did not match its schema
            MissingRuleFileError: A requested rule file does not exist
            AnalysisCancelledError: The token was cancelled
        """
        if not isinstance(request, AnalysisRequest):
            raise ValidationError("Analysis request is required")

        token = cancellation_token or CancellationToken()
        progress = self._plan_jobs(request)
        progress.report(progress_sink)

        rules_enabled = self._uses_rules(request) and bool(request.rule_files)
        cache_key = None
        if use_cache and self.result_cache is not None:
            cache_key = ResultCache.key(request, self.provider.name, rules_enabled, request.rule_files)
            cached = self.result_cache.get(cache_key, rules_enabled)
            if cached is not None:
                _finish_all(progress, "cached")
                progress.report(progress_sink)
                return cached

        try:
            recommendation = await self._run(request, token, progress, progress_sink, research_mode or self.research_mode)
        except MentorError as e:
            _fail_running(progress)
            progress.report(progress_sink)
            if isinstance(e, AnalysisCancelledError):
                logger.info(f"Analysis cancelled: {e}")
            else:
                logger.error(f"Analysis failed: {e}")
            raise

        if cache_key is not None and not recommendation.rejected:
            self.result_cache.put(cache_key, recommendation, rules_enabled)

        return recommendation

    async def _run(
        self,
        request: AnalysisRequest,
        token: CancellationToken,
        progress: AnalysisProgress,
        progress_sink: Optional[ProgressSink],
        research_mode: ResearchMode,
    ) -> Recommendation:
        image = request.image.convert_to_png()
        domain_name = request.game_name.strip() if request.has_domain else GENERIC_DOMAIN

        # Describe
        token.raise_if_cancelled()
        _start(progress, DESCRIBE_TAG, progress_sink)
        try:
            description = await self.describer.describe(image, domain_name, self.provider, token)
        except ProviderError as e:
            raise e.with_stage(DESCRIBE_TAG) from e
        progress.update_job(DESCRIBE_TAG, JobStatus.COMPLETED)
        progress.report(progress_sink)

        if request.has_domain and description.relevance < self.relevance_threshold:
            logger.warning(
                f"Image relevance {description.relevance:.2f} below threshold "
                f"{self.relevance_threshold:.2f} for '{domain_name}'; skipping analysis"
            )
            _finish_all(progress, "skipped")
            progress.report(progress_sink)
            return Recommendation(
                analysis=description.description,
                summary=(
                    f"The screenshot does not appear to be from {domain_name} "
                    f"(relevance {description.relevance:.0%})."
                ),
                recommendations=[],
                confidence=description.relevance,
                provider_used=self.provider.name,
                rejected=True,
            )

        # Research
        research_results: List[ResearchResult] = []
        if self.research_gatherer is not None:
            research_results = await self._research(
                request, description.description, token, progress, progress_sink, research_mode
            )

        # Rules
        rule_text = ""
        if self._uses_rules(request):
            _start(progress, RULES_TAG, progress_sink)
            rules = self.rule_repository.load(request.game_name, request.rule_files)
            rule_text = self.rule_repository.format(rules, request.game_name.strip())
            progress.update_job(RULES_TAG, JobStatus.COMPLETED, name=f"Loaded {len(rules)} game rules")
            progress.report(progress_sink)

        # Synthesize
        token.raise_if_cancelled()
        _start(progress, SYNTHESIZE_TAG, progress_sink)
        try:
            recommendation = await self.synthesizer.synthesize(
                description=description.description,
                research_results=research_results,
                rule_text=rule_text,
                user_prompt=request.prompt,
                provider=self.provider,
                game_name=request.game_name if request.has_domain else "",
                image=image,
                cancellation_token=token,
            )
        except ProviderError as e:
            raise e.with_stage(SYNTHESIZE_TAG) from e
        progress.update_job(SYNTHESIZE_TAG, JobStatus.COMPLETED)
        progress.report(progress_sink)

        return recommendation

    async def _research(
        self,
        request: AnalysisRequest,
        description: str,
        token: CancellationToken,
        progress: AnalysisProgress,
        progress_sink: Optional[ProgressSink],
        research_mode: ResearchMode,
    ) -> List[ResearchResult]:
        next_tag = RULES_TAG if progress.has_job(RULES_TAG) else SYNTHESIZE_TAG

        def merge_research(snapshot: ProgressSnapshot):
            progress.merge(snapshot, before_tag=next_tag)
            progress.report(progress_sink)

        try:
            return await self.research_gatherer.research(
                request,
                research_mode,
                progress_sink=merge_research,
                cancellation_token=token,
                description=description,
            )
        except ProviderError as e:
            logger.warning(f"Research failed, continuing without it: {e}")
            if progress.get_job(SEARCH_TAG).status not in TERMINAL_STATUSES:
                progress.update_job(SEARCH_TAG, JobStatus.FAILED, 100)
            progress.report(progress_sink)
            return []


def _start(progress: AnalysisProgress, tag: str, sink: Optional[ProgressSink]):
    progress.update_job(tag, JobStatus.IN_PROGRESS, 0)
    progress.report(sink)


def _finish_all(progress: AnalysisProgress, reason: str):
    """Complete every job that has not reached a terminal state."""
    for job in progress.jobs:
        if job.status not in TERMINAL_STATUSES:
            progress.update_job(job.tag, JobStatus.COMPLETED, 100, name=f"{job.name} ({reason})")


def _fail_running(progress: AnalysisProgress):
    for job in progress.jobs:
        if job.status == JobStatus.IN_PROGRESS:
            progress.update_job(job.tag, JobStatus.FAILED)
