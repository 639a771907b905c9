"""
Command-line entry point.

Usage:
    game-mentor --image screenshot.png --game "Hades" --prompt "Which boon should I pick?"

Prints the Recommendation as JSON to stdout. Exit codes:
    0 success, 2 validation, 3 configuration, 4 provider, 5 parse,
    6 missing rule file, 130 cancelled
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from . import config
from .article_reader import ArticleReader
from .cancellation import CancellationToken
from .errors import (
    AnalysisCancelledError,
    ConfigurationError,
    MentorError,
    MissingRuleFileError,
    ParseError,
    ProviderError,
    ValidationError,
)
from .models import AnalysisRequest, RawImage, ResearchMode, ToolConfiguration
from .orchestrator import AnalysisOrchestrator
from .progress import ProgressSnapshot
from .providers import ProviderRegistry
from .research import ResearchGatherer
from .result_cache import ResultCache
from .rules import RuleRepository
from .web_search import SEARCH_BACKENDS, create_web_search

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "What should I do next?"

EXIT_CODES = [
    (ValidationError, 2),
    (ConfigurationError, 3),
    (ProviderError, 4),
    (ParseError, 5),
    (MissingRuleFileError, 6),
    (AnalysisCancelledError, 130),
]


def exit_code_for(error: MentorError) -> int:
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="game-mentor",
        description="Analyze a game screenshot and print prioritized recommendations as JSON.",
    )
    parser.add_argument("--image", "-i", required=True, help="Path to the screenshot")
    parser.add_argument("--prompt", "-p", default=DEFAULT_PROMPT, help="Question about the screenshot")
    parser.add_argument("--provider", help="Provider name from the configuration file")
    parser.add_argument("--game", "-g", default="", help="Game name (enables relevance check and rules)")
    parser.add_argument("--rules", nargs="*", default=[], help="Rule file names (without .json)")
    parser.add_argument(
        "--research-mode",
        choices=[mode.value for mode in ResearchMode],
        default=ResearchMode.SUMMARY_ONLY.value,
        help="Use search snippets only, or fetch full articles",
    )
    parser.add_argument("--no-research", action="store_true", help="Skip web research")
    parser.add_argument("--no-cache", action="store_true", help="Bypass the result cache")
    parser.add_argument("--config", "-c", help="Path to the JSON configuration file")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser


def _search_tool(mentor_config: config.MentorConfig) -> Optional[ToolConfiguration]:
    for name in SEARCH_BACKENDS:
        tool = mentor_config.tool(name)
        if tool is not None:
            return tool
    # Fall back to keys from the environment
    if config.TAVILY_API_KEY:
        return ToolConfiguration(tool_name="tavily", api_key=config.TAVILY_API_KEY)
    if config.BRAVE_API_KEY:
        return ToolConfiguration(tool_name="brave", api_key=config.BRAVE_API_KEY)
    return None


def build_orchestrator(
    mentor_config: config.MentorConfig,
    provider_name: Optional[str] = None,
    research_mode: ResearchMode = ResearchMode.SUMMARY_ONLY,
    research: bool = True,
    registry: Optional[ProviderRegistry] = None,
) -> AnalysisOrchestrator:
    """Wire up an orchestrator from configuration."""
    registry = registry or ProviderRegistry()
    provider = registry.create(mentor_config.provider(provider_name))

    research_gatherer = None
    search_tool = _search_tool(mentor_config) if research else None
    if search_tool is not None:
        reader_tool = mentor_config.tool("article_reader")
        reader = ArticleReader.from_config(reader_tool) if reader_tool else ArticleReader(
            max_article_length=config.MAX_ARTICLE_LENGTH
        )
        research_gatherer = ResearchGatherer(
            search_backend=create_web_search(search_tool),
            article_fetcher=reader,
            max_results=min(search_tool.max_results, config.MAX_RESEARCH_RESULTS),
            concurrency=config.ARTICLE_FETCH_CONCURRENCY,
        )
    elif research:
        logger.info("No search tool configured; research disabled")

    return AnalysisOrchestrator(
        provider=provider,
        research_gatherer=research_gatherer,
        rule_repository=RuleRepository(config.RULES_DIR),
        result_cache=ResultCache(config.CACHE_DIR),
        relevance_threshold=config.RELEVANCE_THRESHOLD,
        research_mode=research_mode,
    )


def _log_progress(snapshot: ProgressSnapshot):
    logger.debug(f"Progress {snapshot.total_percentage:.0f}%: " + ", ".join(
        f"{job.tag}={job.status.value}" for job in snapshot.jobs
    ))


async def run(args: argparse.Namespace) -> str:
    request = AnalysisRequest(
        image=RawImage.from_file(args.image),
        prompt=args.prompt,
        game_name=args.game or "",
        rule_files=args.rules or [],
    )
    mentor_config = config.load_config(args.config)
    orchestrator = build_orchestrator(
        mentor_config,
        provider_name=args.provider,
        research_mode=ResearchMode(args.research_mode),
        research=not args.no_research,
    )

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "Interrupted")
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported; Ctrl+C will abort without cleanup")

    recommendation = await orchestrator.analyze(
        request,
        cancellation_token=token,
        progress_sink=_log_progress,
        use_cache=not args.no_cache,
    )
    return recommendation.model_dump_json(indent=2)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # stdout carries the JSON result
    config.configure_logging(args.log_level, stream=sys.stderr)

    try:
        output = asyncio.run(run(args))
    except MentorError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return exit_code_for(e)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
