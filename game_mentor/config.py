"""
Configuration for game_mentor.

Settings come from environment variables (optionally loaded from a .env file).
Provider and tool definitions come from a JSON file:

    {
      "providers": [{"name": "...", "provider_type": "openai", ...}],
      "tools": [{"tool_name": "tavily", "api_key": "${TAVILY_API_KEY}"}]
    }
"""

import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import ProviderConfiguration, ToolConfiguration

load_dotenv()

logger = logging.getLogger(__name__)

# Environment settings
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MENTOR_CONFIG_PATH = os.getenv("MENTOR_CONFIG_PATH", "mentor.json")
RULES_DIR = os.getenv("RULES_DIR", "rules")
CACHE_DIR = os.getenv("CACHE_DIR", ".mentor_cache")
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "")
RELEVANCE_THRESHOLD = float(os.getenv("RELEVANCE_THRESHOLD", "0.5"))
MAX_RESEARCH_RESULTS = int(os.getenv("MAX_RESEARCH_RESULTS", "8"))
MAX_ARTICLE_LENGTH = int(os.getenv("MAX_ARTICLE_LENGTH", "20000"))
ARTICLE_FETCH_CONCURRENCY = int(os.getenv("ARTICLE_FETCH_CONCURRENCY", "4"))
TAVILY_API_KEY = os.getenv("TAVILY_API_KEY", "")
BRAVE_API_KEY = os.getenv("BRAVE_API_KEY", "")

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def configure_logging(level: Optional[str] = None, stream=None):
    """Configure root logging (stdout unless another stream is given)."""
    level_name = (level or LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=stream or sys.stdout,
        force=True,
    )


def _expand_env(value: str) -> str:
    return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), ""), value)


class MentorConfig(BaseModel):
    """Parsed contents of the JSON configuration file."""
    providers: List[ProviderConfiguration] = Field(default_factory=list)
    tools: List[ToolConfiguration] = Field(default_factory=list)

    def provider(self, name: Optional[str] = None) -> ProviderConfiguration:
        """
        Look up a provider by name.

        With no name, DEFAULT_PROVIDER is used, then the first configured
        provider.
        """
        name = name or DEFAULT_PROVIDER
        if not name:
            if not self.providers:
                raise ConfigurationError("No providers configured")
            return self.providers[0]
        for provider in self.providers:
            if provider.name == name:
                return provider
        known = ", ".join(p.name for p in self.providers) or "none"
        raise ConfigurationError(f"Unknown provider '{name}' (configured: {known})")

    def tool(self, tool_name: str) -> Optional[ToolConfiguration]:
        for tool in self.tools:
            if tool.tool_name.lower() == tool_name.lower():
                return tool
        return None


def load_config(path: Optional[str] = None) -> MentorConfig:
    """
    Load provider and tool configuration from a JSON file.

    `${VAR}` references in api_key values are expanded from the environment.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    config_path = Path(path or MENTOR_CONFIG_PATH)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw: Dict = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {e}") from e

    for section in ("providers", "tools"):
        for entry in raw.get(section, []) or []:
            if isinstance(entry.get("api_key"), str):
                entry["api_key"] = _expand_env(entry["api_key"])

    try:
        config = MentorConfig.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration {config_path}: {e}") from e

    names = [p.name for p in config.providers]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate provider names: {', '.join(duplicates)}")

    logger.info(f"Loaded {len(config.providers)} providers and {len(config.tools)} tools from {config_path}")
    return config


def load_prompt_template(name: str) -> str:
    """
    Load a prompt template shipped in game_mentor/prompts.

    Args:
        name: Template name without the .md extension

    Returns:
        Prompt template string
    """
    prompt_path = Path(__file__).parent / "prompts" / f"{name}.md"
    if not prompt_path.exists():
        raise FileNotFoundError(f"{prompt_path.name} not found")

    with open(prompt_path, 'r', encoding='utf-8') as f:
        content = f.read()
    logger.debug(f"Loaded prompt template from {prompt_path}")
    return content
