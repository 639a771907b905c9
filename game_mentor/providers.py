"""
Provider Registry

Resolves a ProviderConfiguration into a bound LLM backend. The registry is an
explicit mapping from provider kind to backend constructor; adding a kind means
calling `register()`, never runtime type lookup.

All backends expose the same coroutine:

    await backend.generate_json(system_prompt, user_text, schema, image=...)

which requests structured JSON output and returns the decoded object.
"""

import asyncio
import base64
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import urlparse

import anthropic
import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from .cancellation import CancellationToken, guarded
from .errors import ConfigurationError, ParseError, ProviderError
from .models import ProviderConfiguration, RawImage

logger = logging.getLogger(__name__)

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

DEFAULT_BASE_URLS = {
    "perplexity": "https://api.perplexity.ai",
    "local": "http://localhost:11434/v1",
}

MAX_OUTPUT_TOKENS = 4096


def is_local_endpoint(base_url: str) -> bool:
    """True when the base URL points at this machine."""
    if not base_url:
        return False
    return urlparse(base_url).hostname in LOCAL_HOSTS


def to_json_schema(schema: Dict[str, Any], strict: bool = False) -> Dict[str, Any]:
    """
    Convert an OpenAPI-style schema (with `nullable`) to plain JSON Schema.

    With `strict`, every object forbids extra properties and requires all of
    its properties, as OpenAI strict structured outputs demand.
    """
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "nullable":
            continue
        if key == "properties":
            converted[key] = {name: to_json_schema(prop, strict) for name, prop in value.items()}
        elif key == "items":
            converted[key] = to_json_schema(value, strict)
        else:
            converted[key] = copy.deepcopy(value)

    if schema.get("nullable") and isinstance(schema.get("type"), str):
        converted["type"] = [schema["type"], "null"]

    if strict and schema.get("type") == "object":
        converted["additionalProperties"] = False
        converted["required"] = list(schema.get("properties", {}).keys())

    return converted


def parse_json_object(text: Optional[str], label: str = "") -> Dict[str, Any]:
    """
    Decode a model response into a JSON object.

    Markdown code fences around the payload are tolerated.

    Raises:
        ParseError: If the text is empty, not JSON, or not an object
    """
    if not text or not text.strip():
        raise ParseError(f"[{label}] Empty response from model")

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"[{label}] Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ParseError(f"[{label}] Expected a JSON object, got {type(data).__name__}")
    return data


# ============================================================================
# BACKENDS
# ============================================================================

class LLMBackend(Protocol):
    """Capability every bound provider offers."""

    name: str
    model: str

    async def generate_json(
        self,
        system_prompt: str,
        user_text: str,
        schema: Dict[str, Any],
        image: Optional[RawImage] = None,
        temperature: float = 0.7,
        label: str = "",
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]: ...


class OpenAICompatibleBackend:
    """Chat completions with json_schema response format (OpenAI, Perplexity, local servers)."""

    def __init__(self, config: ProviderConfiguration, client: Optional[openai.AsyncOpenAI] = None):
        self.name = config.name
        self.model = config.model
        self.config = config
        self.client = client or openai.AsyncOpenAI(
            api_key=config.api_key or "not-needed",
            base_url=config.base_url or DEFAULT_BASE_URLS.get(config.provider_type.lower()),
            timeout=config.timeout,
            max_retries=0,
        )

    async def generate_json(
        self,
        system_prompt: str,
        user_text: str,
        schema: Dict[str, Any],
        image: Optional[RawImage] = None,
        temperature: float = 0.7,
        label: str = "",
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        content = [{"type": "text", "text": user_text}]
        if image is not None:
            data_url = f"data:{image.mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"
            content.append({"type": "image_url", "image_url": {"url": data_url}})

        logger.info(f"[{label}] {self.name}: chat completion with model={self.model}, image={image is not None}")
        try:
            response = await guarded(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": content},
                    ],
                    temperature=temperature,
                    response_format={
                        "type": "json_schema",
                        "json_schema": {
                            "name": label.replace("-", "_") or "result",
                            "schema": to_json_schema(schema, strict=True),
                            "strict": True,
                        },
                    },
                ),
                cancellation_token,
            )
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        if not response.choices:
            raise ParseError(f"[{label}] {self.name} returned no choices")
        return parse_json_object(response.choices[0].message.content, label)


class GeminiBackend:
    """Gemini via google-genai with response_schema structured output."""

    def __init__(self, config: ProviderConfiguration, client: Optional[genai.Client] = None):
        self.name = config.name
        self.model = config.model
        self.config = config
        self.client = client or genai.Client(api_key=config.api_key)

    async def generate_json(
        self,
        system_prompt: str,
        user_text: str,
        schema: Dict[str, Any],
        image: Optional[RawImage] = None,
        temperature: float = 0.7,
        label: str = "",
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        contents = []
        if image is not None:
            contents.append(genai_types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
        contents.append(user_text)

        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=MAX_OUTPUT_TOKENS,
            response_mime_type="application/json",
            response_schema=schema,
        )

        logger.info(f"[{label}] {self.name}: generate_content with model={self.model}, image={image is not None}")
        try:
            response = await guarded(
                asyncio.wait_for(
                    asyncio.to_thread(
                        self.client.models.generate_content,
                        model=self.model,
                        contents=contents,
                        config=config,
                    ),
                    timeout=self.config.timeout,
                ),
                cancellation_token,
            )
        except (genai_errors.APIError, httpx.HTTPError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        return parse_json_object(response.text, label)


class ClaudeBackend:
    """Anthropic Messages API; structured output through a forced tool call."""

    TOOL_NAME = "emit_result"

    def __init__(self, config: ProviderConfiguration, client: Optional[anthropic.AsyncAnthropic] = None):
        self.name = config.name
        self.model = config.model
        self.config = config
        self.client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url or None,
            timeout=config.timeout,
            max_retries=0,
        )

    async def generate_json(
        self,
        system_prompt: str,
        user_text: str,
        schema: Dict[str, Any],
        image: Optional[RawImage] = None,
        temperature: float = 0.7,
        label: str = "",
        cancellation_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        content = []
        if image is not None:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                },
            })
        content.append({"type": "text", "text": user_text})

        logger.info(f"[{label}] {self.name}: messages.create with model={self.model}, image={image is not None}")
        try:
            response = await guarded(
                self.client.messages.create(
                    model=self.model,
                    max_tokens=MAX_OUTPUT_TOKENS,
                    system=system_prompt,
                    temperature=temperature,
                    tools=[{
                        "name": self.TOOL_NAME,
                        "description": "Return the result in the required structure.",
                        "input_schema": to_json_schema(schema),
                    }],
                    tool_choice={"type": "tool", "name": self.TOOL_NAME},
                    messages=[{"role": "user", "content": content}],
                ),
                cancellation_token,
            )
        except (anthropic.AnthropicError, asyncio.TimeoutError) as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and isinstance(block.input, dict):
                return block.input
        raise ParseError(f"[{label}] {self.name} did not return a {self.TOOL_NAME} tool call")


# ============================================================================
# REGISTRY
# ============================================================================

BackendFactory = Callable[[ProviderConfiguration], LLMBackend]


@dataclass(frozen=True)
class ProviderHandle:
    """A configuration that passed resolution and can be bound."""
    config: ProviderConfiguration
    kind: str

    @property
    def name(self) -> str:
        return self.config.name


def default_factories() -> Dict[str, BackendFactory]:
    return {
        "openai": OpenAICompatibleBackend,
        "perplexity": OpenAICompatibleBackend,
        "local": OpenAICompatibleBackend,
        "gemini": GeminiBackend,
        "claude": ClaudeBackend,
    }


class ProviderRegistry:
    """Explicit provider-kind to backend-constructor registry."""

    def __init__(self, factories: Optional[Dict[str, BackendFactory]] = None):
        source = default_factories() if factories is None else factories
        self._factories: Dict[str, BackendFactory] = {k.lower(): v for k, v in source.items()}

    def register(self, kind: str, factory: BackendFactory):
        self._factories[kind.lower()] = factory
        logger.debug(f"Registered provider kind '{kind}'")

    @property
    def kinds(self):
        return sorted(self._factories)

    def resolve(self, config: Optional[ProviderConfiguration]) -> ProviderHandle:
        """
        Check a configuration without touching the network.

        Raises:
            ConfigurationError: Unknown kind, missing model, or a missing API
                key for a non-local endpoint
        """
        if config is None:
            raise ConfigurationError("No provider configuration given")

        kind = (config.provider_type or "").strip().lower()
        if kind not in self._factories:
            raise ConfigurationError(
                f"Unknown provider type '{config.provider_type}' for '{config.name}' "
                f"(known: {', '.join(self.kinds)})"
            )

        if not config.model:
            raise ConfigurationError(f"Provider '{config.name}' has no model configured")

        base_url = config.base_url or DEFAULT_BASE_URLS.get(kind, "")
        if not config.api_key and not is_local_endpoint(base_url):
            raise ConfigurationError(
                f"Provider '{config.name}' requires an API key for {base_url or kind}"
            )

        return ProviderHandle(config=config, kind=kind)

    def bind(self, handle: ProviderHandle) -> LLMBackend:
        backend = self._factories[handle.kind](handle.config)
        logger.info(f"Bound provider '{handle.name}' ({handle.kind}, model={handle.config.model})")
        return backend

    def create(self, config: ProviderConfiguration) -> LLMBackend:
        """Resolve and bind in one step."""
        return self.bind(self.resolve(config))
