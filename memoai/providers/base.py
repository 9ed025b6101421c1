"""
Base provider protocol and shared default behaviors.

Concrete providers satisfy Provider structurally - no inheritance required.
Providers without a native tagging or summarization endpoint delegate to
default_suggest_tags() / default_summarize(), which build on complete().
"""

import json
import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from ..context import Context
from ..errors import ProviderNotConfiguredError, ResponseParseError
from ..types import (
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    Message,
    ProviderConfig,
    ProviderType,
    Role,
    SuggestTagsRequest,
    SuggestTagsResponse,
    SummarizeRequest,
    SummarizeResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TAGS = 5
DEFAULT_SUMMARY_LENGTH = 200
DEFAULT_SUMMARY_STYLE = "brief"
MAX_TAG_LENGTH = 50


@runtime_checkable
class Provider(Protocol):
    """
    One LLM backend.

    is_configured() must be cheap and side-effect free: it checks field
    presence only and never touches the network. Request methods raise
    ProviderNotConfiguredError when called on an unconfigured provider, and
    CapabilityNotSupportedError for capabilities the backend lacks.
    """

    def get_type(self) -> ProviderType:
        ...

    def get_name(self) -> str:
        """Human-readable name, e.g. "OpenAI"."""
        ...

    def is_configured(self, ctx: Context) -> bool:
        ...

    def get_default_model(self) -> str:
        ...

    def get_available_models(self, ctx: Context) -> list[str]:
        ...

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        ...

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        ...

    def suggest_tags(self, ctx: Context, req: SuggestTagsRequest) -> SuggestTagsResponse:
        ...

    def summarize(self, ctx: Context, req: SummarizeRequest) -> SummarizeResponse:
        ...


def require_configured(provider: Provider, ctx: Context) -> None:
    """Raise ProviderNotConfiguredError unless the provider is configured."""
    if not provider.is_configured(ctx):
        raise ProviderNotConfiguredError()


def decode_json(body: bytes, what: str) -> dict:
    """Decode a provider response body, raising ResponseParseError on junk."""
    try:
        data = json.loads(body)
    except ValueError as e:
        raise ResponseParseError(f"failed to parse {what} response: {e}") from e
    if not isinstance(data, dict):
        raise ResponseParseError(f"failed to parse {what} response: expected object")
    return data


# -----------------------------------------------------------------------------
# Tag suggestion
# -----------------------------------------------------------------------------

TAG_SYSTEM_PROMPT = """You are a helpful assistant that suggests relevant tags for notes and memos.
Analyze the content and suggest concise, relevant tags that capture the main topics.
Return ONLY a JSON array of tag strings, nothing else. Example: ["project", "meeting", "todo"]
Tags should be lowercase, single words or hyphenated phrases (e.g., "machine-learning")."""


def build_tag_prompt(content: str, max_tags: int, existing_tags: list[str], language: str = "") -> str:
    """Build the user prompt for tag suggestion."""
    hints = ""
    if existing_tags:
        hints += f"\nPrefer using these existing tags when relevant: {existing_tags}"
    if language:
        hints += f"\nWrite the tags in this language: {language}"
    return f"""Suggest up to {max_tags} tags for this content:{hints}

Content:
{content}"""


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
    return text.strip()


def parse_tag_array(text: str) -> Optional[list[str]]:
    """
    Strictly parse a JSON array of strings.

    Returns None when the text is not a JSON array, so the caller can fall
    back to extract_tags_from_text().
    """
    try:
        data = json.loads(_strip_code_fence(text))
    except ValueError:
        return None
    if not isinstance(data, list):
        return None
    return [item.strip() for item in data if isinstance(item, str) and item.strip()]


_TRIM_CHARS = " \t\n\r\"'[]{}#-"
_TAG_DELIMITERS = (",", "\n", ";", " ")


def trim_tag(s: str) -> str:
    """Strip whitespace, quotes, brackets, braces, '#' and '-' from both ends."""
    return s.strip(_TRIM_CHARS)


def split_and_trim(s: str, sep: str) -> list[str]:
    """Split on `sep`, trim each part, and drop empties."""
    return [t for t in (trim_tag(part) for part in s.split(sep)) if t]


def is_valid_tag(s: str) -> bool:
    """Letters, digits, '-' and '_' only; at least one letter; 1-50 chars."""
    if not s or len(s) > MAX_TAG_LENGTH:
        return False
    has_letter = False
    for c in s:
        if c.isascii() and c.isalpha():
            has_letter = True
        elif not (c.isascii() and c.isdigit()) and c not in "-_":
            return False
    return has_letter


def extract_tags_from_text(text: str) -> list[str]:
    """
    Recover tags from a reply that is not a JSON array.

    Tries each delimiter in turn and keeps the first split that yields any
    valid tags.
    """
    for delim in _TAG_DELIMITERS:
        tags = [part for part in split_and_trim(text, delim) if is_valid_tag(part)]
        if tags:
            return tags
    return []


def default_suggest_tags(ctx: Context, provider: Provider, req: SuggestTagsRequest) -> SuggestTagsResponse:
    """Suggest tags via a low-temperature chat completion on `provider`."""
    max_tags = req.max_tags or DEFAULT_MAX_TAGS

    completion = CompletionRequest(
        messages=[
            Message(Role.SYSTEM, TAG_SYSTEM_PROMPT),
            Message(Role.USER, build_tag_prompt(req.content, max_tags, req.existing_tags, req.language)),
        ],
        temperature=0.3,
        max_tokens=100,
    )
    resp = provider.complete(ctx, completion)

    tags = parse_tag_array(resp.content)
    if tags is None:
        logger.debug("Tag reply from %s was not a JSON array, using text extraction",
                     provider.get_name())
        tags = extract_tags_from_text(resp.content)

    return SuggestTagsResponse(tags=tags[:max_tags])


# -----------------------------------------------------------------------------
# Summarization
# -----------------------------------------------------------------------------

_BULLET_PREFIXES = ("- ", "* ", "• ")


def build_summary_system_prompt(style: str, max_length: int) -> str:
    return f"""You are a helpful assistant that summarizes content.
Create a {style} summary that captures the main points.
Keep the summary under {max_length} characters.
Be concise and informative."""


def extract_key_points(summary: str) -> list[str]:
    """Collect bullet lines ("- ", "* ", "• ") from a summary."""
    points = []
    for line in summary.splitlines():
        line = line.strip()
        if line.startswith(_BULLET_PREFIXES):
            point = line[2:].strip()
            if point:
                points.append(point)
    return points


def default_summarize(ctx: Context, provider: Provider, req: SummarizeRequest) -> SummarizeResponse:
    """Summarize via a chat completion on `provider`."""
    max_length = req.max_length or DEFAULT_SUMMARY_LENGTH
    style = req.style or DEFAULT_SUMMARY_STYLE

    completion = CompletionRequest(
        messages=[
            Message(Role.SYSTEM, build_summary_system_prompt(style, max_length)),
            Message(Role.USER, f"Summarize this content:\n\n{req.content}"),
        ],
        temperature=0.5,
        max_tokens=300,
    )
    resp = provider.complete(ctx, completion)

    key_points = extract_key_points(resp.content) if style == "bullet" else []
    return SummarizeResponse(summary=resp.content, key_points=key_points)


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------

def create_provider(config: ProviderConfig, client: Optional[httpx.Client] = None) -> Provider:
    """
    Create a provider for `config.type`.

    Args:
        config: Provider configuration
        client: Optional shared httpx client passed through to the transport

    Raises:
        ValueError: If the provider type is unknown
    """
    from .anthropic import AnthropicProvider
    from .gemini import GeminiProvider
    from .ollama import OllamaProvider
    from .openai import OpenAIProvider

    providers = {
        ProviderType.OPENAI: OpenAIProvider,
        ProviderType.ANTHROPIC: AnthropicProvider,
        ProviderType.GEMINI: GeminiProvider,
        ProviderType.OLLAMA: OllamaProvider,
    }
    try:
        provider_class = providers[ProviderType(config.type)]
    except (KeyError, ValueError):
        available = ", ".join(str(t) for t in providers)
        raise ValueError(
            f"Unknown provider: '{config.type}'. Available providers: {available}."
        ) from None
    return provider_class(config, client=client)
