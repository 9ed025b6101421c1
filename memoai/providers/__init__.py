"""
LLM provider implementations.

Each provider satisfies the Provider protocol and owns an HTTPTransport
that handles retries and error mapping:
- OpenAI (and OpenAI-compatible servers)
- Anthropic
- Google Gemini
- Ollama (local models)

Use create_provider() to build one from a ProviderConfig.
"""

from .base import (
    Provider,
    create_provider,
    default_suggest_tags,
    default_summarize,
    extract_tags_from_text,
    is_valid_tag,
)
from .transport import HTTPTransport, map_http_error
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider

__all__ = [
    # Protocol and factory
    "Provider",
    "create_provider",
    # Shared behaviors
    "default_suggest_tags",
    "default_summarize",
    "extract_tags_from_text",
    "is_valid_tag",
    # Transport
    "HTTPTransport",
    "map_http_error",
    # Providers
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OllamaProvider",
]
