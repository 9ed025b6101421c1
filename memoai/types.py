"""
Data types for LLM provider requests and responses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProviderType(str, Enum):
    """Identifies an LLM backend. Values are stable and used as dict keys."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"

    def __str__(self) -> str:
        return self.value


class Role(str, Enum):
    """Role of a message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        return self.value


# Per-type defaults. Providers read these when a config field is empty.
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"
OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_DEFAULT_MODEL = "claude-3-haiku-20240307"

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MODEL = "gemini-1.5-flash"
GEMINI_EMBEDDING_MODEL = "text-embedding-004"

OLLAMA_DEFAULT_HOST = "http://localhost:11434"
OLLAMA_DEFAULT_MODEL = "llama3.2"
OLLAMA_EMBEDDING_MODEL = "nomic-embed-text"


@dataclass(frozen=True)
class ProviderConfig:
    """
    Configuration for one provider instance.

    Empty string fields mean "use the provider default".

    Attributes:
        type: Which backend this config is for
        api_key: Credential (unused by Ollama)
        base_url: Override for the API endpoint
        default_model: Chat model used when a request does not name one
        embedding_model: Model used for embeddings
        ollama_host: Ollama server address (Ollama only)
        timeout: HTTP client timeout in seconds
        max_retries: Retries after the first attempt for transient failures
    """
    type: ProviderType
    api_key: str = ""
    base_url: str = ""
    default_model: str = ""
    embedding_model: str = ""
    ollama_host: str = ""
    timeout: int = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES


def default_config(provider_type: ProviderType) -> ProviderConfig:
    """Return a config filled with sensible defaults for the given type."""
    provider_type = ProviderType(provider_type)
    if provider_type is ProviderType.OPENAI:
        return ProviderConfig(
            type=provider_type,
            base_url=OPENAI_BASE_URL,
            default_model=OPENAI_DEFAULT_MODEL,
            embedding_model=OPENAI_EMBEDDING_MODEL,
        )
    if provider_type is ProviderType.ANTHROPIC:
        return ProviderConfig(
            type=provider_type,
            base_url=ANTHROPIC_BASE_URL,
            default_model=ANTHROPIC_DEFAULT_MODEL,
        )
    if provider_type is ProviderType.GEMINI:
        return ProviderConfig(
            type=provider_type,
            base_url=GEMINI_BASE_URL,
            default_model=GEMINI_DEFAULT_MODEL,
            embedding_model=GEMINI_EMBEDDING_MODEL,
        )
    return ProviderConfig(
        type=provider_type,
        ollama_host=OLLAMA_DEFAULT_HOST,
        default_model=OLLAMA_DEFAULT_MODEL,
        embedding_model=OLLAMA_EMBEDDING_MODEL,
    )


@dataclass
class Message:
    """A single message in a conversation."""
    role: Role
    content: str

    def to_dict(self) -> dict:
        return {"role": str(self.role), "content": self.content}


@dataclass
class CompletionRequest:
    """
    Parameters for a chat completion.

    Zero values for the numeric fields mean "not set"; providers only
    forward them when positive.
    """
    messages: list[Message]
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    top_p: float = 0.0
    stream: bool = False


@dataclass
class TokenUsage:
    """Token consumption reported by the backend."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    content: str
    model: str = ""
    usage: Optional[TokenUsage] = None
    finish_reason: str = ""


@dataclass
class EmbeddingRequest:
    input: list[str]
    model: str = ""
    dimensions: int = 0


@dataclass
class EmbeddingResponse:
    """Embeddings aligned 1:1 with the request input."""
    embeddings: list[list[float]]
    model: str = ""
    usage: Optional[TokenUsage] = None


@dataclass
class SuggestTagsRequest:
    """
    Parameters for tag suggestion.

    Attributes:
        content: Memo content to analyze
        existing_tags: Tags already in use, offered to the model for consistency
        max_tags: Maximum number of tags to return (0 means the default of 5)
        language: Preferred tag language hint, e.g. "en" or "zh"
    """
    content: str
    existing_tags: list[str] = field(default_factory=list)
    max_tags: int = 0
    language: str = ""


@dataclass
class SuggestTagsResponse:
    tags: list[str]
    confidence: list[float] = field(default_factory=list)


@dataclass
class SummarizeRequest:
    content: str
    max_length: int = 0
    style: str = ""


@dataclass
class SummarizeResponse:
    summary: str
    key_points: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderStatus:
    """Point-in-time view of a registered provider. Never stored."""
    type: ProviderType
    name: str
    configured: bool
    active: bool
    default_model: str


@dataclass
class LLMProviderSetting:
    """
    Persisted settings for one provider family.

    `host` is only meaningful for Ollama; the other fields are unused there
    except for the model names.
    """
    api_key: str = ""
    base_url: str = ""
    default_model: str = ""
    embedding_model: str = ""
    host: str = ""
