"""
OpenAI provider, talking to the chat completions REST API.

Also works against OpenAI-compatible servers by overriding base_url.
"""

import logging
from typing import Optional

import httpx

from ..context import Context
from ..errors import ResponseParseError
from ..types import (
    OPENAI_BASE_URL,
    OPENAI_DEFAULT_MODEL,
    OPENAI_EMBEDDING_MODEL,
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMProviderSetting,
    ProviderConfig,
    ProviderType,
    SuggestTagsRequest,
    SuggestTagsResponse,
    SummarizeRequest,
    SummarizeResponse,
    TokenUsage,
)
from .base import decode_json, default_suggest_tags, default_summarize, require_configured
from .transport import HTTPTransport

logger = logging.getLogger(__name__)

_CHAT_MODEL_PREFIXES = ("gpt-4", "gpt-3.5", "o1", "chatgpt")
_NON_CHAT_MARKERS = ("audio", "realtime", "tts", "transcribe", "image", "embedding")


def is_chat_model(model_id: str) -> bool:
    """True for chat-capable model ids (gpt-4*, gpt-3.5*, o1*, chatgpt*)."""
    if not model_id.startswith(_CHAT_MODEL_PREFIXES):
        return False
    return not any(marker in model_id for marker in _NON_CHAT_MARKERS)


def _usage(data: Optional[dict]) -> TokenUsage:
    data = data or {}
    return TokenUsage(
        prompt_tokens=data.get("prompt_tokens", 0),
        completion_tokens=data.get("completion_tokens", 0),
        total_tokens=data.get("total_tokens", 0),
    )


class OpenAIProvider:
    """
    Provider for OpenAI's REST API.

    Configured when an API key is set. Tagging and summarization use the
    shared completion-based defaults.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[HTTPTransport] = None,
        *,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = config.api_key
        self.base_url = (config.base_url or OPENAI_BASE_URL).rstrip("/")
        self.default_model = config.default_model or OPENAI_DEFAULT_MODEL
        self.embedding_model = config.embedding_model or OPENAI_EMBEDDING_MODEL
        self.transport = transport or HTTPTransport(config, client)

    def get_type(self) -> ProviderType:
        return ProviderType.OPENAI

    def get_name(self) -> str:
        return "OpenAI"

    def is_configured(self, ctx: Context) -> bool:
        return bool(self.api_key)

    def get_default_model(self) -> str:
        return self.default_model

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def get_available_models(self, ctx: Context) -> list[str]:
        require_configured(self, ctx)
        body = self.transport.request(ctx, "GET", f"{self.base_url}/models",
                                      headers=self._headers())
        data = decode_json(body, "models")
        return [m["id"] for m in data.get("data") or []
                if isinstance(m, dict) and is_chat_model(m.get("id", ""))]

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        require_configured(self, ctx)

        payload = {
            "model": req.model or self.default_model,
            "messages": [m.to_dict() for m in req.messages],
        }
        if req.max_tokens > 0:
            payload["max_tokens"] = req.max_tokens
        if req.temperature > 0:
            payload["temperature"] = req.temperature
        if req.top_p > 0:
            payload["top_p"] = req.top_p

        body = self.transport.request(ctx, "POST", f"{self.base_url}/chat/completions",
                                      payload, self._headers())
        data = decode_json(body, "completion")

        choices = data.get("choices") or []
        if not choices:
            raise ResponseParseError("no completion choices returned")
        choice = choices[0]
        message = choice.get("message") or {}

        return CompletionResponse(
            content=message.get("content") or "",
            model=data.get("model", ""),
            usage=_usage(data.get("usage")),
            finish_reason=choice.get("finish_reason") or "",
        )

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        require_configured(self, ctx)

        payload = {
            "model": req.model or self.embedding_model,
            "input": list(req.input),
        }
        if req.dimensions > 0:
            payload["dimensions"] = req.dimensions

        body = self.transport.request(ctx, "POST", f"{self.base_url}/embeddings",
                                      payload, self._headers())
        data = decode_json(body, "embedding")

        # The API may return items out of order; "index" is authoritative
        items = sorted(data.get("data") or [], key=lambda d: d.get("index", 0))
        return EmbeddingResponse(
            embeddings=[item.get("embedding") or [] for item in items],
            model=data.get("model", ""),
            usage=_usage(data.get("usage")),
        )

    def suggest_tags(self, ctx: Context, req: SuggestTagsRequest) -> SuggestTagsResponse:
        return default_suggest_tags(ctx, self, req)

    def summarize(self, ctx: Context, req: SummarizeRequest) -> SummarizeResponse:
        return default_summarize(ctx, self, req)

    def to_setting(self) -> LLMProviderSetting:
        return LLMProviderSetting(
            api_key=self.api_key,
            base_url=self.base_url,
            default_model=self.default_model,
            embedding_model=self.embedding_model,
        )

    def close(self) -> None:
        self.transport.close()
