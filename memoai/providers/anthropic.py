"""
Anthropic provider, talking to the Messages API.
"""

import logging
from typing import Optional

import httpx

from ..context import Context
from ..errors import CapabilityNotSupportedError
from ..types import (
    ANTHROPIC_BASE_URL,
    ANTHROPIC_DEFAULT_MODEL,
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMProviderSetting,
    ProviderConfig,
    ProviderType,
    Role,
    SuggestTagsRequest,
    SuggestTagsResponse,
    SummarizeRequest,
    SummarizeResponse,
    TokenUsage,
)
from .base import decode_json, default_suggest_tags, default_summarize, require_configured
from .transport import HTTPTransport

logger = logging.getLogger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"

# The Messages API requires max_tokens on every request
DEFAULT_MAX_TOKENS = 4096

# No public listing endpoint is used; these are the models offered in settings
KNOWN_MODELS = [
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
]


class AnthropicProvider:
    """
    Provider for Anthropic's Claude models.

    System messages are lifted into the top-level "system" field, which is
    where the Messages API expects them. Embeddings are not supported.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[HTTPTransport] = None,
        *,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = config.api_key
        self.base_url = (config.base_url or ANTHROPIC_BASE_URL).rstrip("/")
        self.default_model = config.default_model or ANTHROPIC_DEFAULT_MODEL
        self.transport = transport or HTTPTransport(config, client)

    def get_type(self) -> ProviderType:
        return ProviderType.ANTHROPIC

    def get_name(self) -> str:
        return "Anthropic"

    def is_configured(self, ctx: Context) -> bool:
        return bool(self.api_key)

    def get_default_model(self) -> str:
        return self.default_model

    def get_available_models(self, ctx: Context) -> list[str]:
        require_configured(self, ctx)
        return list(KNOWN_MODELS)

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        require_configured(self, ctx)

        system_parts = []
        messages = []
        for m in req.messages:
            if m.role == Role.SYSTEM:
                system_parts.append(m.content)
            else:
                messages.append(m.to_dict())

        payload = {
            "model": req.model or self.default_model,
            "messages": messages,
            "max_tokens": req.max_tokens if req.max_tokens > 0 else DEFAULT_MAX_TOKENS,
        }
        system = "\n\n".join(p for p in system_parts if p)
        if system:
            payload["system"] = system
        if req.temperature > 0:
            payload["temperature"] = req.temperature
        if req.top_p > 0:
            payload["top_p"] = req.top_p

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
        }
        body = self.transport.request(ctx, "POST", f"{self.base_url}/v1/messages",
                                      payload, headers)
        data = decode_json(body, "completion")

        content = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)

        return CompletionResponse(
            content=content,
            model=data.get("model", ""),
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            finish_reason=data.get("stop_reason") or "",
        )

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        raise CapabilityNotSupportedError("anthropic does not support embeddings")

    def suggest_tags(self, ctx: Context, req: SuggestTagsRequest) -> SuggestTagsResponse:
        return default_suggest_tags(ctx, self, req)

    def summarize(self, ctx: Context, req: SummarizeRequest) -> SummarizeResponse:
        return default_summarize(ctx, self, req)

    def to_setting(self) -> LLMProviderSetting:
        return LLMProviderSetting(
            api_key=self.api_key,
            base_url=self.base_url,
            default_model=self.default_model,
        )

    def close(self) -> None:
        self.transport.close()
