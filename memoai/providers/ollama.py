"""
Ollama provider for locally hosted models.

No credential is involved: the provider is configured whenever a host is
set, whether or not the server is actually reachable. Use check_health()
to probe the server.
"""

import logging
from typing import Optional

import httpx

from ..context import Context
from ..types import (
    OLLAMA_DEFAULT_HOST,
    OLLAMA_DEFAULT_MODEL,
    OLLAMA_EMBEDDING_MODEL,
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


class OllamaProvider:
    """Provider for an Ollama server (default http://localhost:11434)."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[HTTPTransport] = None,
        *,
        client: Optional[httpx.Client] = None,
    ):
        self.host = (config.ollama_host or OLLAMA_DEFAULT_HOST).rstrip("/")
        self.default_model = config.default_model or OLLAMA_DEFAULT_MODEL
        self.embedding_model = config.embedding_model or OLLAMA_EMBEDDING_MODEL
        self.transport = transport or HTTPTransport(config, client)

    def get_type(self) -> ProviderType:
        return ProviderType.OLLAMA

    def get_name(self) -> str:
        return "Ollama"

    def is_configured(self, ctx: Context) -> bool:
        return bool(self.host)

    def get_default_model(self) -> str:
        return self.default_model

    def get_available_models(self, ctx: Context) -> list[str]:
        require_configured(self, ctx)
        body = self.transport.request(ctx, "GET", f"{self.host}/api/tags")
        data = decode_json(body, "models")
        return [m.get("name", "") for m in data.get("models") or []]

    def has_model(self, ctx: Context, model: str) -> bool:
        """
        Check whether `model` is pulled on the server.

        Ollama lists models as "name:tag", so "llama3.2" matches
        "llama3.2:latest".
        """
        installed = set(self.get_available_models(ctx))
        bare = model.split(":")[0]
        return any(name in installed for name in (model, f"{model}:latest", bare, f"{bare}:latest"))

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        require_configured(self, ctx)

        payload = {
            "model": req.model or self.default_model,
            "messages": [m.to_dict() for m in req.messages],
            "stream": False,
        }
        options = {}
        if req.temperature > 0:
            options["temperature"] = req.temperature
        if req.top_p > 0:
            options["top_p"] = req.top_p
        if req.max_tokens > 0:
            options["num_predict"] = req.max_tokens
        if options:
            payload["options"] = options

        body = self.transport.request(ctx, "POST", f"{self.host}/api/chat", payload)
        data = decode_json(body, "completion")

        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)
        return CompletionResponse(
            content=(data.get("message") or {}).get("content", ""),
            model=data.get("model", ""),
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason=data.get("done_reason") or "",
        )

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        """Embed each input with its own request, in order."""
        require_configured(self, ctx)

        model = req.model or self.embedding_model
        embeddings = []
        total_tokens = 0
        for text in req.input:
            body = self.transport.request(ctx, "POST", f"{self.host}/api/embed",
                                          {"model": model, "input": text})
            data = decode_json(body, "embedding")
            vectors = data.get("embeddings") or []
            embeddings.append(vectors[0] if vectors else [])
            total_tokens += data.get("prompt_eval_count", 0)

        return EmbeddingResponse(
            embeddings=embeddings,
            model=model,
            usage=TokenUsage(prompt_tokens=total_tokens, total_tokens=total_tokens),
        )

    def suggest_tags(self, ctx: Context, req: SuggestTagsRequest) -> SuggestTagsResponse:
        return default_suggest_tags(ctx, self, req)

    def summarize(self, ctx: Context, req: SummarizeRequest) -> SummarizeResponse:
        return default_summarize(ctx, self, req)

    def check_health(self, ctx: Context) -> str:
        """
        Probe the server and return its version string.

        Raises:
            ProviderNotConfiguredError: If no host is set
            LLMError: If the server cannot be reached
        """
        require_configured(self, ctx)
        body = self.transport.request(ctx, "GET", f"{self.host}/api/version")
        version = decode_json(body, "version").get("version", "")
        logger.debug("Ollama at %s is healthy (version %s)", self.host, version)
        return version

    def to_setting(self) -> LLMProviderSetting:
        return LLMProviderSetting(
            host=self.host,
            default_model=self.default_model,
            embedding_model=self.embedding_model,
        )

    def close(self) -> None:
        self.transport.close()
