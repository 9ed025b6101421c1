"""
Google Gemini provider, talking to the Generative Language REST API.
"""

import logging
from typing import Optional

import httpx

from ..context import Context
from ..errors import ResponseParseError
from ..types import (
    GEMINI_BASE_URL,
    GEMINI_DEFAULT_MODEL,
    GEMINI_EMBEDDING_MODEL,
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


def _model_path(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


class GeminiProvider:
    """
    Provider for Google's Gemini models (Google AI Studio API keys).

    System messages become "systemInstruction"; the assistant role is
    called "model" on this API.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[HTTPTransport] = None,
        *,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = config.api_key
        self.base_url = (config.base_url or GEMINI_BASE_URL).rstrip("/")
        self.default_model = config.default_model or GEMINI_DEFAULT_MODEL
        self.embedding_model = config.embedding_model or GEMINI_EMBEDDING_MODEL
        self.transport = transport or HTTPTransport(config, client)

    def get_type(self) -> ProviderType:
        return ProviderType.GEMINI

    def get_name(self) -> str:
        return "Google Gemini"

    def is_configured(self, ctx: Context) -> bool:
        return bool(self.api_key)

    def get_default_model(self) -> str:
        return self.default_model

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def get_available_models(self, ctx: Context) -> list[str]:
        require_configured(self, ctx)
        body = self.transport.request(ctx, "GET", f"{self.base_url}/models",
                                      headers=self._headers())
        data = decode_json(body, "models")

        models = []
        for m in data.get("models") or []:
            if "generateContent" not in (m.get("supportedGenerationMethods") or []):
                continue
            name = m.get("name", "")
            models.append(name.removeprefix("models/"))
        return models

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        require_configured(self, ctx)

        system_parts = []
        contents = []
        for m in req.messages:
            if m.role == Role.SYSTEM:
                system_parts.append({"text": m.content})
                continue
            role = "model" if m.role == Role.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": m.content}]})

        payload = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        generation_config = {}
        if req.max_tokens > 0:
            generation_config["maxOutputTokens"] = req.max_tokens
        if req.temperature > 0:
            generation_config["temperature"] = req.temperature
        if req.top_p > 0:
            generation_config["topP"] = req.top_p
        if generation_config:
            payload["generationConfig"] = generation_config

        model = req.model or self.default_model
        url = f"{self.base_url}/{_model_path(model)}:generateContent"
        body = self.transport.request(ctx, "POST", url, payload, self._headers())
        data = decode_json(body, "completion")

        candidates = data.get("candidates") or []
        if not candidates:
            raise ResponseParseError("no completion candidates returned")
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []

        usage = data.get("usageMetadata") or {}
        return CompletionResponse(
            content="".join(p.get("text", "") for p in parts if isinstance(p, dict)),
            model=data.get("modelVersion") or model,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
            finish_reason=candidate.get("finishReason") or "",
        )

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        require_configured(self, ctx)

        model = _model_path(req.model or self.embedding_model)
        requests = []
        for text in req.input:
            item = {"model": model, "content": {"parts": [{"text": text}]}}
            if req.dimensions > 0:
                item["outputDimensionality"] = req.dimensions
            requests.append(item)

        url = f"{self.base_url}/{model}:batchEmbedContents"
        body = self.transport.request(ctx, "POST", url, {"requests": requests},
                                      self._headers())
        data = decode_json(body, "embedding")

        return EmbeddingResponse(
            embeddings=[e.get("values") or [] for e in data.get("embeddings") or []],
            model=model.removeprefix("models/"),
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
