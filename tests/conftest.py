"""
Shared pytest fixtures for memoai tests.

Provides an in-process mock provider and an httpx.MockTransport-backed
HTTP transport so no test touches the network.
"""

import json
import threading
from typing import Callable, Optional

import httpx
import pytest

from memoai.context import Context
from memoai.errors import CapabilityNotSupportedError, ProviderNotConfiguredError
from memoai.providers.transport import HTTPTransport
from memoai.types import (
    CompletionResponse,
    EmbeddingResponse,
    ProviderConfig,
    ProviderType,
    SuggestTagsResponse,
    SummarizeResponse,
)


class MockProvider:
    """
    Provider double with canned replies and call counters.

    Set `block` to an Event to hold suggest_tags() until it is set, and
    `started` is set as soon as a call begins.
    """

    def __init__(
        self,
        provider_type: ProviderType = ProviderType.OPENAI,
        configured: bool = True,
        name: str = "Mock",
        tags: Optional[list[str]] = None,
        completion: str = "mock completion",
        error: Optional[Exception] = None,
    ):
        self.provider_type = provider_type
        self.configured = configured
        self.name = name
        self.tags = tags if tags is not None else ["mock"]
        self.completion = completion
        self.error = error
        self.block: Optional[threading.Event] = None
        self.started = threading.Event()
        self.calls = {"complete": 0, "embed": 0, "suggest_tags": 0, "summarize": 0}
        self.requests = []
        self.closed = False

    def get_type(self):
        return self.provider_type

    def get_name(self):
        return self.name

    def is_configured(self, ctx):
        return self.configured

    def get_default_model(self):
        return "mock-model"

    def get_available_models(self, ctx):
        return ["mock-model"]

    def _check(self, ctx):
        if not self.configured:
            raise ProviderNotConfiguredError()
        if self.error is not None:
            raise self.error

    def complete(self, ctx, req):
        self.calls["complete"] += 1
        self.requests.append(req)
        self._check(ctx)
        return CompletionResponse(content=self.completion, model="mock-model")

    def embed(self, ctx, req):
        self.calls["embed"] += 1
        if self.provider_type == ProviderType.ANTHROPIC:
            raise CapabilityNotSupportedError("no embeddings")
        self._check(ctx)
        return EmbeddingResponse(embeddings=[[0.1, 0.2] for _ in req.input], model="mock-embed")

    def suggest_tags(self, ctx, req):
        self.calls["suggest_tags"] += 1
        self.requests.append(req)
        self.started.set()
        if self.block is not None:
            self.block.wait(5)
        self._check(ctx)
        return SuggestTagsResponse(tags=list(self.tags))

    def summarize(self, ctx, req):
        self.calls["summarize"] += 1
        self._check(ctx)
        return SummarizeResponse(summary="mock summary")

    def close(self):
        self.closed = True


class RecordingHandler:
    """
    httpx.MockTransport handler that records requests and replays responses.

    `responses` is a list of (status, body) pairs consumed in order; the
    last one repeats. Bodies that are dicts or lists are JSON-encoded.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        status, body = self.responses[index]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body.encode() if isinstance(body, str) else body)

    @property
    def count(self) -> int:
        return len(self.requests)

    def json(self, index: int = -1):
        return json.loads(self.requests[index].content)


def make_transport(
    handler: Callable[[httpx.Request], httpx.Response],
    provider_type: ProviderType = ProviderType.OPENAI,
    max_retries: int = 3,
) -> HTTPTransport:
    """HTTPTransport over a MockTransport with no backoff delay."""
    client = httpx.Client(transport=httpx.MockTransport(handler))
    config = ProviderConfig(type=provider_type, max_retries=max_retries)
    return HTTPTransport(config, client, backoff_base=0)


@pytest.fixture
def ctx():
    """A fresh context with a generous deadline."""
    return Context(timeout=30)


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep logs, config and error files out of the real home directory."""
    home = tmp_path / "memoai-home"
    monkeypatch.setenv("MEMOAI_HOME", str(home))
    monkeypatch.delenv("MEMOAI_CONFIG", raising=False)
    monkeypatch.delenv("MEMOAI_MASTER_KEY", raising=False)
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY", "OLLAMA_HOST"):
        monkeypatch.delenv(var, raising=False)
    return home
