"""Tests for the Anthropic provider."""

import pytest

from conftest import RecordingHandler, make_transport
from memoai.context import Context
from memoai.errors import CapabilityNotSupportedError, ProviderNotConfiguredError
from memoai.providers.anthropic import ANTHROPIC_API_VERSION, KNOWN_MODELS, AnthropicProvider
from memoai.types import (
    ANTHROPIC_BASE_URL,
    ANTHROPIC_DEFAULT_MODEL,
    CompletionRequest,
    EmbeddingRequest,
    Message,
    ProviderConfig,
    ProviderType,
    Role,
    SummarizeRequest,
)

MESSAGES_REPLY = {
    "id": "msg_1",
    "type": "message",
    "role": "assistant",
    "model": "claude-3-haiku-20240307",
    "stop_reason": "end_turn",
    "content": [
        {"type": "text", "text": "Hello "},
        {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
        {"type": "text", "text": "world"},
    ],
    "usage": {"input_tokens": 10, "output_tokens": 4},
}


def make_provider(handler):
    config = ProviderConfig(type=ProviderType.ANTHROPIC, api_key="sk-ant-test")
    return AnthropicProvider(config, make_transport(handler, ProviderType.ANTHROPIC))


class TestComplete:
    def test_system_lifted_and_headers(self, ctx):
        handler = RecordingHandler([(200, MESSAGES_REPLY)])

        resp = make_provider(handler).complete(ctx, CompletionRequest(messages=[
            Message(Role.SYSTEM, "You tag notes."),
            Message(Role.USER, "hello"),
            Message(Role.ASSISTANT, "hi"),
            Message(Role.USER, "tag this"),
        ]))

        req = handler.requests[0]
        assert str(req.url) == f"{ANTHROPIC_BASE_URL}/v1/messages"
        assert req.headers["x-api-key"] == "sk-ant-test"
        assert req.headers["anthropic-version"] == ANTHROPIC_API_VERSION
        body = handler.json()
        assert body["system"] == "You tag notes."
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert body["model"] == ANTHROPIC_DEFAULT_MODEL
        assert body["max_tokens"] == 4096

        assert resp.content == "Hello world"
        assert resp.finish_reason == "end_turn"
        assert resp.usage.prompt_tokens == 10
        assert resp.usage.completion_tokens == 4
        assert resp.usage.total_tokens == 14

    def test_positive_max_tokens_overrides_default(self, ctx):
        handler = RecordingHandler([(200, MESSAGES_REPLY)])
        make_provider(handler).complete(ctx, CompletionRequest(
            messages=[Message(Role.USER, "x")], max_tokens=300, top_p=0.9,
        ))
        body = handler.json()
        assert body["max_tokens"] == 300
        assert body["top_p"] == 0.9
        assert "system" not in body
        assert "temperature" not in body


class TestCapabilities:
    def test_embed_not_supported(self, ctx):
        handler = RecordingHandler([(200, {})])
        with pytest.raises(CapabilityNotSupportedError):
            make_provider(handler).embed(ctx, EmbeddingRequest(input=["x"]))
        assert handler.count == 0

    def test_fixed_model_list(self, ctx):
        handler = RecordingHandler([(200, {})])
        assert make_provider(handler).get_available_models(ctx) == KNOWN_MODELS
        assert handler.count == 0

    def test_models_require_key(self):
        provider = AnthropicProvider(ProviderConfig(type=ProviderType.ANTHROPIC))
        with pytest.raises(ProviderNotConfiguredError):
            provider.get_available_models(Context())


class TestSummarize:
    def test_bullet_style_collects_key_points(self, ctx):
        reply = dict(MESSAGES_REPLY, content=[{
            "type": "text",
            "text": "Summary:\n- Budget approved\n* Launch in May\n• Hire two engineers",
        }])
        handler = RecordingHandler([(200, reply)])

        resp = make_provider(handler).summarize(ctx, SummarizeRequest(content="long memo", style="bullet"))

        assert resp.key_points == ["Budget approved", "Launch in May", "Hire two engineers"]
        body = handler.json()
        assert "bullet summary" in body["system"]
        assert "under 200 characters" in body["system"]
        assert body["temperature"] == 0.5
        assert body["max_tokens"] == 300

    def test_brief_style_has_no_key_points(self, ctx):
        reply = dict(MESSAGES_REPLY, content=[{"type": "text", "text": "- just one line"}])
        handler = RecordingHandler([(200, reply)])
        resp = make_provider(handler).summarize(ctx, SummarizeRequest(content="memo"))
        assert resp.summary == "- just one line"
        assert resp.key_points == []
