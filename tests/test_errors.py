"""Tests for error classification, the error log and the ops log."""

import logging

import pytest

from memoai.errors import (
    APIError,
    CapabilityNotSupportedError,
    DeadlineExceededError,
    FeatureDisabledError,
    InvalidAPIKeyError,
    JobQueueFullError,
    LLMError,
    ProviderNotConfiguredError,
    ProviderNotRegisteredError,
    ProviderUnavailableError,
    RateLimitedError,
    RateLimitExceededError,
    error_kind,
    log_exception,
    user_message,
)
from memoai.logging_config import configure_ops_log
from memoai.types import ProviderType


@pytest.mark.parametrize("exc,kind", [
    (ProviderNotConfiguredError(), "not_configured"),
    (FeatureDisabledError("off"), "disabled"),
    (RateLimitedError(), "rate_limited"),
    (RateLimitExceededError(), "rate_limited"),
    (JobQueueFullError(), "busy"),
    (InvalidAPIKeyError(), "invalid_key"),
    (ProviderUnavailableError(), "unavailable"),
    (DeadlineExceededError(), "unavailable"),
    (APIError(500, "boom"), "error"),
    (CapabilityNotSupportedError("no"), "error"),
    (RuntimeError("unexpected"), "error"),
])
def test_error_kind(exc, kind):
    assert error_kind(exc) == kind


def test_user_messages_are_distinct():
    samples = [
        ProviderNotConfiguredError(),
        FeatureDisabledError("off"),
        RateLimitedError(),
        JobQueueFullError(),
        InvalidAPIKeyError(),
        ProviderUnavailableError(),
        APIError(400, "bad"),
    ]
    assert len({user_message(e) for e in samples}) == len(samples)


def test_local_quota_is_a_rate_limit():
    assert issubclass(RateLimitExceededError, RateLimitedError)
    assert issubclass(RateLimitExceededError, LLMError)


def test_not_registered_message():
    err = ProviderNotRegisteredError(ProviderType.GEMINI)
    assert err.provider_type == ProviderType.GEMINI
    assert str(err) == "provider gemini not registered"


class TestLogException:
    def test_writes_under_memoai_home(self, isolated_home):
        try:
            raise ValueError("kaboom")
        except ValueError as e:
            path = log_exception(e, context="unit test")

        assert path == isolated_home / "memoai-errors.log"
        text = path.read_text()
        assert "unit test" in text
        assert "ValueError: kaboom" in text

    def test_appends(self, tmp_path):
        path = tmp_path / "logs" / "errors.log"
        log_exception(RuntimeError("one"), log_path=path)
        log_exception(RuntimeError("two"), log_path=path)

        text = path.read_text()
        assert "RuntimeError: one" in text
        assert "RuntimeError: two" in text


def test_ops_log_records_memoai_messages(tmp_path):
    handler = configure_ops_log(tmp_path / "logs")
    logger = logging.getLogger("memoai.test")
    try:
        logger.info("provider registered: %s", "ollama")
        handler.flush()
    finally:
        logging.getLogger("memoai").removeHandler(handler)
        handler.close()

    text = (tmp_path / "logs" / "memoai-ops.log").read_text()
    assert "memoai.test provider registered: ollama" in text
