"""Tests for TagService: caching, rate limiting and background jobs."""

import threading
import time

import pytest

from conftest import MockProvider, RecordingHandler, make_transport
from memoai.errors import (
    APIError,
    CancelledError,
    FeatureDisabledError,
    JobQueueFullError,
    ProviderNotConfiguredError,
    RateLimitExceededError,
)
from memoai.providers.openai import OpenAIProvider
from memoai.service import LLMService
from memoai.tag_service import TagJobStatus, TagService, TagServiceConfig, cache_key
from memoai.types import ProviderConfig, ProviderType


def wait_for_terminal(svc, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = svc.get_job(job_id)
        if job is not None and job.status.terminal:
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.fixture
def provider():
    return MockProvider(tags=["meeting", "project", "notes"])


@pytest.fixture
def make_tag_service(provider):
    services = []

    def factory(**overrides):
        llm = LLMService()
        llm.register_provider(provider)
        svc = TagService(llm, TagServiceConfig(**overrides))
        services.append(svc)
        return svc

    yield factory
    for svc in services:
        svc.stop()


class TestCacheKey:
    def test_stable(self):
        assert cache_key("memo", ["a"]) == cache_key("memo", ["a"])
        assert len(cache_key("memo", [])) == 32

    def test_tag_order_matters(self):
        assert cache_key("memo", ["a", "b"]) != cache_key("memo", ["b", "a"])

    def test_parts_do_not_run_together(self):
        assert cache_key("ab", []) != cache_key("a", ["b"])
        assert cache_key("memo", ["ab"]) != cache_key("memo", ["a", "b"])

    def test_shifted_boundary_is_a_cache_miss(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False)
        svc.suggest_tags(ctx, 1, "a", ["b"])
        svc.suggest_tags(ctx, 1, "ab", [])
        assert provider.calls["suggest_tags"] == 2


class TestSuggestTags:
    def test_end_to_end_over_http(self, ctx):
        handler = RecordingHandler([(200, {
            "model": "gpt-4o-mini",
            "choices": [{
                "message": {"role": "assistant", "content": '["meeting", "project", "notes"]'},
                "finish_reason": "stop",
            }],
        })])
        llm = LLMService()
        llm.register_provider(OpenAIProvider(
            ProviderConfig(type=ProviderType.OPENAI, api_key="sk-test-key-1234567890"),
            make_transport(handler),
        ))
        svc = TagService(llm, TagServiceConfig(enable_async=False))

        first = svc.suggest_tags(ctx, 1, "Meeting notes for project Alpha")
        second = svc.suggest_tags(ctx, 1, "Meeting notes for project Alpha")

        assert first.tags == ["meeting", "project", "notes"]
        assert second.tags == first.tags
        assert handler.count == 1
        assert "Meeting notes for project Alpha" in handler.json()["messages"][1]["content"]
        svc.stop()

    def test_passes_config_and_existing_tags(self, ctx, provider, make_tag_service):
        svc = make_tag_service(max_tags_per_request=3, enable_async=False)

        svc.suggest_tags(ctx, 1, "memo", ["work"])

        req = provider.requests[0]
        assert req.max_tags == 3
        assert req.existing_tags == ["work"]

    def test_existing_tags_are_part_of_cache_key(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False)
        svc.suggest_tags(ctx, 1, "memo", ["a", "b"])
        svc.suggest_tags(ctx, 1, "memo", ["b", "a"])
        assert provider.calls["suggest_tags"] == 2

    def test_cached_result_is_a_copy(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False)
        svc.suggest_tags(ctx, 1, "memo").tags.append("mutated")
        assert "mutated" not in svc.suggest_tags(ctx, 1, "memo").tags

    def test_errors_are_not_cached(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False)
        provider.error = APIError(500, "boom")
        with pytest.raises(APIError):
            svc.suggest_tags(ctx, 1, "memo")

        provider.error = None
        assert svc.suggest_tags(ctx, 1, "memo").tags == ["meeting", "project", "notes"]
        assert svc.get_cache_stats()[0] == 1

    def test_unconfigured_provider(self, ctx, provider, make_tag_service):
        provider.configured = False
        svc = make_tag_service(enable_async=False)
        with pytest.raises(ProviderNotConfiguredError):
            svc.suggest_tags(ctx, 1, "memo")

    def test_disabled(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enabled=False)
        with pytest.raises(FeatureDisabledError):
            svc.suggest_tags(ctx, 1, "memo")
        with pytest.raises(FeatureDisabledError):
            svc.suggest_tags_async(1, 10, "memo")
        assert provider.calls["suggest_tags"] == 0


class TestCache:
    def test_expired_entry_is_a_miss(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False, cache_ttl=0.05)
        svc.suggest_tags(ctx, 1, "memo")
        time.sleep(0.1)

        assert svc.get_cache_stats() == (1, 1000)
        svc.suggest_tags(ctx, 1, "memo")
        assert provider.calls["suggest_tags"] == 2

    def test_evicts_oldest_when_full(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False, max_cache_size=10)
        for i in range(11):
            svc.suggest_tags(ctx, 1, f"memo {i}")

        assert svc.get_cache_stats() == (10, 10)

        svc.suggest_tags(ctx, 1, "memo 10")
        assert provider.calls["suggest_tags"] == 11
        svc.suggest_tags(ctx, 1, "memo 0")
        assert provider.calls["suggest_tags"] == 12

    def test_eviction_purges_expired_first(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False, max_cache_size=10, cache_ttl=0.05)
        for i in range(10):
            svc.suggest_tags(ctx, 1, f"memo {i}")
        time.sleep(0.1)

        svc.suggest_tags(ctx, 1, "fresh")

        assert svc.get_cache_stats()[0] == 1

    def test_clear_cache(self, ctx, provider, make_tag_service):
        svc = make_tag_service(enable_async=False)
        svc.suggest_tags(ctx, 1, "memo")
        svc.clear_cache()
        assert svc.get_cache_stats()[0] == 0
        svc.suggest_tags(ctx, 1, "memo")
        assert provider.calls["suggest_tags"] == 2


class TestRateLimit:
    def test_limit_per_user(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False, rate_limit_requests=2)
        svc.suggest_tags(ctx, 1, "a")
        svc.suggest_tags(ctx, 1, "a")

        with pytest.raises(RateLimitExceededError):
            svc.suggest_tags(ctx, 1, "a")

        svc.suggest_tags(ctx, 2, "a")

    def test_window_resets(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False, rate_limit_requests=1, rate_limit_window=0.1)
        svc.suggest_tags(ctx, 1, "a")
        with pytest.raises(RateLimitExceededError):
            svc.suggest_tags(ctx, 1, "a")

        time.sleep(0.15)
        svc.suggest_tags(ctx, 1, "a")

    def test_status(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False, rate_limit_requests=5)
        remaining, reset_at = svc.get_rate_limit_status(1)
        assert remaining == 5

        svc.suggest_tags(ctx, 1, "a")
        svc.suggest_tags(ctx, 1, "b")
        remaining, _ = svc.get_rate_limit_status(1)
        assert remaining == 3
        assert reset_at.tzinfo is not None

    def test_status_does_not_consume(self, make_tag_service):
        svc = make_tag_service(enable_async=False, rate_limit_requests=1)
        svc.get_rate_limit_status(1)
        svc.get_rate_limit_status(1)
        assert svc.get_rate_limit_status(1)[0] == 1


class TestAsyncJobs:
    def test_lifecycle(self, provider, make_tag_service):
        provider.block = threading.Event()
        svc = make_tag_service(async_workers=1)

        job = svc.suggest_tags_async(1, 42, "Meeting notes for project Alpha")
        assert job.status == TagJobStatus.PENDING
        assert job.memo_id == 42

        assert provider.started.wait(2)
        assert svc.get_job(job.id).status == TagJobStatus.RUNNING

        provider.block.set()
        done = wait_for_terminal(svc, job.id)
        assert done.status == TagJobStatus.COMPLETED
        assert done.result.tags == ["meeting", "project", "notes"]
        assert done.completed_at >= done.created_at

    def test_completed_result_feeds_cache(self, provider, make_tag_service):
        svc = make_tag_service(async_workers=1)
        job = svc.suggest_tags_async(1, 42, "memo")
        wait_for_terminal(svc, job.id)

        hit = svc.suggest_tags_async(1, 42, "memo")

        assert hit.status == TagJobStatus.COMPLETED
        assert hit.result.tags == ["meeting", "project", "notes"]
        assert hit.id != job.id
        assert svc.get_job(hit.id) is None
        assert provider.calls["suggest_tags"] == 1

    def test_failed_job(self, provider, make_tag_service):
        provider.error = APIError(500, "boom")
        svc = make_tag_service(async_workers=1)

        job = svc.suggest_tags_async(1, 42, "memo")
        done = wait_for_terminal(svc, job.id)

        assert done.status == TagJobStatus.FAILED
        assert isinstance(done.error, APIError)
        assert done.result is None
        assert svc.get_cache_stats()[0] == 0

    def test_snapshots_are_detached(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        job = svc.suggest_tags_async(1, 42, "memo")
        job.status = TagJobStatus.FAILED
        assert wait_for_terminal(svc, job.id).status == TagJobStatus.COMPLETED

    def test_queue_full(self, make_tag_service):
        svc = make_tag_service(async_workers=0, async_queue_size=1)
        queued = svc.suggest_tags_async(1, 1, "first")

        with pytest.raises(JobQueueFullError):
            svc.suggest_tags_async(1, 2, "second")

        assert svc.get_job(queued.id).status == TagJobStatus.PENDING

    def test_async_disabled(self, ctx, make_tag_service):
        svc = make_tag_service(enable_async=False)
        with pytest.raises(FeatureDisabledError):
            svc.suggest_tags_async(1, 1, "memo")
        assert svc.suggest_tags(ctx, 1, "memo").tags

    def test_callback_receives_finished_job(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        seen = []
        called = threading.Event()

        def callback(job):
            seen.append(job)
            called.set()

        svc.set_job_callback(callback)
        job = svc.suggest_tags_async(1, 42, "memo")

        assert called.wait(5)
        assert seen[0].id == job.id
        assert seen[0].status == TagJobStatus.COMPLETED

    def test_callback_errors_do_not_kill_worker(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        calls = []

        def callback(job):
            calls.append(job.id)
            raise RuntimeError("callback failed")

        svc.set_job_callback(callback)
        first = svc.suggest_tags_async(1, 1, "first")
        second = svc.suggest_tags_async(1, 2, "second")

        assert wait_for_terminal(svc, first.id).status == TagJobStatus.COMPLETED
        assert wait_for_terminal(svc, second.id).status == TagJobStatus.COMPLETED

    def test_cleanup_expired_jobs(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        job = svc.suggest_tags_async(1, 42, "memo")
        wait_for_terminal(svc, job.id)

        assert svc.cleanup_expired_jobs(3600) == 0
        time.sleep(0.02)
        assert svc.cleanup_expired_jobs(0.01) == 1
        assert svc.get_job(job.id) is None

    def test_cleanup_keeps_pending_jobs(self, make_tag_service):
        svc = make_tag_service(async_workers=0)
        job = svc.suggest_tags_async(1, 42, "memo")
        time.sleep(0.02)
        assert svc.cleanup_expired_jobs(0) == 0
        assert svc.get_job(job.id) is not None

    def test_unknown_job(self, make_tag_service):
        assert make_tag_service().get_job("missing") is None


class TestStop:
    def test_stop_is_idempotent(self, make_tag_service):
        svc = make_tag_service(async_workers=2)
        svc.stop()
        svc.stop()
        assert not any(w.is_alive() for w in svc._workers)

    def test_stop_without_workers(self, make_tag_service):
        make_tag_service(enable_async=False).stop()

    def test_async_after_stop_is_rejected(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        svc.stop()

        with pytest.raises(FeatureDisabledError):
            svc.suggest_tags_async(1, 1, "memo")

    def test_queued_jobs_fail_at_stop(self, make_tag_service):
        svc = make_tag_service(async_workers=0)
        job = svc.suggest_tags_async(1, 1, "memo")

        svc.stop()

        stopped = svc.get_job(job.id)
        assert stopped.status == TagJobStatus.FAILED
        assert isinstance(stopped.error, CancelledError)
        assert stopped.completed_at is not None

    def test_stop_does_not_wait_for_callbacks(self, make_tag_service):
        svc = make_tag_service(async_workers=1)
        gate = threading.Event()
        entered = threading.Event()

        def callback(job):
            entered.set()
            gate.wait()

        svc.set_job_callback(callback)
        svc.suggest_tags_async(1, 42, "memo")
        assert entered.wait(5)

        stopper = threading.Thread(target=svc.stop)
        stopper.start()
        stopper.join(2)
        try:
            assert not stopper.is_alive()
        finally:
            gate.set()
