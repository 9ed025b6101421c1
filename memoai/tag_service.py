"""
Tag suggestion service for the note editor.

Wraps LLMService.suggest_tags with three independent policies:
- a TTL- and size-bounded result cache
- a fixed-window per-user rate limit
- an optional background worker pool for asynchronous jobs

Usage:
    tags = TagService(llm_service)
    resp = tags.suggest_tags(ctx, user_id, content, existing_tags)

    job = tags.suggest_tags_async(user_id, memo_id, content, existing_tags)
    ...
    job = tags.get_job(job.id)

    tags.stop()
"""

import dataclasses
import hashlib
import heapq
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from .context import Context
from .errors import CancelledError, FeatureDisabledError, JobQueueFullError, RateLimitExceededError
from .rwlock import RWLock
from .types import SuggestTagsRequest, SuggestTagsResponse

logger = logging.getLogger(__name__)

# Upper bound on a single backend call made by the service
REQUEST_TIMEOUT = 30.0

# How often idle workers check for shutdown
WORKER_POLL_INTERVAL = 0.1


@dataclass
class TagServiceConfig:
    """
    Attributes:
        max_tags_per_request: max_tags passed to the provider
        cache_ttl: Seconds a cached result stays valid
        max_cache_size: Entry count that triggers eviction
        rate_limit_requests: Requests allowed per user per window
        rate_limit_window: Window length in seconds
        enable_async: Start background workers for suggest_tags_async()
        async_workers: Number of worker threads
        async_queue_size: Pending jobs accepted before JobQueueFullError
        enabled: Master switch; when False every request raises FeatureDisabledError
    """
    max_tags_per_request: int = 5
    cache_ttl: float = 15 * 60
    max_cache_size: int = 1000
    rate_limit_requests: int = 60
    rate_limit_window: float = 60
    enable_async: bool = True
    async_workers: int = 2
    async_queue_size: int = 100
    enabled: bool = True


class TagJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def terminal(self) -> bool:
        return self in (TagJobStatus.COMPLETED, TagJobStatus.FAILED)


@dataclass
class TagJob:
    """An asynchronous tag suggestion. Callers receive snapshots."""
    id: str
    memo_id: int
    content: str
    existing_tags: list[str]
    user_id: int
    status: TagJobStatus = TagJobStatus.PENDING
    result: Optional[SuggestTagsResponse] = None
    error: Optional[BaseException] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


TagJobCallback = Callable[[TagJob], None]


@dataclass
class _CachedTags:
    tags: list[str]
    created_at: float  # time.monotonic()


@dataclass
class _RateLimitEntry:
    count: int
    window_end: float  # time.monotonic()


def cache_key(content: str, existing_tags: list[str]) -> str:
    """
    Fingerprint of content plus existing tags, in the order given.

    ["a", "b"] and ["b", "a"] produce different keys. Each part is length
    prefixed, so ("ab", []) and ("a", ["b"]) do too.
    """
    h = hashlib.sha256()
    for part in [content, *existing_tags]:
        data = part.encode("utf-8")
        h.update(len(data).to_bytes(8, "big"))
        h.update(data)
    return h.hexdigest()[:32]


def generate_job_id(memo_id: int, content: str) -> str:
    h = hashlib.sha256()
    h.update(content.encode("utf-8"))
    h.update(memo_id.to_bytes(8, "big", signed=True))
    h.update(str(time.time_ns()).encode("ascii"))
    h.update(os.urandom(8))
    return h.hexdigest()[:16]


class TagService:
    """
    Cached, rate-limited tag suggestions with optional background jobs.

    Args:
        llm_service: Anything with suggest_tags(ctx, SuggestTagsRequest),
            normally an LLMService
        config: Policy settings; defaults to TagServiceConfig()
    """

    def __init__(self, llm_service, config: Optional[TagServiceConfig] = None):
        self.llm_service = llm_service
        self.config = config if config is not None else TagServiceConfig()

        self._cache: dict[str, _CachedTags] = {}
        self._cache_lock = RWLock()

        self._rate_limits: dict[int, _RateLimitEntry] = {}
        self._rate_limits_lock = threading.Lock()

        self._jobs: dict[str, TagJob] = {}
        self._jobs_lock = RWLock()
        self._job_callback: Optional[TagJobCallback] = None

        # Cancelled by stop() so in-flight worker calls abort their retries
        self._root_ctx = Context()
        self._stop_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False
        self._workers: list[threading.Thread] = []
        self._queue: Optional[queue.Queue] = None

        if self.config.enable_async and self.config.enabled:
            self._queue = queue.Queue(maxsize=self.config.async_queue_size)
            self._start_workers()

    # -------------------------------------------------------------------------
    # Worker pool
    # -------------------------------------------------------------------------

    def _start_workers(self) -> None:
        for i in range(self.config.async_workers):
            worker = threading.Thread(
                target=self._worker, args=(i,), name=f"memoai-tag-worker-{i}", daemon=True
            )
            worker.start()
            self._workers.append(worker)
        logger.info("Tag service async workers started: %d", self.config.async_workers)

    def _worker(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            try:
                job_id = self._queue.get(timeout=WORKER_POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self._process_job(job_id)
            finally:
                self._queue.task_done()
        logger.debug("Tag service worker %d stopping", worker_id)

    def _process_job(self, job_id: str) -> None:
        with self._jobs_lock.write():
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.status = TagJobStatus.RUNNING
            request = SuggestTagsRequest(
                content=job.content,
                existing_tags=list(job.existing_tags),
                max_tags=self.config.max_tags_per_request,
            )

        result = None
        error = None
        try:
            ctx = self._root_ctx.with_timeout(REQUEST_TIMEOUT)
            result = self.llm_service.suggest_tags(ctx, request)
        except Exception as e:
            error = e

        # Cache before publishing so a finished job implies a warm cache
        if error is None:
            self._cache_result(request.content, request.existing_tags, result.tags)

        with self._jobs_lock.write():
            job.completed_at = datetime.now(timezone.utc)
            if error is not None:
                job.status = TagJobStatus.FAILED
                job.error = error
            else:
                job.status = TagJobStatus.COMPLETED
                job.result = result
            snapshot = dataclasses.replace(job)
            callback = self._job_callback

        if error is not None:
            logger.error("Tag job failed: job_id=%s memo_id=%d error=%s",
                         job_id, snapshot.memo_id, error)
        else:
            logger.info("Tag job completed: job_id=%s memo_id=%d tags=%d",
                        job_id, snapshot.memo_id, len(result.tags))

        if callback is not None:
            threading.Thread(
                target=self._run_callback, args=(callback, snapshot),
                name=f"memoai-tag-callback-{job_id}", daemon=True,
            ).start()

    def _run_callback(self, callback: TagJobCallback, job: TagJob) -> None:
        try:
            callback(job)
        except Exception:
            logger.exception("Tag job callback raised for job %s", job.id)

    def _fail_queued_jobs(self) -> None:
        """Mark jobs left in the queue after the workers exit as failed."""
        failed = 0
        while True:
            try:
                job_id = self._queue.get_nowait()
            except queue.Empty:
                break
            with self._jobs_lock.write():
                job = self._jobs.get(job_id)
                if job is not None and job.status == TagJobStatus.PENDING:
                    job.status = TagJobStatus.FAILED
                    job.error = CancelledError("tag service stopped")
                    job.completed_at = datetime.now(timezone.utc)
                    failed += 1
            self._queue.task_done()
        if failed:
            logger.info("Failed %d queued tag jobs at shutdown", failed)

    def stop(self) -> None:
        """
        Signal workers to exit and wait for them. Safe to call twice.

        Jobs still queued are marked failed without a callback. Callbacks
        already running are not waited for.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        self._stop_event.set()
        self._root_ctx.cancel()
        for worker in self._workers:
            worker.join()
        if self._queue is not None:
            self._fail_queued_jobs()
        logger.info("Tag service stopped")

    def set_job_callback(self, callback: Optional[TagJobCallback]) -> None:
        """Set a function called once with each finished job, on its own thread."""
        with self._jobs_lock.write():
            self._job_callback = callback

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def suggest_tags(
        self,
        ctx: Context,
        user_id: int,
        content: str,
        existing_tags: Optional[list[str]] = None,
    ) -> SuggestTagsResponse:
        """
        Suggest tags, serving repeats from the cache.

        Raises:
            FeatureDisabledError: If tagging is disabled
            RateLimitExceededError: If the user is over quota
            LLMError: Anything the provider raised
        """
        if not self.config.enabled:
            raise FeatureDisabledError("tag suggestions are disabled")
        existing_tags = list(existing_tags or [])

        if not self._check_rate_limit(user_id):
            raise RateLimitExceededError()

        cached = self._get_from_cache(content, existing_tags)
        if cached is not None:
            logger.debug("Tag suggestion cache hit: user_id=%d tags=%d", user_id, len(cached))
            return SuggestTagsResponse(tags=cached)

        result = self.llm_service.suggest_tags(
            ctx.with_timeout(REQUEST_TIMEOUT),
            SuggestTagsRequest(
                content=content,
                existing_tags=existing_tags,
                max_tags=self.config.max_tags_per_request,
            ),
        )
        self._cache_result(content, existing_tags, result.tags)

        logger.info("Tag suggestion generated: user_id=%d tags=%d", user_id, len(result.tags))
        return result

    def suggest_tags_async(
        self,
        user_id: int,
        memo_id: int,
        content: str,
        existing_tags: Optional[list[str]] = None,
    ) -> TagJob:
        """
        Queue a tag suggestion job and return it immediately.

        A cache hit returns an already completed job that is never queued
        or recorded.

        Raises:
            FeatureDisabledError: If tagging or async execution is disabled,
                or the service has been stopped
            RateLimitExceededError: If the user is over quota
            JobQueueFullError: If the queue is at capacity
        """
        if not self.config.enabled or self._queue is None:
            raise FeatureDisabledError("async tag generation is disabled")
        if self._stopped:
            raise FeatureDisabledError("tag service stopped")
        existing_tags = list(existing_tags or [])

        if not self._check_rate_limit(user_id):
            raise RateLimitExceededError()

        cached = self._get_from_cache(content, existing_tags)
        if cached is not None:
            now = datetime.now(timezone.utc)
            return TagJob(
                id=generate_job_id(memo_id, content),
                memo_id=memo_id,
                content=content,
                existing_tags=existing_tags,
                user_id=user_id,
                status=TagJobStatus.COMPLETED,
                result=SuggestTagsResponse(tags=cached),
                created_at=now,
                completed_at=now,
            )

        job = TagJob(
            id=generate_job_id(memo_id, content),
            memo_id=memo_id,
            content=content,
            existing_tags=existing_tags,
            user_id=user_id,
        )
        # Held across the put so stop() cannot drain the queue in between
        with self._stop_lock:
            if self._stopped:
                raise FeatureDisabledError("tag service stopped")
            with self._jobs_lock.write():
                self._jobs[job.id] = job
                snapshot = dataclasses.replace(job)

            try:
                self._queue.put_nowait(job.id)
            except queue.Full:
                with self._jobs_lock.write():
                    self._jobs.pop(job.id, None)
                raise JobQueueFullError() from None

        logger.info("Tag job queued: job_id=%s memo_id=%d", job.id, memo_id)
        return snapshot

    def get_job(self, job_id: str) -> Optional[TagJob]:
        """Return a snapshot of the job, or None if unknown."""
        with self._jobs_lock.read():
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job is not None else None

    def cleanup_expired_jobs(self, max_age: float) -> int:
        """Drop finished jobs completed more than `max_age` seconds ago."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)
        with self._jobs_lock.write():
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status.terminal and job.completed_at is not None
                and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]

        if expired:
            logger.info("Cleaned up expired tag jobs: %d", len(expired))
        return len(expired)

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _get_from_cache(self, content: str, existing_tags: list[str]) -> Optional[list[str]]:
        key = cache_key(content, existing_tags)
        with self._cache_lock.read():
            cached = self._cache.get(key)
            if cached is None:
                return None
            if time.monotonic() - cached.created_at > self.config.cache_ttl:
                return None
            return list(cached.tags)

    def _cache_result(self, content: str, existing_tags: list[str], tags: list[str]) -> None:
        key = cache_key(content, existing_tags)
        with self._cache_lock.write():
            if len(self._cache) >= self.config.max_cache_size:
                self._evict_oldest_entries()
            self._cache[key] = _CachedTags(tags=list(tags), created_at=time.monotonic())

    def _evict_oldest_entries(self) -> None:
        """Purge expired entries, then the oldest tenth if still full. Caller holds the write lock."""
        now = time.monotonic()
        for key in [k for k, v in self._cache.items() if now - v.created_at > self.config.cache_ttl]:
            del self._cache[key]

        if len(self._cache) >= self.config.max_cache_size:
            to_remove = max(1, self.config.max_cache_size // 10)
            oldest = heapq.nsmallest(to_remove, self._cache.items(), key=lambda kv: kv[1].created_at)
            for key, _ in oldest:
                del self._cache[key]

    def clear_cache(self) -> None:
        with self._cache_lock.write():
            self._cache = {}
        logger.info("Tag service cache cleared")

    def get_cache_stats(self) -> tuple[int, int]:
        """Return (entries, max_cache_size). Expired entries count until evicted."""
        with self._cache_lock.read():
            return len(self._cache), self.config.max_cache_size

    # -------------------------------------------------------------------------
    # Rate limiting
    # -------------------------------------------------------------------------

    def _check_rate_limit(self, user_id: int) -> bool:
        now = time.monotonic()
        with self._rate_limits_lock:
            entry = self._rate_limits.get(user_id)
            if entry is None or now > entry.window_end:
                self._rate_limits[user_id] = _RateLimitEntry(
                    count=1, window_end=now + self.config.rate_limit_window
                )
                return True
            if entry.count >= self.config.rate_limit_requests:
                return False
            entry.count += 1
            return True

    def get_rate_limit_status(self, user_id: int) -> tuple[int, datetime]:
        """Return (remaining requests, window reset time) without consuming a slot."""
        now = time.monotonic()
        wall_now = datetime.now(timezone.utc)
        with self._rate_limits_lock:
            entry = self._rate_limits.get(user_id)
            if entry is None or now > entry.window_end:
                return (self.config.rate_limit_requests,
                        wall_now + timedelta(seconds=self.config.rate_limit_window))
            remaining = max(0, self.config.rate_limit_requests - entry.count)
            return remaining, wall_now + timedelta(seconds=entry.window_end - now)
