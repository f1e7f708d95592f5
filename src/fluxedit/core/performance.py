"""Performance helpers for the FluxEdit request pipeline.

These are explicitly constructed service objects; each session or client
owns its own instances so tests never share process-wide state.

- :class:`RequestDeduplicator` coalesces identical in-flight requests.
- :class:`PerformanceMonitor` keeps a rolling window of timings per phase.
- :class:`ObjectURLPool` hands out temporary ``blob:`` URIs for in-memory
  images and revokes the oldest once the pool is full.
- :class:`ParamsDebouncer` publishes parameter edits after a quiet period.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import uuid
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .models import ProcessingParams

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """Share one in-flight task between callers using the same key.

    The first caller for a key starts the task; later callers with the same
    key await that task and receive the same result or exception.  The key
    is released as soon as the task completes, so a later call starts fresh.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    async def deduplicate(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(request_fn())
            self._pending[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        else:
            logger.debug(f"Joining in-flight request: {key}")
        # Shield so one cancelled caller does not cancel the shared request.
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the exception retrieved for tasks whose waiters were cancelled.
        if not task.cancelled():
            task.exception()

    def clear(self) -> None:
        self._pending.clear()


class PerformanceMonitor:
    """Rolling timing metrics, one bounded window per named phase."""

    def __init__(self, window: int = 100) -> None:
        self._window = window
        self._metrics: dict[str, deque[float]] = {}

    def start_timing(self, key: str) -> Callable[[], float]:
        """Start a timer for ``key``.

        Returns:
            A stop function that records and returns the elapsed milliseconds.
        """
        start = time.perf_counter()

        def stop() -> float:
            duration = (time.perf_counter() - start) * 1000
            self.record_metric(key, duration)
            return duration

        return stop

    def record_metric(self, key: str, value: float) -> None:
        if key not in self._metrics:
            self._metrics[key] = deque(maxlen=self._window)
        self._metrics[key].append(value)

    def get_metrics(self, key: str) -> dict[str, float] | None:
        values = self._metrics.get(key)
        if not values:
            return None
        return {
            "avg": sum(values) / len(values),
            "min": min(values),
            "max": max(values),
            "count": len(values),
        }

    def get_all_metrics(self) -> dict[str, dict[str, float] | None]:
        return {key: self.get_metrics(key) for key in self._metrics}

    def clear(self) -> None:
        self._metrics.clear()


class ObjectURLPool:
    """Temporary ``blob:`` URIs for images held in memory.

    Creating more than ``max_urls`` entries revokes the oldest ones, which
    bounds memory growth from repeated uploads.
    """

    SCHEME = "blob:fluxedit/"

    def __init__(self, max_urls: int = 50) -> None:
        self._max_urls = max_urls
        self._entries: OrderedDict[str, tuple[bytes, str]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def create(self, content: bytes, mime_type: str) -> str:
        url = f"{self.SCHEME}{uuid.uuid4()}"
        self._entries[url] = (content, mime_type)

        while len(self._entries) > self._max_urls:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Revoked oldest object URL: {evicted}")

        return url

    def get(self, url: str) -> tuple[bytes, str] | None:
        return self._entries.get(url)

    def revoke(self, url: str) -> None:
        self._entries.pop(url, None)

    def cleanup(self) -> None:
        self._entries.clear()


class ParamsDebouncer:
    """Publish processing-parameter edits after a quiet period.

    Edits arriving within ``delay_ms`` of each other collapse into one
    publication of the latest value.  Must be driven from a running event
    loop.
    """

    def __init__(
        self,
        initial: ProcessingParams,
        delay_ms: int = 300,
        on_change: Callable[[ProcessingParams], Any] | None = None,
    ) -> None:
        self.params = initial
        self.debounced_params = initial
        self._delay = delay_ms / 1000
        self._on_change = on_change
        self._handle: asyncio.TimerHandle | None = None

    @property
    def is_debouncing(self) -> bool:
        return self.params != self.debounced_params

    def update(self, params: ProcessingParams) -> None:
        self.params = params
        self._cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._publish)

    def update_param(self, **changes: Any) -> None:
        self.update(dataclasses.replace(self.params, **changes))

    def flush(self) -> None:
        """Publish any pending edit immediately."""
        self._cancel()
        if self.is_debouncing:
            self._publish()

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _publish(self) -> None:
        self._handle = None
        self.debounced_params = self.params
        if self._on_change is not None:
            self._on_change(self.params)
