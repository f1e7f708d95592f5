"""Tests for fluxedit.core.performance — dedup, timing, object URLs, debounce."""

from __future__ import annotations

import asyncio

import pytest

from fluxedit.core.models import ProcessingParams
from fluxedit.core.performance import (
    ObjectURLPool,
    ParamsDebouncer,
    PerformanceMonitor,
    RequestDeduplicator,
)


class TestRequestDeduplicator:
    """Identical in-flight requests share one execution."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        dedup = RequestDeduplicator()
        calls = 0
        release = asyncio.Event()

        async def request():
            nonlocal calls
            calls += 1
            await release.wait()
            return "result"

        first = asyncio.ensure_future(dedup.deduplicate("key", request))
        second = asyncio.ensure_future(dedup.deduplicate("key", request))
        await asyncio.sleep(0)
        assert dedup.is_pending("key")

        release.set()
        assert await asyncio.gather(first, second) == ["result", "result"]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_key_released_after_completion(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.deduplicate("key", request) == 1
        await asyncio.sleep(0)
        assert dedup.pending == 0
        assert await dedup.deduplicate("key", request) == 2

    @pytest.mark.asyncio
    async def test_failure_shared_and_released(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def request():
            await release.wait()
            raise RuntimeError("boom")

        first = asyncio.ensure_future(dedup.deduplicate("key", request))
        second = asyncio.ensure_future(dedup.deduplicate("key", request))
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        await asyncio.sleep(0)
        assert not dedup.is_pending("key")

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator()
        calls = []

        async def request(tag):
            calls.append(tag)
            return tag

        results = await asyncio.gather(
            dedup.deduplicate("a", lambda: request("a")),
            dedup.deduplicate("b", lambda: request("b")),
        )
        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]


class TestPerformanceMonitor:
    """Rolling timing windows."""

    def test_no_samples(self):
        assert PerformanceMonitor().get_metrics("missing") is None

    def test_aggregates(self):
        monitor = PerformanceMonitor()
        for value in (10.0, 20.0, 30.0):
            monitor.record_metric("api-request", value)

        assert monitor.get_metrics("api-request") == {
            "avg": 20.0,
            "min": 10.0,
            "max": 30.0,
            "count": 3,
        }

    def test_window_keeps_latest_samples(self):
        monitor = PerformanceMonitor(window=100)
        for value in range(150):
            monitor.record_metric("k", float(value))

        metrics = monitor.get_metrics("k")
        assert metrics["count"] == 100
        assert metrics["min"] == 50.0
        assert metrics["max"] == 149.0

    def test_start_timing_records(self):
        monitor = PerformanceMonitor()
        stop = monitor.start_timing("image-upload")
        elapsed = stop()

        assert elapsed >= 0
        assert monitor.get_metrics("image-upload")["count"] == 1

    def test_get_all_and_clear(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("a", 1.0)
        monitor.record_metric("b", 2.0)
        assert set(monitor.get_all_metrics()) == {"a", "b"}

        monitor.clear()
        assert monitor.get_all_metrics() == {}


class TestObjectURLPool:
    """Temporary URIs with oldest-first revocation."""

    def test_create_and_get(self):
        pool = ObjectURLPool()
        url = pool.create(b"bytes", "image/png")

        assert url.startswith("blob:fluxedit/")
        assert url in pool
        assert pool.get(url) == (b"bytes", "image/png")

    def test_oldest_revoked_when_full(self):
        pool = ObjectURLPool(max_urls=50)
        urls = [pool.create(bytes([i]), "image/jpeg") for i in range(51)]

        assert len(pool) == 50
        assert urls[0] not in pool
        assert pool.get(urls[0]) is None
        assert urls[1] in pool
        assert urls[50] in pool

    def test_revoke_and_cleanup(self):
        pool = ObjectURLPool()
        first = pool.create(b"a", "image/jpeg")
        pool.create(b"b", "image/jpeg")

        pool.revoke(first)
        pool.revoke("blob:fluxedit/unknown")
        assert len(pool) == 1

        pool.cleanup()
        assert len(pool) == 0


class TestParamsDebouncer:
    """Parameter edits publish after a quiet period."""

    @pytest.mark.asyncio
    async def test_rapid_edits_publish_once(self):
        published = []
        debouncer = ParamsDebouncer(ProcessingParams(), delay_ms=20, on_change=published.append)

        debouncer.update_param(strength=0.5)
        debouncer.update_param(strength=0.6)
        debouncer.update_param(guidance=5.0)
        assert debouncer.is_debouncing
        assert published == []

        await asyncio.sleep(0.05)

        expected = ProcessingParams(strength=0.6, guidance=5.0)
        assert published == [expected]
        assert debouncer.debounced_params == expected
        assert not debouncer.is_debouncing

    @pytest.mark.asyncio
    async def test_flush_publishes_immediately(self):
        published = []
        debouncer = ParamsDebouncer(ProcessingParams(), delay_ms=10_000, on_change=published.append)

        debouncer.update_param(seed=7)
        debouncer.flush()

        assert published == [ProcessingParams(seed=7)]

    def test_flush_without_pending_edit(self):
        published = []
        debouncer = ParamsDebouncer(ProcessingParams(), on_change=published.append)

        debouncer.flush()

        assert published == []
