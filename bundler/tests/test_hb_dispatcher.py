#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import asyncio
import time

import pytest

from conftest import COMPILER_REF, ENGINE_REF, RUNTIME_URL, app_files, component
from hb_dispatcher import Bundler
from hb_errors import BundlerDestroyedError, BundleTimeoutError
from hb_protocol import BundleResult
from hb_worker import WorkerPool

STALLED_URL = "https://cdn.test/slow/index.mjs"


def _bundler(pool, runtime_url=RUNTIME_URL):
    return Bundler(pool, runtime_url, ENGINE_REF, COMPILER_REF)


def _stalled_files():
    return [component("App", f"<script>\nimport slow from '{STALLED_URL}';\n</script>")]


def test_submit_resolves_with_assigned_correlation_id(pool):
    bundler = _bundler(pool)

    async def go():
        future = bundler.submit(app_files())
        return await asyncio.wait_for(future, 5)

    result = asyncio.run(go())

    assert isinstance(result, BundleResult)
    assert result.id == 1
    assert result.error is None
    assert "HamberComponent" in result.code
    assert bundler.pending == 0


def test_submit_accepts_plain_mappings(pool):
    bundler = _bundler(pool)
    files = [f.to_message() for f in app_files()]

    async def go():
        return await asyncio.wait_for(bundler.submit(files), 5)

    assert asyncio.run(go()).error is None


def test_concurrent_requests_each_get_their_own_result(pool):
    bundler = _bundler(pool)
    ok = app_files()
    broken = [component("App", "{#if x}")]

    async def go():
        futures = [bundler.submit(ok), bundler.submit(broken), bundler.submit(ok)]
        return await asyncio.wait_for(asyncio.gather(*futures), 5)

    first, second, third = asyncio.run(go())

    assert [first.id, second.id, third.id] == [1, 2, 3]
    assert first.error is None and third.error is None
    assert second.error is not None


def test_compile_error_resolves_rather_than_rejects(pool):
    bundler = _bundler(pool)

    async def go():
        return await asyncio.wait_for(bundler.submit([component("App", "<p>{#if open}</p>")]), 5)

    result = asyncio.run(go())

    assert result.dom is None
    assert result.code is None
    assert result.error.kind == "compile"
    assert "Expected {/if}" in result.error.message


def test_empty_submission_stays_pending(pool):
    bundler = _bundler(pool)

    async def go():
        future = bundler.submit([])
        await asyncio.sleep(0.2)
        return future.done(), bundler.pending

    done, pending = asyncio.run(go())

    assert not done
    assert pending == 0


def test_siblings_share_one_worker_and_ignore_each_others_replies(pool, loader):
    first = _bundler(pool)
    second = _bundler(pool)

    async def go():
        a = first.submit(app_files())
        b = second.submit(app_files())
        return await asyncio.wait_for(asyncio.gather(a, b), 5)

    a, b = asyncio.run(go())

    assert first.worker is second.worker
    assert a.id != b.id
    assert len(pool) == 1
    assert loader.loaded == [COMPILER_REF, ENGINE_REF]


def test_distinct_runtime_urls_get_distinct_workers(pool, remote):
    other_url = "https://cdn.test/hamber/4.0.0"
    first = _bundler(pool)
    second = _bundler(pool, other_url)

    assert first.worker is not second.worker
    assert RUNTIME_URL in pool and other_url in pool


def test_destroy_rejects_pending_requests(pool, remote):
    remote.stalled.add(STALLED_URL)
    bundler = _bundler(pool)
    sibling = _bundler(pool)

    async def go():
        mine = bundler.submit(_stalled_files())
        theirs = sibling.submit(_stalled_files())
        await asyncio.sleep(0.2)
        assert not mine.done()
        bundler.destroy()
        results = await asyncio.wait_for(asyncio.gather(mine, theirs, return_exceptions=True), 5)
        return results, bundler.pending, sibling.pending

    (mine, theirs), pending, sibling_pending = asyncio.run(go())

    assert isinstance(mine, BundlerDestroyedError)
    assert isinstance(theirs, BundlerDestroyedError)
    assert pending == 0 and sibling_pending == 0
    assert RUNTIME_URL not in pool
    bundler.worker.join(5)
    assert not bundler.worker.is_alive


def test_submit_after_destroy_fails_immediately(pool):
    bundler = _bundler(pool)
    bundler.destroy()
    bundler.destroy()

    async def go():
        future = bundler.submit(app_files())
        with pytest.raises(BundlerDestroyedError):
            await future

    asyncio.run(go())


def test_new_bundler_after_destroy_gets_fresh_worker(pool):
    old = _bundler(pool)
    old.destroy()
    new = _bundler(pool)

    async def go():
        return await asyncio.wait_for(new.submit(app_files()), 5)

    assert new.worker is not old.worker
    assert asyncio.run(go()).error is None


def test_timeout_fails_request_and_deregisters(pool, remote):
    remote.stalled.add(STALLED_URL)
    bundler = _bundler(pool)

    async def go():
        future = bundler.submit(_stalled_files(), timeout=0.1)
        with pytest.raises(BundleTimeoutError) as exc:
            await future
        return exc.value, bundler.pending

    error, pending = asyncio.run(go())

    assert error.timeout == 0.1
    assert "[DSP-0020]" in error.message
    assert pending == 0


def test_cancelled_request_is_deregistered_and_late_reply_ignored(pool):
    bundler = _bundler(pool)

    async def go():
        cancelled = bundler.submit(app_files())
        cancelled.cancel()
        await asyncio.sleep(0)
        after_cancel = bundler.pending
        result = await asyncio.wait_for(bundler.submit(app_files()), 5)
        await asyncio.sleep(0.1)
        return after_cancel, cancelled.cancelled(), result

    after_cancel, was_cancelled, result = asyncio.run(go())

    assert after_cancel == 0
    assert was_cancelled
    assert result.id == 2


def test_pool_terminate_rejects_pending_and_drops_worker(pool, remote):
    remote.stalled.add(STALLED_URL)
    bundler = _bundler(pool)

    async def go():
        future = bundler.submit(_stalled_files())
        await asyncio.sleep(0.2)
        pool.terminate(RUNTIME_URL)
        with pytest.raises(BundlerDestroyedError):
            await asyncio.wait_for(future, 5)

    asyncio.run(go())

    assert pool.get(RUNTIME_URL) is None
    assert bundler.worker.terminated


def test_pool_context_manager_shuts_down_workers(context, loader, remote):
    with WorkerPool(context=context, loader=loader, client_factory=remote.client_factory) as pool:
        worker = pool.acquire(RUNTIME_URL, ENGINE_REF, COMPILER_REF)
        assert pool.acquire(RUNTIME_URL, ENGINE_REF, COMPILER_REF) is worker
        assert len(pool) == 1

    assert len(pool) == 0
    assert worker.terminated
    assert not worker.is_alive


def test_destroy_does_not_wait_for_worker_shutdown(pool):
    bundler = _bundler(pool)
    worker = bundler.worker

    async def slow_close():
        await asyncio.sleep(1.0)

    worker.runtime.aclose = slow_close

    async def go():
        await asyncio.wait_for(bundler.submit(app_files()), 5)
        started = time.monotonic()
        bundler.destroy()
        return time.monotonic() - started

    elapsed = asyncio.run(go())

    assert elapsed < 0.5
    assert worker.terminated
    worker.join(5)
    assert not worker.is_alive


def test_detach_leaves_shared_worker_running(pool, remote):
    remote.stalled.add(STALLED_URL)
    leaving = _bundler(pool)
    staying = _bundler(pool)
    worker = staying.worker

    async def go():
        abandoned = leaving.submit(_stalled_files())
        await asyncio.sleep(0.1)
        leaving.detach()
        with pytest.raises(BundlerDestroyedError):
            await asyncio.wait_for(abandoned, 5)
        with pytest.raises(BundlerDestroyedError):
            await leaving.submit(app_files())
        return await asyncio.wait_for(staying.submit(app_files()), 5)

    result = asyncio.run(go())

    assert result.error is None
    assert result.id == 3
    assert not worker.terminated
    assert RUNTIME_URL in pool
    assert worker._listeners == [staying._on_message]
    assert worker._terminate_listeners == [staying._on_terminate]
