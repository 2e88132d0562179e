"""
Caller-facing façade of the bundling service.

A Bundler tags every request with a correlation ID, posts it to the worker
serving its framework runtime, and settles the matching future when a reply
with that ID comes back. Replies carrying IDs it never issued belong to a
sibling façade on the same worker and are ignored.

Usage:
    with WorkerPool() as pool:
        bundler = Bundler(pool, runtime_url, "my_engine:Engine", "my_compiler:compiler")
        result = await bundler.submit(files)
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import asyncio
import functools
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from hb_errors import BundlerDestroyedError, BundleTimeoutError
from hb_logger import log_debug
from hb_protocol import BundleResult, bundle_message
from hb_source import SourceFile
from hb_worker import WorkerPool

FileLike = Union[SourceFile, Mapping[str, Any]]


def _as_source_file(f: FileLike) -> SourceFile:
    if isinstance(f, SourceFile):
        return f
    return SourceFile.from_message(f)


class Bundler:
    def __init__(
        self,
        pool: WorkerPool,
        runtime_url: str,
        engine_url: str,
        compiler_url: Optional[str] = None,
    ):
        self.pool = pool
        self.runtime_url = runtime_url
        self.context = pool.context
        self.worker = pool.acquire(runtime_url, engine_url, compiler_url)
        self._handlers: Dict[int, "asyncio.Future[BundleResult]"] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._destroyed = False
        self.worker.add_listener(self._on_message)
        self.worker.add_terminate_listener(self._on_terminate)

    # --- Public API ---

    def submit(self, files: Iterable[FileLike], *, timeout: Optional[float] = None) -> "asyncio.Future[BundleResult]":
        """
        Request a bundle of `files`; must be called from a running event loop.

        Returns a future settled with the BundleResult carrying this request's
        correlation ID. Bundling failures are reported through
        `BundleResult.error`, never by failing the future. The future only
        fails with BundlerDestroyedError (worker terminated) or
        BundleTimeoutError (`timeout` seconds elapsed); cancelling it drops
        interest in the reply.

        An empty `files` posts nothing and returns a future that never settles.
        """
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif loop is not self._loop:
            raise RuntimeError("Bundler.submit() must always be called from the same event loop")

        future: "asyncio.Future[BundleResult]" = loop.create_future()
        components = [_as_source_file(f) for f in files]
        if not components:
            return future

        request_id = self.worker.next_request_id()
        if self._destroyed or self.worker.terminated:
            future.set_exception(BundlerDestroyedError(request_id))
            return future

        self._handlers[request_id] = future
        future.add_done_callback(functools.partial(self._forget, request_id))

        if timeout is not None:
            handle = loop.call_later(timeout, self._expire, request_id, timeout)
            future.add_done_callback(lambda _f: handle.cancel())

        log_debug(self.context, f"Submitting request #{request_id} ({len(components)} file(s))")
        if not self.worker.post_message(bundle_message(request_id, components)):
            self._fail(request_id, BundlerDestroyedError(request_id))
        return future

    def destroy(self) -> None:
        """
        Terminate the worker unconditionally. Pending requests of every façade
        sharing it fail with BundlerDestroyedError.

        Does not block: the worker thread winds down in the background.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self.pool.forget(self.runtime_url, self.worker)
        self.worker.terminate(wait=False)

    def detach(self) -> None:
        """
        Stop using the shared worker without terminating it.

        Unregisters this façade from the worker and fails its own pending
        requests with BundlerDestroyedError; sibling façades are unaffected.
        """
        if self._destroyed:
            return
        self._destroyed = True
        self.worker.remove_listener(self._on_message)
        self.worker.remove_terminate_listener(self._on_terminate)
        self._on_terminate()

    @property
    def pending(self) -> int:
        return len(self._handlers)

    # --- Internal helpers ---

    def _on_message(self, message: Dict[str, Any]) -> None:
        # Runs on the worker thread.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._resolve, message)
        except RuntimeError:
            # The caller's loop closed while the reply was in flight.
            return

    def _on_terminate(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._reject_all)
        except RuntimeError:
            return

    def _resolve(self, message: Dict[str, Any]) -> None:
        future = self._handlers.pop(message.get("id"), None)
        if future is None or future.done():
            return
        future.set_result(BundleResult.from_message(message))

    def _fail(self, request_id: int, error: Exception) -> None:
        future = self._handlers.pop(request_id, None)
        if future is not None and not future.done():
            future.set_exception(error)

    def _reject_all(self) -> None:
        for request_id in list(self._handlers):
            self._fail(request_id, BundlerDestroyedError(request_id))

    def _expire(self, request_id: int, timeout: float) -> None:
        self._fail(request_id, BundleTimeoutError(request_id, timeout))

    def _forget(self, request_id: int, future: "asyncio.Future[BundleResult]") -> None:
        if self._handlers.get(request_id) is future:
            del self._handlers[request_id]
