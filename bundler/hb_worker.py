#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import asyncio
import copy
import itertools
import threading
import traceback
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from hb_context import BundlerContext
from hb_logger import log_debug, log_error, log_info
from hb_protocol import init_message
from hb_runtime import ClientFactory, CollaboratorLoader, WorkerRuntime

Listener = Callable[[Dict[str, Any]], None]


class WorkerThread:
    """
    Background execution context: one daemon thread running one event loop
    that hosts a WorkerRuntime.

    Communication is by message only. Inbound messages are deep-copied and
    queued on the worker loop in posting order; each is handled in its own
    task, so replies to concurrent requests may come back in any order.
    Replies are deep-copied to every listener, on the worker thread; a
    listener must hop to its own loop before touching loop-bound state.
    """

    def __init__(self, runtime: WorkerRuntime, name: str = "hamber-worker"):
        self.runtime = runtime
        self.name = name
        self.context = runtime.context
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._listeners: List[Listener] = []
        self._terminate_listeners: List[Callable[[], None]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._started = False
        self._terminated = False

    # --- Public API ---

    def start(self) -> None:
        with self._lock:
            if self._started or self._terminated:
                return
            self._started = True
        self._thread.start()

    def next_request_id(self) -> int:
        """Correlation IDs are unique per channel and never reused."""
        with self._lock:
            return next(self._ids)

    def post_message(self, message: Mapping[str, Any]) -> bool:
        """
        Queue a message for the worker. Returns False if the worker is gone.
        """
        if self._terminated:
            log_debug(self.context, f"Dropping message for terminated worker '{self.name}'")
            return False
        payload = copy.deepcopy(dict(message))
        try:
            self._loop.call_soon_threadsafe(self._dispatch, payload)
        except RuntimeError:
            # Loop closed between the check above and the call.
            return False
        return True

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def add_terminate_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            self._terminate_listeners.append(listener)

    def remove_terminate_listener(self, listener: Callable[[], None]) -> None:
        with self._lock:
            if listener in self._terminate_listeners:
                self._terminate_listeners.remove(listener)

    def terminate(self, timeout: float = 5.0, wait: bool = True) -> None:
        """
        Stop the worker unconditionally. In-flight requests are cancelled,
        not drained; termination listeners are notified afterwards.

        With `wait=False` the thread winds down in the background and the
        caller does not block; use `join` to wait for it later.
        """
        with self._lock:
            if self._terminated:
                return
            self._terminated = True
            started = self._started
            listeners = list(self._terminate_listeners)
            self._terminate_listeners.clear()
            self._listeners.clear()

        log_info(self.context, f"Terminating worker '{self.name}'")
        if started:
            self._loop.call_soon_threadsafe(self._loop.stop)
            if wait:
                self.join(timeout)
        else:
            self._loop.close()

        for listener in listeners:
            listener()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._started and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    # --- Worker-loop side ---

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            pending = [t for t in asyncio.all_tasks(self._loop) if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self._loop.run_until_complete(self.runtime.aclose())
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()

    def _dispatch(self, message: Dict[str, Any]) -> None:
        task = self._loop.create_task(self._handle(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, message: Dict[str, Any]) -> None:
        try:
            reply = await self.runtime.handle_message(message)
        except Exception as e:
            log_error(self.context, f"error: [WRK-0030] unhandled failure for message {message.get('type')!r}: {e}")
            log_debug(self.context, traceback.format_exc())
            return
        if reply is not None:
            self._emit(reply)

    def _emit(self, message: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(copy.deepcopy(message))


class WorkerPool:
    """
    Registry of workers keyed by framework-runtime location.

    Owned by a composition root and handed to every Bundler that should share
    workers. The first `acquire` for a location starts its worker and posts the
    single `init` message; later calls return the same worker.
    """

    def __init__(
        self,
        context: Optional[BundlerContext] = None,
        loader: Optional[CollaboratorLoader] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.context = context or BundlerContext.default()
        self.loader = loader
        self.client_factory = client_factory
        self._workers: Dict[str, WorkerThread] = {}
        self._lock = threading.Lock()
        self._created = 0

    def acquire(self, runtime_url: str, engine_url: str, compiler_url: Optional[str] = None) -> WorkerThread:
        with self._lock:
            worker = self._workers.get(runtime_url)
            if worker is not None and not worker.terminated:
                return worker

            self._created += 1
            runtime = WorkerRuntime(
                context=self.context,
                loader=self.loader,
                client_factory=self.client_factory,
            )
            worker = WorkerThread(runtime, name=f"hamber-worker-{self._created}")
            worker.start()
            worker.post_message(init_message(runtime_url, engine_url, compiler_url))
            self._workers[runtime_url] = worker
            log_debug(self.context, f"Started worker '{worker.name}' for runtime {runtime_url}")
            return worker

    def get(self, runtime_url: str) -> Optional[WorkerThread]:
        with self._lock:
            return self._workers.get(runtime_url)

    def terminate(self, runtime_url: str) -> None:
        with self._lock:
            worker = self._workers.pop(runtime_url, None)
        if worker is not None:
            worker.terminate()

    def forget(self, runtime_url: str, worker: WorkerThread) -> None:
        """Drop `worker` from the registry if it is still the one serving `runtime_url`."""
        with self._lock:
            if self._workers.get(runtime_url) is worker:
                del self._workers[runtime_url]

    def shutdown(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.terminate()

    def __contains__(self, runtime_url: str) -> bool:
        with self._lock:
            return runtime_url in self._workers

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)

    def __enter__(self) -> 'WorkerPool':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
