#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import asyncio
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import httpx

from hb_assembler import BundleAssembler
from hb_cache import TransformCache
from hb_context import BundlerContext
from hb_engine import load_collaborator
from hb_errors import CollaboratorLoadError, ErrorInfo
from hb_fetch import RemoteFetchCache
from hb_logger import log_debug, log_error, log_info, log_warning
from hb_protocol import MSG_BUNDLE, MSG_INIT, BundleResult
from hb_source import SourceFile

CollaboratorLoader = Callable[[str], Any]
ClientFactory = Callable[[], httpx.AsyncClient]


def default_client_factory() -> httpx.AsyncClient:
    return httpx.AsyncClient(follow_redirects=True)


class WorkerRuntime:
    """
    Message handler living inside one worker's event loop.

    Accepts a single `init` message (runtime location plus collaborator
    references) and then any number of `bundle` messages. Bundle messages that
    arrive before `init` wait on the readiness barrier. Requests are not
    serialized: each runs its own passes while sharing the transform cache and
    the remote fetch cache owned here.
    """

    def __init__(
        self,
        context: Optional[BundlerContext] = None,
        loader: Optional[CollaboratorLoader] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.context = context or BundlerContext.default()
        self.loader = loader or load_collaborator
        self.client_factory = client_factory or default_client_factory
        self.transform_cache = TransformCache()
        self.fetcher: Optional[RemoteFetchCache] = None
        self.assembler: Optional[BundleAssembler] = None
        self.runtime_url: Optional[str] = None
        self.init_error: Optional[CollaboratorLoadError] = None
        self._initialized = False
        self._ready: Optional[asyncio.Event] = None

    # --- Public API ---

    async def handle_message(self, message: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Process one inbound message; return the reply to post, or None.
        """
        kind = message.get("type")

        if kind == MSG_INIT:
            self.initialize(message)
            return None

        if kind == MSG_BUNDLE:
            components = message.get("components") or []
            if not components:
                log_debug(self.context, f"Ignoring empty bundle request #{message.get('id')}")
                return None

            await self._ready_event().wait()
            files = [SourceFile.from_message(c) for c in components]
            result = await self.bundle(message["id"], files)
            return result.to_message()

        log_warning(self.context, f"warning: [WRK-0010] ignoring unknown message type {kind!r}")
        return None

    def initialize(self, message: Mapping[str, Any]) -> None:
        if self._initialized:
            log_warning(self.context, "warning: [WRK-0020] worker already initialized; ignoring init")
            return
        self._initialized = True

        self.runtime_url = message["framework_runtime_url"]
        log_info(self.context, f"Initializing worker for runtime {self.runtime_url}")
        self.fetcher = RemoteFetchCache(self.client_factory(), self.context)

        try:
            compiler_ref = message.get("compiler_url")
            if not compiler_ref:
                raise CollaboratorLoadError("<none>", "init message names no compiler")
            compiler = self._load(compiler_ref)
            engine = self._load(message["bundler_engine_url"])
        except CollaboratorLoadError as e:
            log_error(self.context, f"error: {e}")
            self.init_error = e
        else:
            self.assembler = BundleAssembler(
                runtime_url=self.runtime_url,
                engine=engine,
                compiler=compiler,
                fetcher=self.fetcher,
                transform_cache=self.transform_cache,
                context=self.context,
            )
        finally:
            self._ready_event().set()

    async def bundle(self, request_id: int, components: Sequence[SourceFile]) -> BundleResult:
        if self.assembler is None:
            error = self.init_error or CollaboratorLoadError("<none>", "worker not initialized")
            return BundleResult(id=request_id, error=ErrorInfo.from_exception(error))
        return await self.assembler.bundle(request_id, components)

    async def aclose(self) -> None:
        if self.fetcher is not None:
            await self.fetcher.client.aclose()

    @property
    def ready(self) -> bool:
        return self._ready is not None and self._ready.is_set()

    # --- Internal helpers ---

    def _load(self, ref: str) -> Any:
        try:
            return self.loader(ref)
        except CollaboratorLoadError:
            raise
        except Exception as e:
            raise CollaboratorLoadError(ref, f"{type(e).__name__}: {e}") from e

    def _ready_event(self) -> asyncio.Event:
        if self._ready is None:
            self._ready = asyncio.Event()
        return self._ready
