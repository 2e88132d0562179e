#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from hb_context import BundlerContext
from hb_logger import log_debug, log_error


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a remote fetch; `text` may legitimately be empty when `ok`."""
    url: str
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteFetchCache:
    """
    Memoizes remote module text by URL for the lifetime of a worker.

    The first fetch of a URL stores the in-flight task; concurrent callers
    await that same task, so each URL hits the network once. A failed fetch is
    dropped from the cache so a later request can retry it, and the shared
    task resolves to a failed FetchResult instead of raising.

    Must only be used from the event loop that owns `client`.
    """

    def __init__(self, client: httpx.AsyncClient, context: Optional[BundlerContext] = None):
        self.client = client
        self.context = context or BundlerContext.default()
        self._entries: Dict[str, "asyncio.Task[FetchResult]"] = {}

    def fetch(self, url: str) -> "asyncio.Task[FetchResult]":
        task = self._entries.get(url)
        if task is None:
            log_debug(self.context, f"Fetching {url}")
            task = asyncio.ensure_future(self._fetch(url))
            self._entries[url] = task
        else:
            log_debug(self.context, f"Remote module '{url}' already requested (cache hit)")
        return task

    async def _fetch(self, url: str) -> FetchResult:
        try:
            response = await self.client.get(url, follow_redirects=True, timeout=self.context.fetch_timeout)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # Malformed URLs raise outside the HTTPError tree.
            log_error(self.context, f"error: [NET-0010] fetching {url} failed: {e}")
            self._entries.pop(url, None)
            return FetchResult(url=url, error=str(e) or type(e).__name__)
        return FetchResult(url=url, text=response.text)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
