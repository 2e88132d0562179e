#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from hb_cache import CompiledUnit, TransformCache
from hb_context import BundlerContext
from hb_diagnostics import BundleWarning, bundler_warning
from hb_engine import BundleGraph, BundlerEngine, ComponentCompiler, GenerateOptions, GraphOptions, OutputChunk
from hb_errors import ErrorInfo
from hb_fetch import RemoteFetchCache
from hb_logger import log_debug, log_info, log_stage
from hb_protocol import BundleResult
from hb_resolve import ModuleResolver, is_external
from hb_source import ENTRY_PATH, SourceFile, build_lookup

TARGET_DOM = "dom"
TARGET_SSR = "ssr"


@dataclass
class PassResult:
    """
    Outcome of one graph build.

    On failure `graph` is None and `error` holds the exception; `cache` and
    `warnings` still hold whatever was gathered before the failure.
    """
    graph: Optional[BundleGraph]
    cache: Dict[str, CompiledUnit] = field(default_factory=dict)
    error: Optional[Exception] = None
    warnings: List[BundleWarning] = field(default_factory=list)
    compiled: List[str] = field(default_factory=list)


class BundleAssembler:
    """
    Drives the bundler engine for one worker.

    Owns nothing but references: the transform cache and the fetch cache are
    owned by the worker runtime and shared by every request it runs.
    """

    def __init__(
        self,
        *,
        runtime_url: str,
        engine: BundlerEngine,
        compiler: ComponentCompiler,
        fetcher: RemoteFetchCache,
        transform_cache: TransformCache,
        context: Optional[BundlerContext] = None,
    ):
        self.runtime_url = runtime_url
        self.engine = engine
        self.compiler = compiler
        self.fetcher = fetcher
        self.transform_cache = transform_cache
        self.context = context or BundlerContext.default()

    async def get_bundle(
        self,
        mode: str,
        cache: Mapping[str, CompiledUnit],
        lookup: Mapping[str, SourceFile],
    ) -> PassResult:
        resolver = ModuleResolver(
            runtime_url=self.runtime_url,
            lookup=lookup,
            fetcher=self.fetcher,
            compiler=self.compiler,
            mode=mode,
            cache=cache,
            context=self.context,
        )

        def onwarn(warning: Any) -> None:
            resolver.warnings.append(bundler_warning(warning))

        try:
            graph = await self.engine.rollup(
                GraphOptions(
                    input=ENTRY_PATH,
                    external=is_external,
                    plugins=[resolver.plugin()],
                    inline_dynamic_imports=True,
                    onwarn=onwarn,
                )
            )
        except Exception as e:
            return PassResult(
                graph=None,
                cache=resolver.new_cache,
                error=e,
                warnings=resolver.warnings,
                compiled=resolver.compiled,
            )

        return PassResult(
            graph=graph,
            cache=resolver.new_cache,
            warnings=resolver.warnings,
            compiled=resolver.compiled,
        )

    async def bundle(self, request_id: int, components: Sequence[SourceFile]) -> BundleResult:
        version = getattr(self.compiler, "VERSION", "unknown")
        log_info(self.context, f"Running Hamber compiler version {version} for request #{request_id}")

        lookup = build_lookup(components)
        import_map: Dict[str, str] = {}
        warnings: List[BundleWarning] = []

        try:
            log_stage(self.context, "Building dom graph", request_id)
            dom = await self.get_bundle(TARGET_DOM, self.transform_cache.snapshot(TARGET_DOM), lookup)
            warnings = dom.warnings
            if dom.error is not None:
                self.transform_cache.merge(TARGET_DOM, dom.cache)
                return self._failure(request_id, dom.error, import_map, warnings)

            self.transform_cache.replace(TARGET_DOM, dom.cache)
            log_debug(
                self.context,
                f"Request #{request_id}: compiled {len(dom.compiled)} of {len(dom.cache)} component(s)",
            )

            uid = itertools.count(1)

            def dom_globals(module_id: str) -> str:
                name = import_map.get(module_id)
                if name is None:
                    name = f"import_{next(uid)}"
                    import_map[module_id] = name
                return name

            log_stage(self.context, "Generating dom bundle", request_id)
            dom_result = await self._generate(dom.graph, dom_globals)

            ssr_result = None
            if self.context.ssr_enabled:
                log_stage(self.context, "Building ssr graph", request_id)
                ssr = await self.get_bundle(TARGET_SSR, self.transform_cache.snapshot(TARGET_SSR), lookup)
                if ssr.error is not None:
                    self.transform_cache.merge(TARGET_SSR, ssr.cache)
                    return self._failure(request_id, ssr.error, import_map, warnings)
                self.transform_cache.replace(TARGET_SSR, ssr.cache)
                # Same bindings as the dom bundle, so both can share one import table.
                ssr_result = await self._generate(ssr.graph, import_map.get)

            return BundleResult(
                id=request_id,
                imports=list(dom_result.imports),
                import_map=import_map,
                dom=dom_result,
                ssr=ssr_result,
                warnings=warnings,
                error=None,
            )
        except Exception as e:
            return self._failure(request_id, e, import_map, warnings)

    # --- Internal helpers ---

    async def _generate(self, graph: BundleGraph, globals_fn: Callable[[str], Optional[str]]) -> OutputChunk:
        output = await graph.generate(
            GenerateOptions(
                format="iife",
                name=self.context.bundle_name,
                globals=globals_fn,
                exports="named",
                sourcemap=True,
            )
        )
        chunk = output[0]
        if isinstance(chunk, Mapping):
            chunk = OutputChunk.from_message(chunk)
        return chunk

    def _failure(
        self,
        request_id: int,
        error: BaseException,
        import_map: Dict[str, str],
        warnings: List[BundleWarning],
    ) -> BundleResult:
        info = ErrorInfo.from_exception(error)
        log_info(self.context, f"Request #{request_id} failed: {info.format()}")
        return BundleResult(
            id=request_id,
            imports=[],
            import_map=import_map,
            dom=None,
            ssr=None,
            warnings=warnings,
            error=info,
        )
