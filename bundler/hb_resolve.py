#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urljoin

from hb_cache import CompiledUnit
from hb_context import BundlerContext
from hb_diagnostics import BundleWarning, compile_warnings
from hb_engine import ComponentCompiler, Plugin
from hb_errors import ComponentCompileError, ModuleLoadError, UnresolvedImportError
from hb_fetch import RemoteFetchCache
from hb_logger import log_debug
from hb_source import (
    COMPONENT_SUFFIX,
    FRAMEWORK_NAME,
    FRAMEWORK_PREFIX,
    MARKUP_SUFFIX,
    SourceFile,
    is_framework_module,
    is_remote,
)

_MARKUP_RE = re.compile(re.escape(MARKUP_SUFFIX) + r"$")


def is_external(module_id: str) -> bool:
    """
    Anything that is not a relative path, a framework module or a remote URL
    is left for the host page to supply.
    """
    if module_id.startswith("."):
        return False
    if is_framework_module(module_id):
        return False
    if is_remote(module_id):
        return False
    return True


class ModuleResolver:
    """
    Resolve/load/transform hooks for one generation target of one request.

    Each instance owns its lookup table, its new cache entries and its
    warning list, so concurrent requests never see each other's state. The
    compiled-component snapshot and the fetch cache are shared.

    Resolution order for (importee, importer):
      1. `hamber`                 -> {runtime}/index.mjs
      2. `hamber/<sub>`           -> {runtime}/<sub>.mjs
      3. importer is a remote URL -> importee + ".mjs" relative to the importer
      4. importee is a remote URL -> itself
      5. `X.html`                 -> `X.hamber`
      6. key of the lookup table  -> itself
      otherwise UnresolvedImportError.
    """

    def __init__(
        self,
        *,
        runtime_url: str,
        lookup: Mapping[str, SourceFile],
        fetcher: RemoteFetchCache,
        compiler: ComponentCompiler,
        mode: str,
        cache: Mapping[str, CompiledUnit],
        context: Optional[BundlerContext] = None,
    ):
        self.runtime_url = runtime_url.rstrip("/")
        self.lookup = lookup
        self.fetcher = fetcher
        self.compiler = compiler
        self.mode = mode
        self.cache = cache
        self.context = context or BundlerContext.default()
        self.new_cache: Dict[str, CompiledUnit] = {}
        self.warnings: List[BundleWarning] = []
        self.compiled: List[str] = []

    # --- Hooks ---

    def resolve_id(self, importee: str, importer: Optional[str] = None) -> str:
        if importee == FRAMEWORK_NAME:
            return f"{self.runtime_url}/index.mjs"
        if importee.startswith(FRAMEWORK_PREFIX):
            return f"{self.runtime_url}/{importee[len(FRAMEWORK_PREFIX):]}.mjs"

        if is_remote(importer):
            return urljoin(importer, f"{importee}.mjs")
        if is_remote(importee):
            return importee

        importee = _MARKUP_RE.sub(COMPONENT_SUFFIX, importee)

        if importee in self.lookup:
            return importee

        raise UnresolvedImportError(importee, importer)

    async def load(self, module_id: str) -> Optional[str]:
        if is_remote(module_id):
            fetched = await self.fetcher.fetch(module_id)
            if not fetched.ok:
                raise ModuleLoadError(module_id, fetched.error)
            return fetched.text
        if module_id in self.lookup:
            return self.lookup[module_id].source
        return None

    def transform(self, code: str, module_id: str) -> Optional[Any]:
        if not module_id.endswith(COMPONENT_SUFFIX):
            return None

        name = module_id[2:] if module_id.startswith("./") else module_id
        name = name[: -len(COMPONENT_SUFFIX)]

        cached = self.cache.get(module_id)
        if cached is not None and cached.matches(code):
            log_debug(self.context, f"Component '{module_id}' unchanged ({self.mode}, cache hit)")
            unit = cached
        else:
            log_debug(self.context, f"Compiling '{module_id}' ({self.mode})")
            unit = self._compile(code, name)
            self.compiled.append(module_id)

        self.new_cache[module_id] = unit
        self.warnings.extend(unit.warnings)
        return unit.result["js"]

    def plugin(self) -> Plugin:
        return Plugin(
            name="hamber-repl",
            resolve_id=self.resolve_id,
            load=self.load,
            transform=self.transform,
        )

    # --- Internal helpers ---

    def _compile(self, code: str, name: str) -> CompiledUnit:
        filename = f"{name}{COMPONENT_SUFFIX}"
        options = {
            "generate": self.mode,
            "format": "esm",
            "name": name,
            "filename": filename,
            "dev": self.context.dev,
        }
        try:
            result = self.compiler.compile(code, options)
        except Exception as e:
            fields = {k: v for k, v in vars(e).items() if not k.startswith("_") and k != "message"}
            fields.setdefault("filename", filename)
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            raise ComponentCompileError(message, filename=filename, fields=fields) from e
        return CompiledUnit(code=code, result=result, warnings=compile_warnings(result))
