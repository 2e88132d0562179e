#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from __future__ import annotations

import asyncio
import re
import sys
from pathlib import Path
from textwrap import dedent
from typing import Any, Dict, List, Mapping, Optional

import httpx
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from hb_context import BundlerContext, LogLevel
from hb_engine import GenerateOptions, GraphOptions, OutputChunk, call_hook
from hb_protocol import init_message
from hb_runtime import WorkerRuntime
from hb_source import SourceFile
from hb_worker import WorkerPool

RUNTIME_URL = "https://cdn.test/hamber/3.0.0"
ENGINE_REF = "fake:engine"
COMPILER_REF = "fake:compiler"

_SCRIPT_RE = re.compile(r"<script>(.*?)</script>", re.S)
_IMPORT_RE = re.compile(r"""^\s*import\s+(?:[\w*{}\s,]+\s+from\s+)?['"]([^'"]+)['"]""", re.M)


# -------------------------
# Component compiler doubles
# -------------------------


class CompileFailure(Exception):
    def __init__(self, message: str, start: Optional[Dict[str, int]] = None):
        super().__init__(message)
        self.message = message
        self.code = "parse-error"
        self.start = start


class FakeCompiler:
    """
    Keeps the <script> block as the module body and counts invocations.

    - an unclosed `{#if` raises CompileFailure("Expected {/if}")
    - an <img> without alt= produces an a11y warning
    """
    VERSION = "3.0.0-test"

    def __init__(self):
        self.calls: List[tuple] = []

    def compile(self, source: str, options: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append((options["filename"], options["generate"]))
        if "{#if" in source and "{/if}" not in source:
            raise CompileFailure("Expected {/if}", start={"line": 1, "column": 0})

        m = _SCRIPT_RE.search(source)
        script = dedent(m.group(1)).strip() if m else ""
        code = f"{script}\nexport default function {options['name']}() {{}}\n"
        return self._result(code, self._warnings(source, options["filename"]))

    def compiled(self, filename: str, generate: str = "dom") -> int:
        return self.calls.count((filename, generate))

    def _warnings(self, source: str, filename: str) -> List[Dict[str, Any]]:
        warnings = []
        for idx, line in enumerate(source.splitlines()):
            col = line.find("<img")
            if col >= 0 and "alt=" not in line:
                warnings.append({
                    "message": "A11y: <img> element should have an alt attribute",
                    "filename": filename,
                    "start": {"line": idx + 1, "column": col},
                    "end": {"line": idx + 1, "column": col + 4},
                })
        return warnings

    def _result(self, code: str, warnings: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {"js": {"code": code, "map": None}, "warnings": warnings}


class LegacyCompiler(FakeCompiler):
    """Reports warnings only through the old `stats.warnings` surface."""
    VERSION = "2.9.0-test"

    def _result(self, code: str, warnings: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {"js": {"code": code, "map": None}, "stats": {"warnings": warnings}}


# -------------------------
# Bundler engine double
# -------------------------


class FakeGraph:
    def __init__(self, modules: Dict[str, str], externals: List[str]):
        self.modules = modules
        self.externals = externals

    async def generate(self, options: GenerateOptions) -> List[OutputChunk]:
        names = [options.globals(ext) for ext in self.externals]
        body = "\n".join(f"// {mid}\n{code}" for mid, code in self.modules.items())
        params = ", ".join(str(n) for n in names)
        code = f"var {options.name} = (function ({params}) {{\n{body}\n}}({params}));\n"
        source_map = {"version": 3, "sources": list(self.modules)} if options.sourcemap else None
        return [OutputChunk(code=code, map=source_map, imports=list(self.externals), exports=["default"])]


class FakeEngine:
    """
    Walks `import ... from '...'` statements depth-first through the plugin
    hooks. Externals are collected in first-seen order.
    """

    def __init__(self):
        self.builds = 0
        self.options: List[GraphOptions] = []

    async def rollup(self, options: GraphOptions) -> FakeGraph:
        self.builds += 1
        self.options.append(options)
        plugin = options.plugins[0]
        modules: Dict[str, str] = {}
        externals: List[str] = []

        async def visit(module_id: str) -> None:
            if module_id in modules:
                return
            modules[module_id] = ""
            code = await call_hook(plugin.load, module_id)
            if code is None:
                raise RuntimeError(f"Could not load {module_id}")
            transformed = await call_hook(plugin.transform, code, module_id)
            if transformed is not None:
                code = transformed["code"] if isinstance(transformed, dict) else transformed
            modules[module_id] = code
            for importee in _IMPORT_RE.findall(code):
                if options.external(importee):
                    if importee not in externals:
                        externals.append(importee)
                    if options.onwarn is not None and importee == "unused-dep":
                        options.onwarn({"message": f"'{importee}' is imported but never used"})
                    continue
                await visit(await call_hook(plugin.resolve_id, importee, module_id))

        await visit(await call_hook(plugin.resolve_id, options.input, None))
        return FakeGraph(modules, externals)


# -------------------------
# Remote modules
# -------------------------


class FakeRemote:
    """Serves remote modules through httpx.MockTransport and records every request."""

    def __init__(self, routes: Optional[Dict[str, str]] = None):
        self.routes: Dict[str, str] = {
            f"{RUNTIME_URL}/index.mjs": "export function mount() {}\n",
            f"{RUNTIME_URL}/store.mjs": "export function writable() {}\n",
        }
        self.routes.update(routes or {})
        self.requests: List[str] = []
        self.stalled: set = set()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.stalled:
            await asyncio.sleep(3600)
        if url in self.routes:
            return httpx.Response(200, text=self.routes[url])
        return httpx.Response(404, text="not found")

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def count(self, url: str) -> int:
        return self.requests.count(url)


# -------------------------
# Fixtures
# -------------------------


@pytest.fixture
def context() -> BundlerContext:
    return BundlerContext(log_level=LogLevel.SILENT)


@pytest.fixture
def compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def loader(compiler, engine):
    refs = {COMPILER_REF: compiler, ENGINE_REF: engine}
    loaded: List[str] = []

    def _load(ref: str) -> Any:
        loaded.append(ref)
        return refs[ref]

    _load.loaded = loaded
    return _load


@pytest.fixture
def make_runtime(context, loader, remote):
    """Build a WorkerRuntime wired to the test doubles; call `start_runtime` inside a loop."""

    def _make(ctx: Optional[BundlerContext] = None) -> WorkerRuntime:
        return WorkerRuntime(context=ctx or context, loader=loader, client_factory=remote.client_factory)

    return _make


@pytest.fixture
def pool(context, loader, remote):
    p = WorkerPool(context=context, loader=loader, client_factory=remote.client_factory)
    yield p
    p.shutdown()


async def start_runtime(runtime: WorkerRuntime, runtime_url: str = RUNTIME_URL) -> None:
    await runtime.handle_message(init_message(runtime_url, ENGINE_REF, COMPILER_REF))


def component(name: str, source: str) -> SourceFile:
    return SourceFile(name=name, type="hamber", source=dedent(source))


def app_files() -> List[SourceFile]:
    """App imports a nested component, a framework submodule and an external package."""
    return [
        component("App", """
            <script>
            import Nested from './Nested.html';
            import { writable } from 'hamber/store';
            import confetti from 'canvas-confetti';
            </script>
            <Nested/>
        """),
        component("Nested", """
            <script>
            import { format } from './util.js';
            </script>
            <p>nested</p>
        """),
        SourceFile(name="util", type="js", source="export function format(x) { return x; }\n"),
    ]
