"""
Interfaces of the two collaborators the worker drives but does not own:

  - a component compiler, turning one `.hamber` source into an ES module
  - a bundler engine, building a module graph through resolve/load/transform
    hooks and generating a single chunk from it

Both are named by reference ("package.module:attribute") in the `init`
message and loaded with `load_collaborator`.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from __future__ import annotations

import importlib
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from hb_errors import CollaboratorLoadError

HookResult = Union[Any, Awaitable[Any]]


class ComponentCompiler(Protocol):
    VERSION: str

    def compile(self, source: str, options: Mapping[str, Any]) -> Mapping[str, Any]:
        """Return {"js": ..., "warnings": [...]} (or legacy {"js": ..., "stats": {"warnings": [...]}})."""
        ...


@dataclass
class Plugin:
    name: str
    resolve_id: Optional[Callable[[str, Optional[str]], HookResult]] = None
    load: Optional[Callable[[str], HookResult]] = None
    transform: Optional[Callable[[str, str], HookResult]] = None


@dataclass
class GraphOptions:
    input: str
    external: Callable[[str], bool]
    plugins: List[Plugin] = field(default_factory=list)
    inline_dynamic_imports: bool = True
    onwarn: Optional[Callable[[Any], None]] = None


@dataclass
class GenerateOptions:
    format: str
    name: str
    globals: Callable[[str], Optional[str]]
    exports: str = "named"
    sourcemap: bool = True


@dataclass
class OutputChunk:
    """A generated artifact: code, its source map, and the external modules it expects."""
    code: str
    map: Optional[Dict[str, Any]] = None
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)

    def to_message(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "map": self.map,
            "imports": list(self.imports),
            "exports": list(self.exports),
        }

    @staticmethod
    def from_message(data: Mapping[str, Any]) -> 'OutputChunk':
        return OutputChunk(
            code=data["code"],
            map=data.get("map"),
            imports=list(data.get("imports") or []),
            exports=list(data.get("exports") or []),
        )


class BundleGraph(Protocol):
    async def generate(self, options: GenerateOptions) -> Sequence[OutputChunk]:
        ...


class BundlerEngine(Protocol):
    async def rollup(self, options: GraphOptions) -> BundleGraph:
        ...


async def call_hook(hook: Optional[Callable[..., HookResult]], *args: Any) -> Any:
    """Invoke a plugin hook that may be either sync or async."""
    if hook is None:
        return None
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def load_collaborator(ref: str) -> Any:
    """
    Load a collaborator from a "package.module:attribute" reference.

    Classes are instantiated with no arguments; any other attribute (module
    level instance, module) is returned as is. A bare module path returns the
    module itself.

    Raises:
        CollaboratorLoadError: If the module or attribute can't be loaded.
    """
    if not ref:
        raise CollaboratorLoadError(str(ref), "empty reference")

    module_name, _, attr = ref.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise CollaboratorLoadError(ref, f"{type(e).__name__}: {e}") from e

    if not attr:
        return module

    target: Any = module
    for part in attr.split("."):
        if not hasattr(target, part):
            raise CollaboratorLoadError(ref, f"'{module_name}' has no attribute '{attr}'")
        target = getattr(target, part)

    if inspect.isclass(target):
        try:
            return target()
        except Exception as e:
            raise CollaboratorLoadError(ref, f"{type(e).__name__}: {e}") from e
    return target
