#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

"""
Messages exchanged between a Bundler façade and its worker.

Everything on the wire is plain data (dicts, lists, strings, numbers) so a
message can be deep-copied across the thread boundary without sharing state:

  control -> worker   {"type": "init", "framework_runtime_url", "bundler_engine_url", "compiler_url"}
  control -> worker   {"type": "bundle", "id", "components": [SourceFile...]}
  worker  -> control  BundleResult.to_message(), tagged with the request's id
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from hb_diagnostics import BundleWarning
from hb_engine import OutputChunk
from hb_errors import ErrorInfo
from hb_source import SourceFile

MSG_INIT = "init"
MSG_BUNDLE = "bundle"


def init_message(runtime_url: str, engine_url: str, compiler_url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "type": MSG_INIT,
        "framework_runtime_url": runtime_url,
        "bundler_engine_url": engine_url,
        "compiler_url": compiler_url,
    }


def bundle_message(request_id: int, components: Sequence[SourceFile]) -> Dict[str, Any]:
    return {
        "type": MSG_BUNDLE,
        "id": request_id,
        "components": [c.to_message() for c in components],
    }


@dataclass
class BundleResult:
    id: int
    imports: List[str] = field(default_factory=list)
    import_map: Dict[str, str] = field(default_factory=dict)
    dom: Optional[OutputChunk] = None
    ssr: Optional[OutputChunk] = None
    warnings: List[BundleWarning] = field(default_factory=list)
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.dom is not None

    @property
    def code(self) -> Optional[str]:
        return self.dom.code if self.dom is not None else None

    @property
    def source_map(self) -> Optional[Dict[str, Any]]:
        return self.dom.map if self.dom is not None else None

    def to_message(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "imports": list(self.imports),
            "import_map": dict(self.import_map),
            "dom": self.dom.to_message() if self.dom is not None else None,
            "ssr": self.ssr.to_message() if self.ssr is not None else None,
            "warnings": [w.to_message() for w in self.warnings],
            "error": self.error.to_message() if self.error is not None else None,
        }

    @staticmethod
    def from_message(data: Mapping[str, Any]) -> 'BundleResult':
        return BundleResult(
            id=data["id"],
            imports=list(data.get("imports") or []),
            import_map=dict(data.get("import_map") or {}),
            dom=OutputChunk.from_message(data["dom"]) if data.get("dom") else None,
            ssr=OutputChunk.from_message(data["ssr"]) if data.get("ssr") else None,
            warnings=[BundleWarning.from_message(w) for w in data.get("warnings") or []],
            error=ErrorInfo.from_message(data["error"]) if data.get("error") else None,
        )
