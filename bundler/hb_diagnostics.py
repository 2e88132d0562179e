#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class BundleWarning:
    message: str
    filename: Optional[str] = None

    # Compiler positions: {"line": 1-based, "column": 0-based, "character": offset}
    start: Optional[Dict[str, int]] = None
    end: Optional[Dict[str, int]] = None

    @property
    def line(self) -> Optional[int]:
        return self.start.get("line") if self.start else None

    @property
    def column(self) -> Optional[int]:
        if not self.start or self.start.get("column") is None:
            return None
        return self.start["column"] + 1

    # Return the one-line header; snippets will be printed at the call site
    def format(self) -> str:
        loc = ""
        if self.filename is not None:
            loc += self.filename
        if self.line is not None:
            loc += f":{self.line}"
            if self.column is not None:
                loc += f":{self.column}"
        if loc:
            loc += ": "
        return f"{loc}warning: {self.message}"

    def to_message(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "filename": self.filename,
            "start": dict(self.start) if self.start else None,
            "end": dict(self.end) if self.end else None,
        }

    @staticmethod
    def from_message(data: Mapping[str, Any]) -> 'BundleWarning':
        return BundleWarning(
            message=data["message"],
            filename=data.get("filename"),
            start=data.get("start"),
            end=data.get("end"),
        )


def compile_warnings(result: Mapping[str, Any]) -> List[BundleWarning]:
    """
    Collect warnings from a compiler result.

    Current compilers report them under `warnings`; older ones only under
    `stats.warnings`.
    """
    raw = result.get("warnings")
    if raw is None:
        raw = (result.get("stats") or {}).get("warnings") or []
    warnings = []
    for w in raw:
        warnings.append(
            BundleWarning(
                message=w.get("message", ""),
                filename=w.get("filename"),
                start=w.get("start"),
                end=w.get("end"),
            )
        )
    return warnings


def bundler_warning(warning: Any) -> BundleWarning:
    """Wrap a warning reported by the bundler engine (`onwarn`); only the message is kept."""
    if isinstance(warning, Mapping):
        return BundleWarning(message=str(warning.get("message", "")))
    return BundleWarning(message=getattr(warning, "message", None) or str(warning))
