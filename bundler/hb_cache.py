#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from hb_diagnostics import BundleWarning


@dataclass
class CompiledUnit:
    """
    Compiled output for one virtual path.

    - code: the exact source text that was compiled
    - result: the compiler's result mapping
    - warnings: warnings the compiler reported for `code`
    """
    code: str
    result: Mapping[str, Any]
    warnings: List[BundleWarning] = field(default_factory=list)

    def matches(self, code: str) -> bool:
        return self.code == code


class TransformCache:
    """
    Per-target memo of compiled components, keyed by virtual path.

    Entries are only valid while their stored source text equals the text of
    the current request. Each pass reads a snapshot and hands back the entries
    it used; tables are swapped, never edited in place by a pass.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, CompiledUnit]] = {}

    def snapshot(self, target: str) -> Dict[str, CompiledUnit]:
        return dict(self._tables.get(target, {}))

    def get(self, target: str, path: str) -> Optional[CompiledUnit]:
        return self._tables.get(target, {}).get(path)

    def replace(self, target: str, entries: Mapping[str, CompiledUnit]) -> None:
        self._tables[target] = dict(entries)

    def merge(self, target: str, entries: Mapping[str, CompiledUnit]) -> None:
        table = self._tables.setdefault(target, {})
        table.update(entries)

    def size(self, target: str) -> int:
        return len(self._tables.get(target, {}))

    def clear(self) -> None:
        self._tables.clear()
