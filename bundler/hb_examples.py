#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from typing import Any, List, Mapping, Sequence, Tuple

from hb_source import COMPONENT_TYPE, SourceFile


def split_file_name(file_name: str) -> Tuple[str, str]:
    """
    Split 'Base.ext' into ('Base', 'ext'). Only the first two dot-separated
    parts count: 'a.b.c' -> ('a', 'b'); 'README' -> ('README', '').
    """
    parts = file_name.split(".")
    return parts[0], parts[1] if len(parts) > 1 else ""


def _sort_key(f: SourceFile) -> Tuple[int, int, str, str]:
    is_app = f.name == "App" and f.type == COMPONENT_TYPE
    return (
        0 if is_app else 1,
        0 if f.type == COMPONENT_TYPE else 1,
        f.type,
        f.name,
    )


def order_example_files(files: Sequence[Mapping[str, Any]]) -> List[SourceFile]:
    """
    Turn example files named 'Base.ext' into SourceFiles in canonical order:

      1. App.hamber
      2. other components, by base name
      3. everything else, by extension then base name
    """
    result = []
    for f in files:
        name, type_ = split_file_name(f["name"])
        result.append(SourceFile(name=name, type=type_, source=f.get("source") or ""))
    return sorted(result, key=_sort_key)
