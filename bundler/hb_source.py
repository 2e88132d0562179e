#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping

FRAMEWORK_NAME = "hamber"
FRAMEWORK_PREFIX = "hamber/"
COMPONENT_TYPE = "hamber"
COMPONENT_SUFFIX = ".hamber"
MARKUP_SUFFIX = ".html"
SCRIPT_TYPE = "js"
ENTRY_PATH = "./App.hamber"


@dataclass(frozen=True)
class SourceFile:
    """
    One submitted file: `name` without extension, `type` is the extension.

    Immutable for the duration of a request.
    """
    name: str
    type: str
    source: str = ""

    @property
    def virtual_path(self) -> str:
        return f"./{self.name}.{self.type}"

    @property
    def is_component(self) -> bool:
        return self.type == COMPONENT_TYPE

    def to_message(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type, "source": self.source}

    @staticmethod
    def from_message(data: Mapping[str, Any]) -> 'SourceFile':
        return SourceFile(
            name=str(data["name"]),
            type=str(data["type"]),
            source=data.get("source") or "",
        )


def build_lookup(files: Iterable[SourceFile]) -> Dict[str, SourceFile]:
    """
    Map each file's virtual path to the file. Duplicate paths: last one wins.
    """
    lookup: Dict[str, SourceFile] = {}
    for f in files:
        lookup[f.virtual_path] = f
    return lookup


def is_remote(module_id: str | None) -> bool:
    return bool(module_id) and (module_id.startswith("https://") or module_id.startswith("http://"))


def is_framework_module(module_id: str) -> bool:
    return module_id == FRAMEWORK_NAME or module_id.startswith(FRAMEWORK_PREFIX)
