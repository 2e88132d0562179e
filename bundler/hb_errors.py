#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

# hb_errors.py
from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

ERROR_INFO_VERSION = 1


class BundlerError(Exception):
    """Base class for failures raised inside the bundling pipeline."""

    kind = "bundle"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CollaboratorLoadError(BundlerError):
    """The compiler or bundler engine named in `init` could not be loaded."""

    kind = "init"

    def __init__(self, ref: str, reason: str):
        super().__init__(f"[INI-0010] Could not load collaborator '{ref}': {reason}")
        self.ref = ref


class UnresolvedImportError(BundlerError):
    kind = "resolve"

    def __init__(self, importee: str, importer: Optional[str]):
        super().__init__(f'[RES-0010] Could not resolve "{importee}" from "{importer}"')
        self.importee = importee
        self.importer = importer


class ModuleLoadError(BundlerError):
    """A remote module could not be fetched."""

    kind = "network"

    def __init__(self, url: str, reason: Optional[str]):
        super().__init__(f"[NET-0010] Could not load remote module '{url}': {reason or 'unknown error'}")
        self.url = url


class ComponentCompileError(BundlerError):
    """
    Wraps an exception raised by the component compiler.

    The compiler's own message is kept verbatim after the code so callers can
    match on it; its public attributes (positions, frames) travel in `fields`.
    """

    kind = "compile"

    def __init__(self, message: str, filename: str, fields: Optional[Dict[str, Any]] = None):
        super().__init__(f"[CMP-0010] {message}")
        self.filename = filename
        self.fields = dict(fields or {})


class BundlerDestroyedError(BundlerError):
    """Raised into pending requests when their worker is terminated."""

    def __init__(self, request_id: int):
        super().__init__(f"[DSP-0010] Bundler destroyed before request #{request_id} completed")
        self.request_id = request_id


class BundleTimeoutError(BundlerError):
    def __init__(self, request_id: int, timeout: float):
        super().__init__(f"[DSP-0020] Request #{request_id} timed out after {timeout:g}s")
        self.request_id = request_id
        self.timeout = timeout


def _plain(value: Any) -> bool:
    if value is None or isinstance(value, (str, int, float, bool)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_plain(v) for v in value)
    if isinstance(value, Mapping):
        return all(isinstance(k, str) and _plain(v) for k, v in value.items())
    return False


def _public_fields(exc: BaseException) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "message":
            continue
        if name == "fields" and isinstance(value, Mapping):
            fields.update({k: v for k, v in value.items() if _plain(v)})
            continue
        if _plain(value):
            fields[name] = value
    return fields


@dataclass(frozen=True)
class ErrorInfo:
    """
    Serializable description of a failed bundle request.

    Crosses the worker boundary in place of the exception object itself.
    """
    kind: str
    message: str
    stack: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)
    version: int = ERROR_INFO_VERSION

    @staticmethod
    def from_exception(exc: BaseException, kind: Optional[str] = None) -> 'ErrorInfo':
        if kind is None:
            kind = exc.kind if isinstance(exc, BundlerError) else "bundle"
        message = exc.message if isinstance(exc, BundlerError) else str(exc)
        if not message:
            message = type(exc).__name__
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return ErrorInfo(kind=kind, message=message, stack=stack, detail=_public_fields(exc))

    def format(self) -> str:
        filename = self.detail.get("filename")
        if filename:
            return f"{filename}: {self.kind} error: {self.message}"
        return f"{self.kind} error: {self.message}"

    def to_message(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "kind": self.kind,
            "message": self.message,
            "stack": self.stack,
            "detail": dict(self.detail),
        }

    @staticmethod
    def from_message(data: Mapping[str, Any]) -> 'ErrorInfo':
        return ErrorInfo(
            kind=data["kind"],
            message=data["message"],
            stack=data.get("stack", ""),
            detail=dict(data.get("detail") or {}),
            version=data.get("version", ERROR_INFO_VERSION),
        )
