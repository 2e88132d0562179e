"""
Bundler context for cross-cutting worker options.

This module defines the BundlerContext dataclass which holds options that
affect several parts of the bundling pipeline (compilation, code generation,
remote fetching, logging).
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class LogLevel(IntEnum):
    """Hierarchical logging levels for the bundler."""
    SILENT = 0      # No logging
    ERROR = 3       # Error messages only
    WARNING = 6     # Warning messages (default)
    INFO = 10       # General progress messages (-v)
    DEBUG = 30      # Cache hits, resolution steps (-vvv)


@dataclass
class BundlerContext:
    """
    Holds cross-cutting options shared by the worker runtime and the CLI.

    Attributes:
        dev:                Passed to the component compiler as `dev`.
        ssr_enabled:        If True, run the secondary (server-side) generation pass.
        fetch_timeout:      Seconds before a remote module fetch gives up (None = wait forever).
        bundle_name:        Name of the generated self-executing artifact.
        log_rich_format:    If True, emit logs in rich format: may include log level, timestamps, etc.
        log_level:          Current logging level.
    """
    dev: bool = True
    ssr_enabled: bool = False
    fetch_timeout: Optional[float] = None
    bundle_name: str = "HamberComponent"
    log_rich_format: bool = False
    log_level: LogLevel = LogLevel.WARNING

    @staticmethod
    def default() -> 'BundlerContext':
        """Create a BundlerContext with default settings."""
        return BundlerContext(log_level=LogLevel.WARNING)
