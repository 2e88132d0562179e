"""
Logging utilities for the bundler.

All functions respect the BundlerContext log settings. Worker threads and the
caller share stderr, so every line is written with a single print call.
"""

#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import sys
import threading
import time
from typing import Optional

from hb_context import BundlerContext, LogLevel


def log(context: BundlerContext, log_level: LogLevel, message: str) -> None:
    """
    Log a message if the context's logging level admits it.

    Args:
        context:    The bundler context containing logging level.
        log_level:  The level of the message to log.
        message:    The message to log.
    """
    if context is None:
        print("No context provided for logging.", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        return
    prefix = ""
    if context.log_rich_format:
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        thread = threading.current_thread().name
        prefix = {
            LogLevel.ERROR: f"{timestamp} [ERROR] ({thread}) ",
            LogLevel.WARNING: f"{timestamp} [WARNING] ({thread}) ",
            LogLevel.INFO: f"{timestamp} [INFO] ({thread}) ",
            LogLevel.DEBUG: f"{timestamp} [DEBUG] ({thread}) ",
        }.get(log_level, "")
    if context.log_level >= log_level:
        print(f"{prefix}{message}", file=sys.stderr)


def log_error(context: BundlerContext, message: str) -> None:
    log(context, LogLevel.ERROR, message)


def log_warning(context: BundlerContext, message: str) -> None:
    log(context, LogLevel.WARNING, message)


def log_info(context: BundlerContext, message: str) -> None:
    log(context, LogLevel.INFO, message)


def log_debug(context: BundlerContext, message: str) -> None:
    log(context, LogLevel.DEBUG, message)


def log_stage(context: BundlerContext, stage: str, request_id: Optional[int] = None) -> None:
    """
    Log the start of a bundling stage.

    Args:
        context: The bundler context containing logging flags.
        stage: The name of the stage (e.g., "Building graph", "Generating").
        request_id: Optional correlation ID of the request being processed.
    """
    if request_id is not None:
        log(context, LogLevel.INFO, f"{stage} for request #{request_id}")
    else:
        log(context, LogLevel.INFO, f"{stage}...")
