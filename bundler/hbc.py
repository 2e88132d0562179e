#  SPDX-License-Identifier: MIT OR Apache-2.0
#  Copyright (c) 2026 gwz

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from hb_context import BundlerContext, LogLevel
from hb_diagnostics import BundleWarning
from hb_dispatcher import Bundler
from hb_errors import BundlerError
from hb_examples import order_example_files
from hb_logger import log_error, log_info, log_warning
from hb_protocol import BundleResult
from hb_worker import WorkerPool


def _env_default(name: str) -> Optional[str]:
    return os.getenv(name) or None


def print_warning_with_snippet(warning: BundleWarning, sources: Dict[str, List[str]], context: BundlerContext) -> None:
    # First line: header
    log_warning(context, warning.format())

    if not warning.filename or warning.line is None:
        return

    lines = sources.get(warning.filename)
    if lines is None:
        return

    line_idx = warning.line - 1
    if not (0 <= line_idx < len(lines)):
        return

    src_line = lines[line_idx]

    width = max(5, len(str(warning.line)))
    gutter = f"{warning.line:>{width}} | "
    log_warning(context, gutter + src_line)

    if warning.column is None:
        return

    start_col = max(1, warning.column)
    end_col = start_col
    if warning.end and warning.end.get("line") == warning.line and warning.end.get("column") is not None:
        end_col = max(start_col, warning.end["column"] + 1)

    caret_width = max(1, end_col - start_col)
    caret_prefix = " " * width + " | " + " " * (start_col - 1)
    log_warning(context, caret_prefix + "^" * caret_width)


def print_result(result: BundleResult, sources: Dict[str, List[str]], context: BundlerContext) -> None:
    for warning in result.warnings:
        print_warning_with_snippet(warning, sources, context)
    if result.error is not None:
        log_error(context, result.error.format())


def build_bundler_context(args: argparse.Namespace) -> BundlerContext:
    """Build a BundlerContext from command-line arguments."""
    verbosity = getattr(args, 'verbosity', 0)
    if verbosity >= 3:
        log_level = LogLevel.DEBUG
    elif verbosity >= 1:
        log_level = LogLevel.INFO
    else:
        log_level = LogLevel.WARNING

    return BundlerContext(
        ssr_enabled=getattr(args, 'ssr', False),
        fetch_timeout=getattr(args, 'fetch_timeout', None),
        log_rich_format=getattr(args, 'log', False),
        log_level=log_level,
    )


def read_example_files(paths: List[str]) -> List[Dict[str, Any]]:
    return [{"name": Path(p).name, "source": Path(p).read_text(encoding="utf-8")} for p in paths]


async def run_bundle(
    context: BundlerContext,
    files: List[Any],
    runtime_url: str,
    engine: str,
    compiler: str,
    timeout: Optional[float] = None,
) -> BundleResult:
    with WorkerPool(context=context) as pool:
        bundler = Bundler(pool, runtime_url, engine, compiler)
        try:
            return await bundler.submit(files, timeout=timeout)
        finally:
            bundler.destroy()
            await asyncio.to_thread(bundler.worker.join, 5.0)


def cmd_bundle(args: argparse.Namespace) -> int:
    """Bundle a set of example files into a single script."""
    context = build_bundler_context(args)

    missing = [
        flag for flag, value in (
            ("--runtime-url", args.runtime_url),
            ("--engine", args.engine),
            ("--compiler", args.compiler),
        ) if not value
    ]
    if missing:
        log_error(context, f"error: [HBC-0010] missing {', '.join(missing)} (or the matching HAMBER_* variable)")
        return 1

    try:
        raw = read_example_files(args.files)
    except OSError as e:
        log_error(context, f"error: [HBC-0020] cannot read input: {e}")
        return 1

    files = order_example_files(raw)
    sources = {f"{f.name}.{f.type}": f.source.splitlines() for f in files}
    log_info(context, f"Bundling {', '.join(sources)}")

    try:
        result = asyncio.run(
            run_bundle(context, files, args.runtime_url, args.engine, args.compiler, timeout=args.timeout)
        )
    except BundlerError as e:
        log_error(context, f"error: {e.message}")
        return 1

    print_result(result, sources, context)
    if result.error is not None or result.dom is None:
        return 1

    if result.imports:
        log_info(context, "External imports: " + ", ".join(f"{m} -> {result.import_map.get(m)}" for m in result.imports))

    if args.output:
        Path(args.output).write_text(result.dom.code, encoding="utf-8")
        log_info(context, f"Wrote bundle: {args.output}")
    else:
        print(result.dom.code)

    if args.sourcemap and result.dom.map is not None:
        Path(args.sourcemap).write_text(json.dumps(result.dom.map), encoding="utf-8")
        log_info(context, f"Wrote source map: {args.sourcemap}")

    return 0


def cmd_order(args: argparse.Namespace) -> int:
    """Print example files in canonical bundling order."""
    for f in order_example_files([{"name": Path(p).name} for p in args.files]):
        print(f"{f.name}.{f.type}" if f.type else f.name)
    return 0


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="hbc", description="Hamber REPL bundler")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    parser.add_argument("-v", "--verbose",
                        action='count',
                        default=0,
                        dest='verbosity',
                        help="Increase verbosity: -v=INFO, -vvv=DEBUG")
    parser.add_argument("-l", "--log",
                        action='store_true',
                        default=False,
                        help="Enable rich log formatting (timestamps, levels)")

    ###########################
    # bundle command
    ###########################
    p_bundle = subparsers.add_parser("bundle", help="Bundle example files into one script")
    p_bundle.add_argument("--runtime-url", "-R", default=_env_default("HAMBER_RUNTIME_URL"),
                          help="Base URL of the framework runtime (default: $HAMBER_RUNTIME_URL)")
    p_bundle.add_argument("--engine", "-E", default=_env_default("HAMBER_BUNDLER_ENGINE"),
                          help="Bundler engine reference 'module:attr' (default: $HAMBER_BUNDLER_ENGINE)")
    p_bundle.add_argument("--compiler", "-C", default=_env_default("HAMBER_COMPILER"),
                          help="Component compiler reference 'module:attr' (default: $HAMBER_COMPILER)")
    p_bundle.add_argument("--output", "-o", help="Output file (default: stdout)")
    p_bundle.add_argument("--sourcemap", help="Write the source map to this path")
    p_bundle.add_argument("--ssr", action="store_true", help="Also run the server-side generation pass")
    p_bundle.add_argument("--timeout", type=float, default=None,
                          help="Give up after this many seconds (default: wait forever)")
    p_bundle.add_argument("--fetch-timeout", type=float, default=None,
                          help="Timeout for each remote module fetch (default: none)")
    p_bundle.add_argument("files", nargs="+", help="Example files, e.g. App.hamber Nested.hamber util.js")
    p_bundle.set_defaults(func=cmd_bundle)

    ###########################
    # order command
    ###########################
    p_order = subparsers.add_parser("order", help="Print files in canonical order")
    p_order.add_argument("files", nargs="+", help="File names")
    p_order.set_defaults(func=cmd_order)

    args = parser.parse_args(argv)

    rc = args.func(args)
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
