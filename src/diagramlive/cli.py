"""Command-line interface for diagramlive render/copy/watch workflows."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import traceback
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

from .compiler import Compiler, MermaidCliCompiler
from .config import CompilerOptions, PipelineConfig
from .display import DisplaySlot
from .errors import (
    CompileError,
    DiagramliveError,
    ExportError,
    NormalizationError,
)
from .raster import RasterExporter
from .resources import get_template, load_templates
from .scheduler import RenderScheduler
from .sink import CommandClipboard, CopyOutcome, DirectoryDownloads, EXPORT_FORMATS, ExportSink

logger = logging.getLogger(__name__)


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    line: Optional[int] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


class _StdoutDownloads:
    def save(self, filename: str, data: bytes, mime_type: str) -> Path:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return Path("<stdout>")


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", nargs="?", help="Input Mermaid file (.mmd)")
    parser.add_argument("--text", help="Raw Mermaid source")
    parser.add_argument("--theme", default="default", help="Mermaid theme")
    parser.add_argument("--font-family", default="monospace")


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="diagramlive",
        description="Render Mermaid diagrams to SVG/PNG, copy them to the clipboard, or re-render on change.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--mmdc", default=os.getenv("DIAGRAMLIVE_MMDC", "mmdc"), help="Mermaid CLI executable")

    subparsers = parser.add_subparsers(dest="command")

    render_parser = subparsers.add_parser("render", help="Render a diagram to PNG or SVG")
    _add_source_args(render_parser)
    render_parser.add_argument("--format", choices=EXPORT_FORMATS, default="png")
    render_parser.add_argument("--stdout", action="store_true", help="Write output bytes to stdout")
    render_parser.add_argument("-o", "--output", help="Output path")
    render_parser.add_argument("--scale", type=float, default=None, help="Supersampling factor (default 2)")

    copy_parser = subparsers.add_parser("copy", help="Render a diagram and copy it to the clipboard")
    _add_source_args(copy_parser)

    watch_parser = subparsers.add_parser("watch", help="Re-render a file every time it changes")
    watch_parser.add_argument("input", help="Input Mermaid file (.mmd)")
    watch_parser.add_argument("--theme", default="default", help="Mermaid theme")
    watch_parser.add_argument("--font-family", default="monospace")
    watch_parser.add_argument("--format", choices=EXPORT_FORMATS, default="svg")
    watch_parser.add_argument("-o", "--output", help="Output path (default: input with format suffix)")
    watch_parser.add_argument("--interval", type=float, default=0.2, help="Poll interval in seconds")
    watch_parser.add_argument("--once", action="store_true", help="Exit after the first render")

    templates_parser = subparsers.add_parser("templates", help="List or print bundled example diagrams")
    templates_parser.add_argument("name", nargs="?", help="Template id to print")

    return parser


def _make_compiler(args: argparse.Namespace) -> Compiler:
    options = CompilerOptions(theme=args.theme, font_family=args.font_family)
    return MermaidCliCompiler(options, executable=args.mmdc)


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, None

    if path:
        input_path = Path(path)
        if not input_path.exists():
            raise CliError(
                "E_IO_READ",
                f"input file not found: {input_path}",
                exit_code=2,
                file=str(input_path),
            )
        try:
            return input_path.read_text(encoding="utf-8"), input_path
        except OSError as exc:
            raise CliError(
                "E_IO_READ",
                f"failed to read input file: {input_path}",
                hint=str(exc),
                exit_code=2,
                file=str(input_path),
            )

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe Mermaid source into stdin.",
            exit_code=2,
        )
    return data, None


async def _render_once(source: str, compiler: Compiler, config: PipelineConfig) -> DisplaySlot:
    scheduler = RenderScheduler(compiler, config=config)
    scheduler.submit(source, trigger="programmatic")
    await scheduler.wait_idle()
    if scheduler.display.error is not None:
        raise scheduler.display.error
    return scheduler.display


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, CompileError):
        return CliError(
            exc.code,
            f"diagram failed to compile: {exc}",
            hint=None if exc.fatal else "Check the diagram syntax near the reported line.",
            exit_code=3,
            line=exc.line,
            retryable=not exc.fatal,
        )
    if isinstance(exc, NormalizationError):
        return CliError(
            exc.code,
            str(exc),
            hint="The compiler produced SVG that cannot be embedded safely.",
            exit_code=3,
            retryable=False,
        )
    if isinstance(exc, ExportError):
        return CliError(
            exc.code,
            str(exc),
            hint="Retry, or export as --format svg.",
            exit_code=4,
        )
    if isinstance(exc, DiagramliveError):
        return CliError(exc.code, str(exc), exit_code=1)
    if isinstance(exc, ValueError):
        return CliError("E_ARGS", str(exc), exit_code=2)
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "line": err.line,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_render(args: argparse.Namespace, config: PipelineConfig) -> int:
    if args.stdout and args.output:
        raise CliError(
            "E_ARGS",
            "--stdout and --output are mutually exclusive",
            hint="Choose either --stdout or --output.",
            exit_code=2,
        )
    if args.scale is not None:
        if args.scale <= 0:
            raise CliError(
                "E_ARGS",
                "--scale must be > 0",
                hint="Use a positive scale factor like 1 or 2.",
                exit_code=2,
            )
        config = replace(config, scale=args.scale)

    source, source_path = _read_input(args.input, args.text)
    to_stdout = args.stdout or (source_path is None and not args.output)
    downloads = _StdoutDownloads() if to_stdout else DirectoryDownloads(config.downloads_dir)
    if args.output:
        filename: Optional[str] = args.output
    elif source_path is not None:
        filename = str(source_path)
    else:
        filename = "diagram"

    async def run() -> None:
        display = await _render_once(source, _make_compiler(args), config)
        sink = ExportSink(display, RasterExporter(config), CommandClipboard(), downloads, config)
        report = await sink.export_file(args.format, filename=filename)
        if report.fell_back:
            sys.stderr.write("warning: PNG export failed, wrote SVG instead\n")
        if not to_stdout:
            print(f"Wrote {report.path}")

    asyncio.run(run())
    return 0


def _handle_copy(args: argparse.Namespace, config: PipelineConfig) -> int:
    source, _source_path = _read_input(args.input, args.text)

    async def run() -> CopyOutcome:
        display = await _render_once(source, _make_compiler(args), config)
        downloads = DirectoryDownloads(config.downloads_dir)
        sink = ExportSink(display, RasterExporter(config), CommandClipboard(), downloads, config)
        return await sink.copy_to_clipboard()

    outcome = asyncio.run(run())
    if outcome is CopyOutcome.IMAGE:
        print("Copied diagram to clipboard as image")
    else:
        print("Copied diagram to clipboard as SVG text")
    return 0


def _handle_watch(args: argparse.Namespace, config: PipelineConfig) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError("E_IO_READ", f"input file not found: {input_path}", exit_code=2, file=str(input_path))
    if args.interval <= 0:
        raise CliError("E_ARGS", "--interval must be > 0", exit_code=2)
    output = args.output or str(input_path.with_suffix(f".{args.format}"))

    try:
        return asyncio.run(_watch(args, config, input_path, output))
    except KeyboardInterrupt:
        return 0


async def _watch(args: argparse.Namespace, config: PipelineConfig, input_path: Path, output: str) -> int:
    scheduler = RenderScheduler(_make_compiler(args), config=config)
    sink = ExportSink(
        scheduler.display, RasterExporter(config), CommandClipboard(), DirectoryDownloads(config.downloads_dir), config
    )
    updated = False

    def on_display(_slot: DisplaySlot) -> None:
        nonlocal updated
        updated = True

    scheduler.display.subscribe(on_display)
    last_mtime: Optional[int] = None
    exit_code = 0
    try:
        while True:
            try:
                mtime = input_path.stat().st_mtime_ns
                if mtime != last_mtime:
                    source = input_path.read_text(encoding="utf-8")
                    last_mtime = mtime
                    scheduler.submit(source, trigger="keystroke")
            except FileNotFoundError:
                # Editors that save by rename leave the path missing briefly.
                logger.debug("%s is missing, waiting for it to reappear", input_path)
            seen = last_mtime is not None
            if args.once and seen:
                await scheduler.wait_idle()
            else:
                await asyncio.sleep(args.interval)
            if updated and not scheduler.busy:
                updated = False
                exit_code = await _report_display(scheduler.display, sink, args.format, output, args.error_format)
            if args.once and seen:
                return exit_code
    finally:
        await scheduler.aclose()


async def _report_display(
    display: DisplaySlot, sink: ExportSink, fmt: str, output: str, error_format: str
) -> int:
    if display.error is not None:
        err = _error_from_exception(display.error)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    if display.markup is None:
        return 0
    try:
        report = await sink.export_file(fmt, filename=output)
    except ExportError as exc:
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        return err.exit_code
    print(f"Wrote {report.path}", flush=True)
    return 0


def _handle_templates(args: argparse.Namespace) -> int:
    if args.name:
        try:
            template = get_template(args.name)
        except KeyError:
            raise CliError(
                "E_TEMPLATE",
                f"unknown template: {args.name}",
                hint="Run `diagramlive templates` to list template ids.",
                exit_code=2,
            )
        print(template["code"])
        return 0
    for template in load_templates():
        print(f"{template['id']:<20} {template['category']:<10} {template['description']}")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, copy, watch, templates.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or os.getenv("DIAGRAMLIVE_DEBUG") == "1"
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if debug_enabled else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        config = PipelineConfig.from_env()

        if args.command == "render":
            return _handle_render(args, config)
        if args.command == "copy":
            return _handle_copy(args, config)
        if args.command == "watch":
            return _handle_watch(args, config)
        if args.command == "templates":
            return _handle_templates(args)

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint="Use one of: render, copy, watch, templates.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint="Use subcommands: render, copy, watch, templates.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
