"""Deliver rendered diagrams to the clipboard or to a downloaded file."""
from __future__ import annotations

import asyncio
import enum
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence, Tuple

from .config import PipelineConfig
from .display import DisplaySlot
from .errors import (
    ClipboardUnavailableError,
    DecodeError,
    EncodingError,
    NothingToExportError,
    SinkError,
)
from .models import ExportArtifact, VectorMarkup
from .raster import RasterExporter

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("png", "svg")


class CopyOutcome(enum.Enum):
    IMAGE = "image"
    TEXT = "text"


@dataclass(frozen=True)
class ExportReport:
    format: str
    path: Path
    fell_back: bool = False


class Clipboard(Protocol):
    def supports_image(self) -> bool: ...

    def write_image(self, data: bytes) -> None: ...

    def write_text(self, text: str) -> None: ...


class Downloads(Protocol):
    def save(self, filename: str, data: bytes, mime_type: str) -> Path: ...


class CommandClipboard:
    """System clipboard through the platform's command-line tools."""

    TEXT_COMMANDS: Tuple[Tuple[str, ...], ...] = (
        ("wl-copy",),
        ("xclip", "-selection", "clipboard"),
        ("xsel", "--clipboard", "--input"),
        ("pbcopy",),
    )
    IMAGE_COMMANDS: Tuple[Tuple[str, ...], ...] = (
        ("wl-copy", "--type", "image/png"),
        ("xclip", "-selection", "clipboard", "-t", "image/png"),
    )

    def __init__(
        self,
        *,
        which: Callable[[str], Optional[str]] = shutil.which,
        runner: Callable[..., object] = subprocess.run,
        timeout: float = 10.0,
    ) -> None:
        self._which = which
        self._runner = runner
        self._timeout = timeout

    def supports_image(self) -> bool:
        return self._resolve(self.IMAGE_COMMANDS) is not None

    def write_image(self, data: bytes) -> None:
        command = self._resolve(self.IMAGE_COMMANDS)
        if command is None:
            raise ClipboardUnavailableError("no clipboard tool that accepts images (install wl-clipboard or xclip)")
        self._run(command, data)

    def write_text(self, text: str) -> None:
        command = self._resolve(self.TEXT_COMMANDS)
        if command is None:
            raise ClipboardUnavailableError("no clipboard tool found (install wl-clipboard, xclip, xsel or pbcopy)")
        self._run(command, text.encode("utf-8"))

    def _resolve(self, commands: Sequence[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
        for command in commands:
            executable = self._which(command[0])
            if executable:
                return (executable, *command[1:])
        return None

    def _run(self, command: Tuple[str, ...], payload: bytes) -> None:
        # xclip keeps serving the selection; inherited pipes would block run().
        try:
            self._runner(
                list(command),
                input=payload,
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self._timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SinkError(f"clipboard write failed: {exc}") from exc


class DirectoryDownloads:
    """Saves downloads into a directory, the way a browser download would."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def save(self, filename: str, data: bytes, mime_type: str) -> Path:
        target = self.directory / filename
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise SinkError(f"failed to write {target}: {exc}") from exc
        logger.info("saved %s (%s, %d bytes)", target, mime_type, len(data))
        return target


class ExportSink:
    """Copy or export whatever the display slot currently shows.

    PNG is attempted first; a raster failure falls back to the SVG markup.
    Each call makes one delivery besides that fallback and never retries.
    """

    def __init__(
        self,
        display: DisplaySlot,
        exporter: RasterExporter,
        clipboard: Clipboard,
        downloads: Downloads,
        config: Optional[PipelineConfig] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._display = display
        self._exporter = exporter
        self._clipboard = clipboard
        self._downloads = downloads
        self._config = config or PipelineConfig()
        self._clock = clock

    async def copy_to_clipboard(self) -> CopyOutcome:
        markup = self._current_markup()
        if self._clipboard.supports_image():
            try:
                artifact = await self._exporter.export(markup)
                await asyncio.to_thread(self._clipboard.write_image, artifact.data)
                return CopyOutcome.IMAGE
            except (DecodeError, EncodingError, SinkError) as exc:
                logger.warning("copying as image failed, copying SVG text instead: %s", exc)
        else:
            logger.info("clipboard cannot take images, copying SVG text")
        await asyncio.to_thread(self._clipboard.write_text, markup.text)
        return CopyOutcome.TEXT

    async def export_file(self, fmt: str = "png", filename: Optional[str] = None) -> ExportReport:
        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"unsupported export format: {fmt!r}")
        markup = self._current_markup()

        fell_back = False
        if fmt == "png":
            try:
                artifact = await self._exporter.export(markup)
            except (DecodeError, EncodingError) as exc:
                logger.warning("PNG export failed, downloading SVG instead: %s", exc)
                artifact = ExportArtifact.from_markup(markup)
                fell_back = True
        else:
            artifact = ExportArtifact.from_markup(markup)

        name = self._filename(artifact.extension, filename)
        path = await asyncio.to_thread(self._downloads.save, name, artifact.data, artifact.mime_type)
        return ExportReport(artifact.extension, path, fell_back)

    def _current_markup(self) -> VectorMarkup:
        markup = self._display.markup
        if markup is None:
            raise NothingToExportError("no diagram content to export")
        return markup

    def _filename(self, extension: str, requested: Optional[str]) -> str:
        if requested:
            return str(Path(requested).with_suffix(f".{extension}"))
        stamp = int(self._clock() * 1000)
        return f"{self._config.filename_prefix}-{stamp}.{extension}"


__all__ = [
    "Clipboard",
    "CommandClipboard",
    "CopyOutcome",
    "DirectoryDownloads",
    "Downloads",
    "EXPORT_FORMATS",
    "ExportReport",
    "ExportSink",
]
