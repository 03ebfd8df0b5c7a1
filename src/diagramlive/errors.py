"""Error taxonomy for the render-and-export pipeline."""
from __future__ import annotations

from typing import Optional


class DiagramliveError(Exception):
    """Base class carrying a stable code for CLI mapping."""

    code = "E_INTERNAL"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class CompileError(DiagramliveError):
    """Diagram source was rejected by the compiler."""

    code = "E_COMPILE"

    def __init__(self, message: str, *, line: Optional[int] = None, fatal: bool = False) -> None:
        super().__init__(message)
        self.line = line
        self.fatal = fatal


class NormalizationError(DiagramliveError, ValueError):
    """Compiler output could not be turned into embeddable SVG."""

    code = "E_NORMALIZE"


class ExportError(DiagramliveError):
    code = "E_EXPORT"


class DecodeError(ExportError):
    """The SVG data URI could not be decoded into an image in time."""

    code = "E_DECODE"


class EncodingError(ExportError):
    """Every data URI encoder strategy failed."""

    code = "E_ENCODING"


class SinkError(ExportError):
    """Clipboard or download write failed after the artifact was produced."""

    code = "E_SINK"


class ClipboardUnavailableError(SinkError):
    code = "E_CLIPBOARD_UNAVAILABLE"


class NothingToExportError(ExportError):
    code = "E_NOTHING_TO_EXPORT"


__all__ = [
    "ClipboardUnavailableError",
    "CompileError",
    "DecodeError",
    "DiagramliveError",
    "EncodingError",
    "ExportError",
    "NormalizationError",
    "NothingToExportError",
    "SinkError",
]
