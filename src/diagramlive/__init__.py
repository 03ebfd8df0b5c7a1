"""Public API for diagramlive."""
from .compiler import Compiler, Diagnostic, MermaidCliCompiler
from .config import CompilerOptions, PipelineConfig
from .display import DisplaySlot
from .errors import (
    ClipboardUnavailableError,
    CompileError,
    DecodeError,
    DiagramliveError,
    EncodingError,
    ExportError,
    NormalizationError,
    NothingToExportError,
    SinkError,
)
from .models import ExportArtifact, RenderRequest, RenderResult, VectorMarkup
from .postprocess import normalize
from .raster import RasterExporter
from .scheduler import RenderScheduler
from .sink import CommandClipboard, CopyOutcome, DirectoryDownloads, ExportReport, ExportSink

__all__ = [
    "ClipboardUnavailableError",
    "CommandClipboard",
    "CompileError",
    "Compiler",
    "CompilerOptions",
    "CopyOutcome",
    "DecodeError",
    "Diagnostic",
    "DiagramliveError",
    "DirectoryDownloads",
    "DisplaySlot",
    "EncodingError",
    "ExportArtifact",
    "ExportError",
    "ExportReport",
    "ExportSink",
    "MermaidCliCompiler",
    "NormalizationError",
    "NothingToExportError",
    "PipelineConfig",
    "RasterExporter",
    "RenderRequest",
    "RenderResult",
    "RenderScheduler",
    "SinkError",
    "VectorMarkup",
    "normalize",
]
