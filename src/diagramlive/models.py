"""Value types passed between pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .errors import CompileError

DiagramSource = str

PNG_MIME = "image/png"
SVG_MIME = "image/svg+xml"


@dataclass(frozen=True)
class RenderRequest:
    generation: int
    source: DiagramSource
    submitted_at: float


@dataclass(frozen=True)
class VectorMarkup:
    """Normalized SVG text plus its intrinsic coordinate frame."""

    text: str
    view_box: Tuple[float, float, float, float]

    @property
    def width(self) -> float:
        return self.view_box[2]

    @property
    def height(self) -> float:
        return self.view_box[3]

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class RenderResult:
    generation: int
    outcome: Union[str, CompileError]

    @property
    def ok(self) -> bool:
        return not isinstance(self.outcome, CompileError)

    @property
    def error(self) -> Optional[CompileError]:
        return self.outcome if isinstance(self.outcome, CompileError) else None


@dataclass(frozen=True)
class ExportArtifact:
    mime_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return "png" if self.mime_type == PNG_MIME else "svg"

    @classmethod
    def from_markup(cls, markup: VectorMarkup) -> "ExportArtifact":
        return cls(SVG_MIME, markup.text.encode("utf-8"))


__all__ = [
    "DiagramSource",
    "ExportArtifact",
    "PNG_MIME",
    "RenderRequest",
    "RenderResult",
    "SVG_MIME",
    "VectorMarkup",
]
