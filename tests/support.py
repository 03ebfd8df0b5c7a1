"""Fakes shared by the test modules."""
from __future__ import annotations

import asyncio
import sys
import zlib
from pathlib import Path
from typing import Dict, List, Optional, Tuple

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from diagramlive.compiler import Diagnostic  # noqa: E402
from diagramlive.config import CompilerOptions, PipelineConfig  # noqa: E402
from diagramlive.errors import SinkError  # noqa: E402

FAST_CONFIG = PipelineConfig(debounce={"keystroke": 0.02, "preview": 0.02, "programmatic": 0.0})

SVG_NS = "http://www.w3.org/2000/svg"


def marker(source: str) -> str:
    return f"src-{zlib.crc32(source.encode('utf-8')):08x}"


def raw_svg(source: str, width: int = 400, height: int = 300) -> str:
    # Mimics compiler output that omits the viewBox.
    return (
        f'<svg xmlns="{SVG_NS}" width="{width}" height="{height}">'
        f'<g id="{marker(source)}"><rect x="150" y="100" width="100" height="100" fill="#0000ff"/></g>'
        "</svg>"
    )


def png_size(blob: bytes) -> Tuple[int, int]:
    # PNG IHDR width/height are big-endian u32 at fixed offsets.
    if len(blob) < 24 or blob[:8] != b"\x89PNG\r\n\x1a\n":
        raise AssertionError("not a PNG payload")
    return int.from_bytes(blob[16:20], "big"), int.from_bytes(blob[20:24], "big")


class FakeCompiler:
    """Compiles anything not ending in a dangling edge, after an optional delay."""

    def __init__(self, delays: Optional[Dict[str, float]] = None) -> None:
        self.delays = dict(delays or {})
        self.outputs: Dict[str, str] = {}
        self.validate_error: Optional[Exception] = None
        self.compile_error: Optional[Exception] = None
        self.diagnostic: Optional[Diagnostic] = None
        self.validated: List[str] = []
        self.compiled: List[Tuple[str, str]] = []
        self.options: Optional[CompilerOptions] = None

    def configure(self, options: CompilerOptions) -> None:
        self.options = options

    async def validate(self, source: str) -> Optional[Diagnostic]:
        self.validated.append(source)
        if self.validate_error is not None:
            raise self.validate_error
        if self.diagnostic is not None:
            return self.diagnostic
        if source.rstrip().endswith("--"):
            return Diagnostic("Parse error on line 2: expecting node after '--'", line=2)
        return None

    async def compile(self, diagram_id: str, source: str) -> str:
        self.compiled.append((diagram_id, source))
        await asyncio.sleep(self.delays.get(source, 0.0))
        if self.compile_error is not None:
            raise self.compile_error
        return self.outputs.get(source) or raw_svg(source)


class FakeClipboard:
    def __init__(self, *, image: bool = True, fail_image: bool = False, fail_text: bool = False) -> None:
        self.image = image
        self.fail_image = fail_image
        self.fail_text = fail_text
        self.images: List[bytes] = []
        self.texts: List[str] = []

    def supports_image(self) -> bool:
        return self.image

    def write_image(self, data: bytes) -> None:
        if self.fail_image:
            raise SinkError("image write rejected")
        self.images.append(data)

    def write_text(self, text: str) -> None:
        if self.fail_text:
            raise SinkError("text write rejected")
        self.texts.append(text)
