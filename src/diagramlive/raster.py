"""Rasterize normalized SVG to PNG through a data URI decode step."""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple
from urllib.parse import quote, unquote_to_bytes

import cairosvg
from PIL import Image

from .config import PipelineConfig
from .errors import DecodeError, EncodingError
from .models import PNG_MIME, ExportArtifact, VectorMarkup

logger = logging.getLogger(__name__)

SVG_DATA_PREFIX = "data:image/svg+xml"

Decoder = Callable[[str, int, int], Image.Image]


@dataclass(frozen=True)
class EncoderStrategy:
    name: str
    encode: Callable[[str], str]


def percent_data_uri(markup: str) -> str:
    # Same unreserved set as encodeURIComponent; lone surrogates raise.
    return f"{SVG_DATA_PREFIX};charset=utf-8," + quote(markup, safe="!*'()")


def base64_data_uri(markup: str) -> str:
    payload = base64.b64encode(markup.encode("utf-8", "replace")).decode("ascii")
    return f"{SVG_DATA_PREFIX};base64,{payload}"


DEFAULT_ENCODERS: Tuple[EncoderStrategy, ...] = (
    EncoderStrategy("percent", percent_data_uri),
    EncoderStrategy("base64", base64_data_uri),
)


def read_data_uri(uri: str) -> bytes:
    """Return the payload bytes of an SVG data URI."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith(SVG_DATA_PREFIX):
        raise DecodeError("not an SVG data URI")
    if header.split(";")[-1] == "base64":
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise DecodeError(f"invalid base64 payload: {exc}") from exc
    return unquote_to_bytes(payload)


def decode_svg_image(uri: str, width: int, height: int) -> Image.Image:
    """Decode an SVG data URI into an RGBA image of exactly ``width`` x ``height``."""
    svg_bytes = read_data_uri(uri)
    try:
        root = ET.fromstring(svg_bytes)
    except ET.ParseError as exc:
        raise DecodeError(f"SVG payload is not well-formed: {exc}") from exc
    root.set("width", str(width))
    root.set("height", str(height))
    sized = ET.tostring(root, encoding="utf-8")
    try:
        png = cairosvg.svg2png(bytestring=sized)
    except Exception as exc:  # cairosvg surfaces parser and cairo failures alike
        raise DecodeError(f"SVG image failed to load: {exc}") from exc
    return _load_rgba(png)


def _load_rgba(png: bytes) -> Image.Image:
    # Oversized targets trip Pillow's decompression bomb guard.
    try:
        image = Image.open(io.BytesIO(png))
        image.load()
        return image.convert("RGBA")
    except (Image.DecompressionBombError, OSError) as exc:
        raise DecodeError(f"rendered image could not be read: {exc}") from exc


class RasterExporter:
    """Turns VectorMarkup into a PNG artifact at a fixed supersampling factor."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        decoder: Decoder = decode_svg_image,
        encoders: Sequence[EncoderStrategy] = DEFAULT_ENCODERS,
    ) -> None:
        self._config = config or PipelineConfig()
        self._decoder = decoder
        self._encoders = tuple(encoders)

    def target_size(self, markup: VectorMarkup) -> Tuple[int, int]:
        width = max(markup.width, self._config.min_width)
        height = max(markup.height, self._config.min_height)
        scale = self._config.scale
        return int(round(width * scale)), int(round(height * scale))

    async def export(self, markup: VectorMarkup) -> ExportArtifact:
        width, height = self.target_size(markup)
        timeout = self._config.decode_timeout
        encoded = False
        last_error: Optional[Exception] = None

        for strategy in self._encoders:
            try:
                uri = strategy.encode(markup.text)
            except ValueError as exc:
                logger.warning("%s encoding failed, trying next strategy: %s", strategy.name, exc)
                last_error = exc
                continue
            encoded = True
            try:
                image = await asyncio.wait_for(
                    asyncio.to_thread(self._decoder, uri, width, height),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise DecodeError(f"image decode timed out after {timeout:g}s") from None
            except DecodeError as exc:
                logger.warning("%s data URI failed to decode: %s", strategy.name, exc)
                last_error = exc
                continue
            logger.debug("rasterized %dx%d via %s data URI", width, height, strategy.name)
            return ExportArtifact(PNG_MIME, _paint_png(image, width, height))

        if not encoded:
            raise EncodingError("no encoding strategy could build a data URI") from last_error
        raise DecodeError(str(last_error) if last_error else "image decode failed") from last_error


def _paint_png(image: Image.Image, width: int, height: int) -> bytes:
    surface = Image.new("RGB", (width, height), "white")
    if image.size != (width, height):
        image = image.resize((width, height), Image.Resampling.LANCZOS)
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    surface.paste(image, (0, 0), image)
    buf = io.BytesIO()
    surface.save(buf, format="PNG")
    return buf.getvalue()


__all__ = [
    "DEFAULT_ENCODERS",
    "EncoderStrategy",
    "RasterExporter",
    "base64_data_uri",
    "decode_svg_image",
    "percent_data_uri",
    "read_data_uri",
]
