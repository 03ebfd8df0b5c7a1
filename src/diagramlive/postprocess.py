"""Normalize raw compiler SVG into safe, uniformly scaling markup."""
from __future__ import annotations

import math
import re
import xml.etree.ElementTree as ET
from typing import Iterator, List, Optional, Tuple

from .errors import NormalizationError
from .models import VectorMarkup

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", XLINK_NS)

ASPECT_RATIO_POLICY = "xMidYMid meet"

# Containers whose children never paint directly.
_NON_RENDERED = {
    "defs",
    "marker",
    "symbol",
    "clipPath",
    "mask",
    "pattern",
    "linearGradient",
    "radialGradient",
    "filter",
    "style",
    "script",
    "title",
    "desc",
    "metadata",
}

_DROPPED_ELEMENTS = {"script", "iframe", "object", "embed"}
_ANIMATION_ELEMENTS = {"animate", "set", "animateTransform", "animateMotion"}
# Attributes that load or navigate to another document.
_URL_ATTRIBUTES = {"href", "src", "data", "action", "formaction"}

_CSS_IMPORT_RE = re.compile(r"@import\s+[^;]*;?", re.IGNORECASE)
_CSS_URL_RE = re.compile(r"url\(\s*(['\"]?)(.*?)\1\s*\)", re.IGNORECASE)

_NUMBER_RE = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"
_PATH_TOKEN_RE = re.compile(rf"[MmLlHhVvCcSsQqTtAaZz]|{_NUMBER_RE}")
_LENGTH_RE = re.compile(rf"^\s*({_NUMBER_RE})\s*(px)?\s*$")
_FONT_SIZE_RE = re.compile(rf"font-size\s*:\s*({_NUMBER_RE})")

_PATH_ARITY = {"m": 2, "l": 2, "h": 1, "v": 1, "c": 6, "s": 4, "q": 4, "t": 2, "a": 7, "z": 0}

BBox = Tuple[float, float, float, float]
Affine = Tuple[float, float, float, float, float, float]


def normalize(raw_markup: str) -> VectorMarkup:
    """Return embeddable markup for ``raw_markup``.

    The result always has a viewBox, an SVG namespace declaration, the fixed
    ``xMidYMid meet`` aspect policy, and carries no scripts, event handlers or
    references to other documents.
    """
    if not raw_markup or not raw_markup.strip():
        raise NormalizationError("compiler produced empty output")
    try:
        root = ET.fromstring(raw_markup)
    except ET.ParseError as exc:
        raise NormalizationError(f"compiler produced malformed SVG: {exc}") from exc

    if _local_name(root.tag) != "svg":
        raise NormalizationError(f"expected <svg> root element, got <{_local_name(root.tag)}>")

    _ensure_namespace(root)
    _strip_executable_content(root)

    view_box = _parse_view_box(root.get("viewBox"))
    if view_box is None:
        view_box = _view_box_from_dimensions(root) or _view_box_from_geometry(root)
    if view_box is None:
        raise NormalizationError("cannot determine a viewBox: no size attributes and no drawn geometry")
    root.set("viewBox", " ".join(_fmt(v) for v in view_box))
    root.set("preserveAspectRatio", ASPECT_RATIO_POLICY)

    return VectorMarkup(text=ET.tostring(root, encoding="unicode"), view_box=view_box)


def _ensure_namespace(root: ET.Element) -> None:
    for elem in root.iter():
        if isinstance(elem.tag, str) and _namespace_of(elem.tag) is None:
            elem.tag = _qual(SVG_NS, elem.tag)


def _strip_executable_content(root: ET.Element) -> None:
    for parent in list(root.iter()):
        for child in list(parent):
            if isinstance(child.tag, str) and _is_dropped_element(child):
                parent.remove(child)
    for elem in root.iter():
        for key in list(elem.attrib):
            local = _local_name(key).lower()
            value = elem.attrib[key].strip()
            if local.startswith("on") or local == "srcdoc" or _is_script_url(value):
                del elem.attrib[key]
            elif local in _URL_ATTRIBUTES and not value.startswith("#"):
                del elem.attrib[key]
            elif local == "style":
                elem.set(key, _strip_css_references(elem.attrib[key]))
        if isinstance(elem.tag, str) and _local_name(elem.tag) == "style" and elem.text:
            elem.text = _strip_css_references(elem.text)


def _is_dropped_element(elem: ET.Element) -> bool:
    local = _local_name(elem.tag)
    if local in _DROPPED_ELEMENTS:
        return True
    if local in _ANIMATION_ELEMENTS:
        # Animating a link attribute rewrites it after sanitizing.
        target = elem.get("attributeName", "").split(":")[-1].strip().lower()
        if target in _URL_ATTRIBUTES:
            return True
        return any("javascript:" in re.sub(r"\s+", "", value).lower() for value in elem.attrib.values())
    return False


def _is_script_url(value: str) -> bool:
    compact = re.sub(r"\s+", "", value).lower()
    return compact.startswith(("javascript:", "vbscript:"))


def _strip_css_references(css: str) -> str:
    css = _CSS_IMPORT_RE.sub("", css)

    def keep_fragment(match: "re.Match[str]") -> str:
        return match.group(0) if match.group(2).strip().startswith("#") else "none"

    return _CSS_URL_RE.sub(keep_fragment, css)


def _parse_view_box(value: Optional[str]) -> Optional[BBox]:
    if not value:
        return None
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    if len(parts) != 4:
        return None
    try:
        x, y, w, h = (float(p) for p in parts)
    except ValueError:
        return None
    if w <= 0 or h <= 0 or not all(math.isfinite(v) for v in (x, y, w, h)):
        return None
    return (x, y, w, h)


def _view_box_from_dimensions(root: ET.Element) -> Optional[BBox]:
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))
    if width and height and width > 0 and height > 0:
        return (0.0, 0.0, width, height)
    return None


def _view_box_from_geometry(root: ET.Element) -> Optional[BBox]:
    bbox: Optional[BBox] = None
    for points in _walk_geometry(root, _identity_affine()):
        for x, y in points:
            bbox = _merge_bbox(bbox, (x, y, x, y))
    if bbox is None:
        return None
    min_x, min_y, max_x, max_y = bbox
    return (min_x, min_y, max(max_x - min_x, 1.0), max(max_y - min_y, 1.0))


def _walk_geometry(elem: ET.Element, ctm: Affine) -> Iterator[List[Tuple[float, float]]]:
    transform = elem.get("transform")
    if transform:
        ctm = _mul_affine(ctm, _parse_transform_affine(transform))
    local = _local_name(elem.tag) if isinstance(elem.tag, str) else ""
    points = _element_points(elem, local)
    if points:
        yield [_apply_affine(ctm, p) for p in points]
    if local == "foreignObject":
        return
    for child in elem:
        if isinstance(child.tag, str) and _local_name(child.tag) in _NON_RENDERED:
            continue
        yield from _walk_geometry(child, ctm)


def _element_points(elem: ET.Element, local: str) -> List[Tuple[float, float]]:
    def get(name: str) -> float:
        return _parse_length(elem.get(name)) or 0.0

    if local in {"rect", "image", "use", "foreignObject"}:
        x, y, w, h = get("x"), get("y"), get("width"), get("height")
        if local == "use" and not (w and h):
            return []
        return [(x, y), (x + w, y + h)]
    if local == "circle":
        cx, cy, r = get("cx"), get("cy"), get("r")
        return [(cx - r, cy - r), (cx + r, cy + r)]
    if local == "ellipse":
        cx, cy, rx, ry = get("cx"), get("cy"), get("rx"), get("ry")
        return [(cx - rx, cy - ry), (cx + rx, cy + ry)]
    if local == "line":
        return [(get("x1"), get("y1")), (get("x2"), get("y2"))]
    if local in {"polyline", "polygon"}:
        values = [float(v) for v in re.findall(_NUMBER_RE, elem.get("points") or "")]
        return list(zip(values[0::2], values[1::2]))
    if local == "path":
        return _path_points(elem.get("d") or "")
    if local == "text":
        return _text_points(elem)
    return []


def _path_points(d: str) -> List[Tuple[float, float]]:
    tokens = _PATH_TOKEN_RE.findall(d)
    points: List[Tuple[float, float]] = []
    cx = cy = 0.0
    start = (0.0, 0.0)
    cmd = ""
    i = 0
    while i < len(tokens):
        if tokens[i].isalpha():
            cmd = tokens[i]
            i += 1
            if cmd in "Zz":
                cx, cy = start
                continue
        if not cmd:
            break
        arity = _PATH_ARITY[cmd.lower()]
        if arity == 0:
            break
        args = tokens[i : i + arity]
        if len(args) < arity or any(a.isalpha() for a in args):
            break
        values = [float(a) for a in args]
        i += arity
        rel = cmd.islower()
        op = cmd.lower()
        if op == "h":
            cx = cx + values[0] if rel else values[0]
        elif op == "v":
            cy = cy + values[0] if rel else values[0]
        elif op == "a":
            cx, cy = (cx + values[5], cy + values[6]) if rel else (values[5], values[6])
        else:
            for px, py in zip(values[0::2], values[1::2]):
                point = (cx + px, cy + py) if rel else (px, py)
                points.append(point)
            cx, cy = points[-1]
        points.append((cx, cy))
        if op == "m":
            start = (cx, cy)
            # Extra coordinate pairs after a moveto are implicit linetos.
            cmd = "l" if rel else "L"
    return points


def _text_points(elem: ET.Element) -> List[Tuple[float, float]]:
    text = "".join(elem.itertext()).strip()
    if not text:
        return []
    x = _first_coordinate(elem.get("x"))
    y = _first_coordinate(elem.get("y"))
    font_size = _parse_length(elem.get("font-size"))
    if font_size is None:
        match = _FONT_SIZE_RE.search(elem.get("style") or "")
        font_size = float(match.group(1)) if match else 16.0
    width = _heuristic_width(text, font_size)
    anchor = elem.get("text-anchor")
    if anchor == "middle":
        x -= width / 2
    elif anchor == "end":
        x -= width
    return [(x, y - font_size * 0.8), (x + width, y + font_size * 0.2)]


def _first_coordinate(value: Optional[str]) -> float:
    if not value:
        return 0.0
    match = re.match(rf"\s*({_NUMBER_RE})", value)
    return float(match.group(1)) if match else 0.0


def _heuristic_width(text: str, font_size: float) -> float:
    width = 0.0
    for ch in text:
        if ch.isspace():
            width += font_size * 0.33
        elif ch in "il":
            width += font_size * 0.3
        elif ch in "mwMW@#":
            width += font_size * 0.9
        else:
            width += font_size * 0.6
    return width


def _parse_length(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    match = _LENGTH_RE.match(value)
    if match:
        return float(match.group(1))
    return None


def _merge_bbox(current: Optional[BBox], new: Optional[BBox]) -> Optional[BBox]:
    if new is None:
        return current
    if current is None:
        return new
    return (
        min(current[0], new[0]),
        min(current[1], new[1]),
        max(current[2], new[2]),
        max(current[3], new[3]),
    )


def _identity_affine() -> Affine:
    return (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


def _mul_affine(m1: Affine, m2: Affine) -> Affine:
    # Composition m = m1 * m2
    a1, b1, c1, d1, e1, f1 = m1
    a2, b2, c2, d2, e2, f2 = m2
    return (
        a1 * a2 + c1 * b2,
        b1 * a2 + d1 * b2,
        a1 * c2 + c1 * d2,
        b1 * c2 + d1 * d2,
        a1 * e2 + c1 * f2 + e1,
        b1 * e2 + d1 * f2 + f1,
    )


def _apply_affine(m: Affine, p: Tuple[float, float]) -> Tuple[float, float]:
    a, b, c, d, e, f = m
    x, y = p
    return (a * x + c * y + e, b * x + d * y + f)


def _parse_transform_affine(transform: str) -> Affine:
    m = _identity_affine()
    for fn, arg_text in re.findall(r"([a-zA-Z]+)\s*\(([^)]*)\)", transform):
        try:
            values = [float(chunk) for chunk in re.split(r"[,\s]+", arg_text.strip()) if chunk]
        except ValueError:
            continue
        name = fn.lower()
        if name == "matrix" and len(values) == 6:
            t = (values[0], values[1], values[2], values[3], values[4], values[5])
        elif name == "translate" and values:
            t = (1.0, 0.0, 0.0, 1.0, values[0], values[1] if len(values) > 1 else 0.0)
        elif name == "scale" and values:
            sx = values[0]
            sy = values[1] if len(values) > 1 else sx
            t = (sx, 0.0, 0.0, sy, 0.0, 0.0)
        elif name == "rotate" and values:
            angle = math.radians(values[0])
            cos_v = math.cos(angle)
            sin_v = math.sin(angle)
            t = (cos_v, sin_v, -sin_v, cos_v, 0.0, 0.0)
            if len(values) >= 3:
                cx, cy = values[1], values[2]
                t = _mul_affine(_mul_affine((1.0, 0.0, 0.0, 1.0, cx, cy), t), (1.0, 0.0, 0.0, 1.0, -cx, -cy))
        else:
            continue
        m = _mul_affine(m, t)
    return m


def _fmt(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _namespace_of(tag: str) -> Optional[str]:
    if tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return None


def _local_name(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _qual(ns: str, local: str) -> str:
    return f"{{{ns}}}{local}"


__all__ = ["ASPECT_RATIO_POLICY", "SVG_NS", "normalize"]
