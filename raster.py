"""
raster.py — Immediate-mode drawing contract shared by both raster backends.

A RasterBackend hands out Surfaces and keeps a font table. A Surface is a
small canvas-style state machine: colours, line width, text alignment, font,
a save/restore stack and a 2D affine transform. Paths are flattened to point
lists here, in device pixels, so a concrete backend only has to implement:

    _fill_polygons(polygons, rgba)          nonzero winding
    _stroke_polyline(points, closed, rgba, width)
    _draw_text(text, x, y, rgba)            baseline-left at (x, y), user space
    encode(fmt)                             bytes, or an awaitable of bytes

Backends:
    agg       matplotlib's Agg renderer (native, anti-aliased)
    software  numpy scanline rasterizer + zlib PNG writer (no native graphics)
"""

import importlib.util
import math
import sys
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Awaitable, List, Optional, Sequence, Tuple, Union

import structlog

from config import BackendChoice

log = structlog.get_logger("vpdchart.raster")

RGBA = Tuple[float, float, float, float]
Color = Union[str, Sequence[float]]
Point = Tuple[float, float]
Matrix = Tuple[float, float, float, float, float, float]    # a b c d e f

IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)
TEXT_ALIGNS = ("left", "center", "right")
SANDBOX_PLATFORMS = ("emscripten", "wasi")


# ── Colours ───────────────────────────────────────────────────────────────────

def parse_color(color: Color) -> RGBA:
    """'#RGB', '#RRGGBB', '#RRGGBBAA' or a 3/4-tuple of 0–1 floats → RGBA floats."""
    if isinstance(color, str):
        h = color.strip().lstrip("#")
        if len(h) == 3:
            h = "".join(c * 2 for c in h)
        if len(h) not in (6, 8):
            raise ValueError(f"Unsupported colour token: {color!r}")
        vals = [int(h[i:i + 2], 16) / 255 for i in range(0, len(h), 2)]
        if len(vals) == 3:
            vals.append(1.0)
        return tuple(vals)
    vals = [float(v) for v in color]
    if len(vals) == 3:
        vals.append(1.0)
    if len(vals) != 4:
        raise ValueError(f"Unsupported colour: {color!r}")
    return tuple(vals)


# ── Affine helpers ────────────────────────────────────────────────────────────

def multiply(m: Matrix, n: Matrix) -> Matrix:
    """m ∘ n: apply n first, then m."""
    a, b, c, d, e, f = m
    a2, b2, c2, d2, e2, f2 = n
    return (a * a2 + c * b2,
            b * a2 + d * b2,
            a * c2 + c * d2,
            b * c2 + d * d2,
            a * e2 + c * f2 + e,
            b * e2 + d * f2 + f)


def apply(m: Matrix, x: float, y: float) -> Point:
    a, b, c, d, e, f = m
    return (a * x + c * y + e, b * x + d * y + f)


def scale_factor(m: Matrix) -> float:
    a, b, c, d, _, _ = m
    return math.sqrt(abs(a * d - b * c))


def rotation_degrees(m: Matrix) -> float:
    """Counter-clockwise on-screen angle of the transformed x axis."""
    a, b = m[0], m[1]
    return math.degrees(math.atan2(-b, a))


# ── Surface ───────────────────────────────────────────────────────────────────

@dataclass
class _State:
    fill: RGBA = (0.0, 0.0, 0.0, 1.0)
    stroke: RGBA = (0.0, 0.0, 0.0, 1.0)
    line_width: float = 1.0
    text_align: str = "left"
    font: Optional[object] = None       # fonts.FontHandle
    font_size: float = 10.0             # px
    transform: Matrix = IDENTITY


class Surface(ABC):
    """One render's drawing target. Never shared between calls."""

    def __init__(self, backend: "RasterBackend", width: int, height: int):
        self.backend = backend
        self.width = width
        self.height = height
        self._state = _State()
        self._stack: List[_State] = []
        self._subpaths: List[List[Point]] = []
        self._closed: List[bool] = []

    # ── state ────────────────────────────────────────────────────────────
    @property
    def fill_style(self) -> RGBA:
        return self._state.fill

    @fill_style.setter
    def fill_style(self, color: Color):
        self._state.fill = parse_color(color)

    @property
    def stroke_style(self) -> RGBA:
        return self._state.stroke

    @stroke_style.setter
    def stroke_style(self, color: Color):
        self._state.stroke = parse_color(color)

    @property
    def line_width(self) -> float:
        return self._state.line_width

    @line_width.setter
    def line_width(self, width: float):
        self._state.line_width = float(width)

    @property
    def text_align(self) -> str:
        return self._state.text_align

    @text_align.setter
    def text_align(self, align: str):
        if align not in TEXT_ALIGNS:
            raise ValueError(f"text_align must be one of {TEXT_ALIGNS}, got {align!r}")
        self._state.text_align = align

    @property
    def font(self):
        return self._state.font

    @property
    def font_size(self) -> float:
        return self._state.font_size

    def set_font(self, handle, size_px: float):
        self._state.font = handle
        self._state.font_size = float(size_px)

    def save(self):
        self._stack.append(replace(self._state))

    def restore(self):
        if self._stack:
            self._state = self._stack.pop()

    def translate(self, tx: float, ty: float):
        self._state.transform = multiply(self._state.transform, (1, 0, 0, 1, tx, ty))

    def rotate(self, radians: float):
        c, s = math.cos(radians), math.sin(radians)
        self._state.transform = multiply(self._state.transform, (c, s, -s, c, 0, 0))

    def _device(self, x: float, y: float) -> Point:
        return apply(self._state.transform, x, y)

    # ── paths ────────────────────────────────────────────────────────────
    def begin_path(self):
        self._subpaths = []
        self._closed = []

    def move_to(self, x: float, y: float):
        self._subpaths.append([self._device(x, y)])
        self._closed.append(False)

    def line_to(self, x: float, y: float):
        if not self._subpaths:
            self.move_to(x, y)
            return
        self._subpaths[-1].append(self._device(x, y))

    def close_path(self):
        if self._subpaths:
            self._closed[-1] = True

    def arc(self, cx: float, cy: float, radius: float,
            start: float, end: float, anticlockwise: bool = False):
        """Circular arc flattened to segments; joins the current subpath like a canvas."""
        sweep = end - start
        if anticlockwise:
            if sweep > 0:
                sweep = sweep - 2 * math.pi * math.ceil(sweep / (2 * math.pi))
            sweep = max(sweep, -2 * math.pi)
        else:
            if sweep < 0:
                sweep = sweep + 2 * math.pi * math.ceil(-sweep / (2 * math.pi))
            sweep = min(sweep, 2 * math.pi)
        pixel_radius = radius * scale_factor(self._state.transform)
        steps = max(12, int(math.ceil(abs(sweep) * max(pixel_radius, 1.0) / 2)))
        for i in range(steps + 1):
            theta = start + sweep * i / steps
            x = cx + radius * math.cos(theta)
            y = cy + radius * math.sin(theta)
            if i == 0 and not self._subpaths:
                self.move_to(x, y)
            else:
                self.line_to(x, y)

    def polygon(self, points: Sequence[Point]):
        """Closed subpath through an ordered point list."""
        pts = list(points)
        if not pts:
            return
        self.move_to(*pts[0])
        for x, y in pts[1:]:
            self.line_to(x, y)
        self.close_path()

    def fill(self):
        polys = [p for p in self._subpaths if len(p) >= 3]
        if polys:
            self._fill_polygons(polys, self._state.fill)

    def stroke(self):
        width = self._state.line_width * scale_factor(self._state.transform)
        for pts, closed in zip(self._subpaths, self._closed):
            if len(pts) >= 2:
                self._stroke_polyline(pts, closed, self._state.stroke, width)

    # ── rectangles ───────────────────────────────────────────────────────
    def _rect_points(self, x, y, w, h) -> List[Point]:
        return [self._device(x, y), self._device(x + w, y),
                self._device(x + w, y + h), self._device(x, y + h)]

    def fill_rect(self, x: float, y: float, w: float, h: float):
        self._fill_polygons([self._rect_points(x, y, w, h)], self._state.fill)

    def stroke_rect(self, x: float, y: float, w: float, h: float):
        width = self._state.line_width * scale_factor(self._state.transform)
        self._stroke_polyline(self._rect_points(x, y, w, h), True, self._state.stroke, width)

    # ── text ─────────────────────────────────────────────────────────────
    def measure_text(self, text: str) -> float:
        handle = self._state.font
        if handle is None:
            return 0.0
        return handle.metrics.text_width(text, self._state.font_size)

    def fill_text(self, text: str, x: float, y: float):
        """Baseline-anchored text in the current fill colour, font and alignment."""
        if self._state.font is None:
            log.debug("text_skipped_no_font", text=text)
            return
        width = self.measure_text(text)
        if self._state.text_align == "center":
            x -= width / 2
        elif self._state.text_align == "right":
            x -= width
        self._draw_text(text, x, y, self._state.fill)

    # ── backend hooks ────────────────────────────────────────────────────
    @abstractmethod
    def _fill_polygons(self, polygons: List[List[Point]], rgba: RGBA):
        ...

    @abstractmethod
    def _stroke_polyline(self, points: List[Point], closed: bool, rgba: RGBA, width: float):
        ...

    @abstractmethod
    def _draw_text(self, text: str, x: float, y: float, rgba: RGBA):
        """x, y are user-space; the current transform still applies."""

    @abstractmethod
    def encode(self, fmt: str = "png") -> Union[bytes, Awaitable[bytes]]:
        ...


# ── Backend ───────────────────────────────────────────────────────────────────

class RasterBackend(ABC):
    name = "abstract"
    encodings: Tuple[str, ...] = ("png",)

    def __init__(self):
        self.fonts: "weakref.WeakValueDictionary[str, object]" = weakref.WeakValueDictionary()

    @abstractmethod
    def create_surface(self, width: int, height: int) -> Surface:
        ...

    @abstractmethod
    def _register(self, parsed) -> object:
        """Backend-specific registration of a fonts.ParsedFont."""

    def register_font(self, parsed) -> object:
        registered = self._register(parsed)
        self.fonts[parsed.family] = registered
        log.info("font_registered", backend=self.name, family=parsed.family)
        return registered

    def supports(self, fmt: str) -> bool:
        return normalize_format(fmt) in self.encodings


def normalize_format(fmt: str) -> str:
    f = (fmt or "png").lower()
    if f.startswith("image/"):
        f = f[len("image/"):]
    return "jpeg" if f == "jpg" else f


def native_graphics_available() -> bool:
    """True when matplotlib's native Agg renderer can be used on this host."""
    if sys.platform in SANDBOX_PLATFORMS:
        return False
    return importlib.util.find_spec("matplotlib") is not None


def select_backend(preference: Union[str, BackendChoice] = BackendChoice.auto) -> RasterBackend:
    """Pick the raster strategy once, at configuration time."""
    choice = BackendChoice(preference)
    if choice is BackendChoice.auto:
        choice = BackendChoice.agg if native_graphics_available() else BackendChoice.software

    if choice is BackendChoice.agg:
        from raster_agg import AggBackend
        backend: RasterBackend = AggBackend()
    else:
        from raster_soft import SoftwareBackend
        backend = SoftwareBackend()

    log.info("raster_backend_selected", backend=backend.name, preference=getattr(preference, "value", preference))
    return backend
