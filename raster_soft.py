"""
raster_soft.py — Pure-software rasterizer for hosts without native graphics.

  * RGBA float buffer (numpy), source-over blending
  * polygons: scanline fill at pixel centres, nonzero winding, no anti-aliasing
  * strokes: one quad per segment plus octagonal joins, filled as one shape
  * text: glyph outlines from fontTools, curves flattened, filled like polygons
  * PNG: hand-built chunks, zlib-compressed scanlines (filter type 0)
"""

import asyncio
import math
import struct
import zlib
from typing import Dict, List

import numpy as np
from fontTools.pens.basePen import BasePen

from errors import EncodingError
from raster import RGBA, Point, RasterBackend, Surface, apply, normalize_format

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
CURVE_STEPS = 6


# ── Glyph outlines ────────────────────────────────────────────────────────────

class _FlattenPen(BasePen):
    """Collects glyph contours as point lists in font units, curves flattened."""

    def __init__(self, glyph_set, steps: int = CURVE_STEPS):
        super().__init__(glyph_set)
        self.steps = steps
        self.contours: List[List[Point]] = []
        self._current: List[Point] = []

    def _flush(self):
        if len(self._current) >= 3:
            self.contours.append(self._current)
        self._current = []

    def _moveTo(self, pt):
        self._flush()
        self._current = [pt]

    def _lineTo(self, pt):
        self._current.append(pt)

    def _qCurveToOne(self, pt1, pt2):
        x0, y0 = self._getCurrentPoint()
        for i in range(1, self.steps + 1):
            t = i / self.steps
            u = 1 - t
            self._current.append((u * u * x0 + 2 * u * t * pt1[0] + t * t * pt2[0],
                                  u * u * y0 + 2 * u * t * pt1[1] + t * t * pt2[1]))

    def _curveToOne(self, pt1, pt2, pt3):
        x0, y0 = self._getCurrentPoint()
        for i in range(1, self.steps + 1):
            t = i / self.steps
            u = 1 - t
            a, b, c, d = u ** 3, 3 * u * u * t, 3 * u * t * t, t ** 3
            self._current.append((a * x0 + b * pt1[0] + c * pt2[0] + d * pt3[0],
                                  a * y0 + b * pt1[1] + c * pt2[1] + d * pt3[1]))

    def _closePath(self):
        self._flush()

    def _endPath(self):
        self._flush()


class SoftFont:
    """Parsed font plus a per-glyph outline cache."""

    def __init__(self, parsed):
        self.family = parsed.family
        self.metrics = parsed.metrics
        self.glyph_set = parsed.ttfont.getGlyphSet()
        self._outlines: Dict[str, List[List[Point]]] = {}

    def outline(self, glyph_name: str) -> List[List[Point]]:
        contours = self._outlines.get(glyph_name)
        if contours is None:
            pen = _FlattenPen(self.glyph_set)
            if glyph_name in self.glyph_set:
                self.glyph_set[glyph_name].draw(pen)
                pen._flush()
            contours = pen.contours
            self._outlines[glyph_name] = contours
        return contours


# ── PNG ───────────────────────────────────────────────────────────────────────

def _chunk(tag: bytes, data: bytes) -> bytes:
    return (struct.pack(">I", len(data)) + tag + data
            + struct.pack(">I", zlib.crc32(tag + data) & 0xFFFFFFFF))


def write_png_rgba(width: int, height: int, rgba: bytes) -> bytes:
    stride = width * 4
    raw = bytearray()
    for row in range(height):
        raw.append(0)
        raw.extend(rgba[row * stride:(row + 1) * stride])
    return (PNG_SIGNATURE
            + _chunk(b"IHDR", struct.pack(">IIBBBBB", width, height, 8, 6, 0, 0, 0))
            + _chunk(b"IDAT", zlib.compress(bytes(raw), 9))
            + _chunk(b"IEND", b""))


# ── Geometry helpers ──────────────────────────────────────────────────────────

def _signed_area(points: List[Point]) -> float:
    s = 0.0
    n = len(points)
    for i in range(n):
        x0, y0 = points[i]
        x1, y1 = points[(i + 1) % n]
        s += x0 * y1 - x1 * y0
    return s / 2


def _oriented(points: List[Point]) -> List[Point]:
    """Same winding for every stroke piece, so overlaps union under nonzero."""
    return points if _signed_area(points) >= 0 else points[::-1]


def _join(cx: float, cy: float, r: float) -> List[Point]:
    return [(cx + r * math.cos(k * math.pi / 4), cy + r * math.sin(k * math.pi / 4))
            for k in range(8)]


# ── Surface ───────────────────────────────────────────────────────────────────

class SoftwareSurface(Surface):

    def __init__(self, backend: "SoftwareBackend", width: int, height: int):
        super().__init__(backend, width, height)
        self.pixels = np.zeros((height, width, 4), dtype=np.float32)   # straight alpha, 0–1

    def _coverage(self, polygons: List[List[Point]]) -> np.ndarray:
        edges = []
        for poly in polygons:
            pts = np.asarray(poly, dtype=float)
            if len(pts) < 3:
                continue
            edges.append(np.hstack([pts, np.roll(pts, -1, axis=0)]))
        mask = np.zeros((self.height, self.width), dtype=bool)
        if not edges:
            return mask

        e = np.vstack(edges)
        e = e[e[:, 1] != e[:, 3]]               # horizontal edges never cross a scanline
        if len(e) == 0:
            return mask
        x0, y0, x1, y1 = e.T
        direction = np.where(y1 > y0, 1, -1)
        ymin = np.minimum(y0, y1)
        ymax = np.maximum(y0, y1)
        slope = (x1 - x0) / (y1 - y0)

        first = max(0, int(math.floor(ymin.min())))
        last = min(self.height, int(math.ceil(ymax.max())))
        for row in range(first, last):
            yc = row + 0.5
            active = (ymin <= yc) & (yc < ymax)
            if not active.any():
                continue
            xs = x0[active] + (yc - y0[active]) * slope[active]
            order = np.argsort(xs, kind="stable")
            xs = xs[order]
            winding = np.cumsum(direction[active][order])
            for i in np.nonzero(winding[:-1] != 0)[0]:
                c0 = max(0, int(math.ceil(xs[i] - 0.5)))
                c1 = min(self.width, int(math.ceil(xs[i + 1] - 0.5)))
                if c1 > c0:
                    mask[row, c0:c1] = True
        return mask

    def _blend(self, mask: np.ndarray, rgba: RGBA):
        if not mask.any():
            return
        r, g, b, sa = rgba
        dst = self.pixels[mask]
        da = dst[:, 3]
        out_a = sa + da * (1 - sa)
        safe = np.where(out_a > 0, out_a, 1.0)
        src = np.array([r, g, b], dtype=np.float32)
        dst[:, :3] = (src * sa + dst[:, :3] * (da * (1 - sa))[:, None]) / safe[:, None]
        dst[:, 3] = out_a
        self.pixels[mask] = dst

    # ── backend hooks ────────────────────────────────────────────────────
    def _fill_polygons(self, polygons: List[List[Point]], rgba: RGBA):
        self._blend(self._coverage(polygons), rgba)

    def _stroke_polyline(self, points: List[Point], closed: bool, rgba: RGBA, width: float):
        pts = list(points) + ([points[0]] if closed else [])
        half = max(width, 1.0) / 2
        pieces = []
        for (ax, ay), (bx, by) in zip(pts, pts[1:]):
            length = math.hypot(bx - ax, by - ay)
            if length == 0:
                continue
            nx, ny = -(by - ay) / length * half, (bx - ax) / length * half
            pieces.append(_oriented([(ax + nx, ay + ny), (bx + nx, by + ny),
                                     (bx - nx, by - ny), (ax - nx, ay - ny)]))
        if half > 0.75:
            joints = pts[1:-1] if not closed else pts[:-1]
            pieces.extend(_oriented(_join(x, y, half)) for x, y in joints)
        if pieces:
            self._blend(self._coverage(pieces), rgba)

    def _draw_text(self, text: str, x: float, y: float, rgba: RGBA):
        font = self.font.registered
        metrics = font.metrics
        scale = self.font_size / metrics.units_per_em
        m = self._state.transform
        contours = []
        pen_x = 0.0
        for ch in text:
            glyph = metrics.glyph_name(ch)
            for contour in font.outline(glyph):
                contours.append([apply(m, x + (pen_x + gx) * scale, y - gy * scale)
                                 for gx, gy in contour])
            pen_x += metrics.advance(glyph)
        if contours:
            self._blend(self._coverage(contours), rgba)

    def to_rgba_bytes(self) -> bytes:
        return (np.clip(self.pixels, 0, 1) * 255 + 0.5).astype(np.uint8).tobytes()

    async def encode(self, fmt: str = "png") -> bytes:
        fmt = normalize_format(fmt)
        if fmt not in self.backend.encodings:
            raise EncodingError(fmt, "the software backend only writes PNG")
        try:
            return await asyncio.to_thread(
                write_png_rgba, self.width, self.height, self.to_rgba_bytes())
        except (zlib.error, struct.error, ValueError) as exc:
            raise EncodingError(fmt, str(exc)) from exc


class SoftwareBackend(RasterBackend):
    name = "software"
    encodings = ("png",)

    def create_surface(self, width: int, height: int) -> SoftwareSurface:
        return SoftwareSurface(self, width, height)

    def _register(self, parsed) -> SoftFont:
        return SoftFont(parsed)
