"""
raster_agg.py — Accelerated backend on matplotlib's native Agg renderer.

Each surface is its own Figure (no pyplot global state) with one Axes that
spans the whole canvas in pixel coordinates, y pointing down. Draw calls
become artists with increasing zorder, so painter's order is kept across
patches, lines and text.
"""

import hashlib
import io
import re
import tempfile
from pathlib import Path
from typing import List

import matplotlib
matplotlib.use("Agg")
from matplotlib import font_manager
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.lines import Line2D
from matplotlib.patches import PathPatch
from matplotlib.path import Path as MplPath

from errors import EncodingError
from raster import RGBA, Point, RasterBackend, Surface, normalize_format, rotation_degrees

DPI = 100
PX_TO_PT = 72.0 / DPI


class AggFont:
    """A font file registered with matplotlib's font manager."""

    def __init__(self, family: str, path: Path):
        self.family = family
        self.path = path
        self.properties = font_manager.FontProperties(fname=str(path))

    def at_size(self, size_px: float) -> font_manager.FontProperties:
        prop = self.properties.copy()
        prop.set_size(size_px * PX_TO_PT)
        return prop


class AggSurface(Surface):

    def __init__(self, backend: "AggBackend", width: int, height: int):
        super().__init__(backend, width, height)
        self.figure = Figure(figsize=(width / DPI, height / DPI), dpi=DPI)
        self.canvas = FigureCanvasAgg(self.figure)
        self.figure.patch.set_alpha(0.0)
        ax = self.figure.add_axes((0, 0, 1, 1))
        ax.set_xlim(0, width)
        ax.set_ylim(height, 0)
        ax.set_axis_off()
        ax.patch.set_alpha(0.0)
        self.ax = ax
        self._z = 0

    def _next_z(self) -> int:
        self._z += 1
        return self._z

    def _fill_polygons(self, polygons: List[List[Point]], rgba: RGBA):
        vertices, codes = [], []
        for poly in polygons:
            vertices.extend(poly)
            vertices.append(poly[0])
            codes.append(MplPath.MOVETO)
            codes.extend([MplPath.LINETO] * (len(poly) - 1))
            codes.append(MplPath.CLOSEPOLY)
        patch = PathPatch(MplPath(vertices, codes), facecolor=rgba,
                          edgecolor="none", linewidth=0, zorder=self._next_z())
        self.ax.add_patch(patch)

    def _stroke_polyline(self, points: List[Point], closed: bool, rgba: RGBA, width: float):
        pts = list(points) + ([points[0]] if closed else [])
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        self.ax.add_line(Line2D(xs, ys, color=rgba, linewidth=width * PX_TO_PT,
                                solid_capstyle="butt", solid_joinstyle="miter",
                                zorder=self._next_z()))

    def _draw_text(self, text: str, x: float, y: float, rgba: RGBA):
        ox, oy = self._device(x, y)
        self.ax.text(ox, oy, text, color=rgba,
                     fontproperties=self.font.registered.at_size(self.font_size),
                     ha="left", va="baseline",
                     rotation=rotation_degrees(self._state.transform),
                     rotation_mode="anchor", zorder=self._next_z())

    def encode(self, fmt: str = "png") -> bytes:
        fmt = normalize_format(fmt)
        if fmt not in self.backend.encodings:
            raise EncodingError(fmt, "unsupported by the agg backend")
        buf = io.BytesIO()
        try:
            self.figure.savefig(buf, format=fmt, dpi=DPI)
        except (OSError, ValueError, RuntimeError) as exc:
            raise EncodingError(fmt, str(exc)) from exc
        return buf.getvalue()


class AggBackend(RasterBackend):
    name = "agg"
    encodings = ("png", "jpeg")

    def __init__(self):
        super().__init__()
        # registered font files; removed by close() or when the backend is collected
        self._font_tmp = tempfile.TemporaryDirectory(prefix="vpdchart-fonts-")
        self.font_dir = Path(self._font_tmp.name)

    def close(self):
        self._font_tmp.cleanup()

    def create_surface(self, width: int, height: int) -> AggSurface:
        return AggSurface(self, width, height)

    def _register(self, parsed) -> AggFont:
        digest = hashlib.sha1(parsed.data).hexdigest()[:12]
        safe = re.sub(r"[^A-Za-z0-9_-]+", "_", parsed.family)
        path = self.font_dir / f"{safe}-{digest}.ttf"
        if not path.exists():
            path.write_bytes(parsed.data)
        font_manager.fontManager.addfont(str(path))
        return AggFont(parsed.family, path)
