"""
chart_png.py — VPD chart matching the service's fixed visual style.

Layout (600 × 400 px, margins top 40 / right 30 / bottom 60 / left 60):
  - temp-primary:      X = air temperature 15–35 °C, Y = VPD 0–2 kPa
  - humidity-primary:  X = relative humidity 0–100 %, Y = air temperature 15–35 °C
  - Stage zones filled under the grid, labels right-aligned at the plot edge
  - Black L-shaped axes, tick labels, rotated Y title, chart title
  - Red ring marker + caption for the current reading (only when on-chart)

render() is a coroutine: it waits for the default font (and a per-request
font override, if any) before touching the surface, and awaits encoding
because the software backend encodes off-loop.
"""

import asyncio
import base64
import inspect
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Union

import structlog

from chart_axes import AxisLayout, AxisOrientation, ChartFrame, layout_for
from config import Settings, get_settings
from crops import CropProfile, stage_status
from errors import EncodingError
from fonts import FontCache, FontHandle, FontReadiness, make_fetcher
from raster import RasterBackend, Surface, normalize_format, select_backend
from structured_logging import configure_structured_logging
from vpd import DeficitReading, derive_deficit, humidity_for_deficit
from zones import REFERENCE_TEMP, ZONE_SAMPLES, ZonePolygon, point_in_polygon, trace_profile_zones

log = structlog.get_logger("vpdchart.chart")

# ── Colours ──────────────────────────────────────────────────────────────────
C = {
    "background":  "#FFFFFF",
    "grid":        "#E0E0E0",
    "axis":        "#000000",
    "text":        "#000000",
    "marker":      "#FF0000",
    "marker_core": "#FFFFFF",
}

# ── Font sizes [px] ──────────────────────────────────────────────────────────
SIZE = {
    "zone_label":     12,
    "zone_label_ctx": 11,
    "tick":           12,
    "axis_title":     14,
    "title":          16,
    "caption":        12,
}


@dataclass(frozen=True)
class ChartRequest:
    """One validated render request. Exactly one VPD derivation path is used."""
    air_temp: float
    profile: CropProfile
    humidity: Optional[float] = None
    leaf_temp: Optional[float] = None
    deficit: Optional[float] = None
    stage_key: Optional[str] = None
    font_override: Union[None, str, FontHandle] = None   # handle, bundled:<name> or URL
    font_family: Optional[str] = None                     # family-name override for the font
    orientation: AxisOrientation = AxisOrientation.TEMP_PRIMARY
    image_format: str = "png"


@dataclass(frozen=True)
class RenderedChart:
    image_bytes: bytes
    encoding_format: str
    reading: Optional[DeficitReading] = None
    status: str = "unknown"

    def as_base64(self) -> str:
        return base64.b64encode(self.image_bytes).decode("ascii")


class ChartComposer:
    """Turns a ChartRequest into encoded chart bytes on one raster backend."""

    def __init__(self, backend: RasterBackend, fonts: FontCache, readiness: FontReadiness,
                 samples: int = ZONE_SAMPLES, reference_temp: float = REFERENCE_TEMP,
                 frame: ChartFrame = ChartFrame()):
        self.backend = backend
        self.fonts = fonts
        self.readiness = readiness
        self.samples = samples
        self.reference_temp = reference_temp
        self.frame = frame

    def start(self):
        """Kick off default-font loading; call once from a running event loop."""
        return self.readiness.start()

    def compute_deficit(self, request: ChartRequest) -> DeficitReading:
        return derive_deficit(request.air_temp, request.humidity,
                              request.leaf_temp, request.deficit)

    async def render(self, request: ChartRequest) -> RenderedChart:
        started = time.perf_counter()
        reading = self.compute_deficit(request)
        if request.stage_key:
            request.profile.stage(request.stage_key)    # UnknownStage before any work

        fmt = normalize_format(request.image_format)
        if not self.backend.supports(fmt):
            raise EncodingError(fmt, f"unsupported by the {self.backend.name} backend")

        default_font = await self.readiness.wait()
        font = await self._request_font(request) or default_font

        layout = layout_for(request.orientation, self.frame)
        surface = self.backend.create_surface(self.frame.width, self.frame.height)
        zones = self._draw(surface, layout, request, reading, font)

        encoded = surface.encode(fmt)
        if inspect.isawaitable(encoded):
            encoded = await encoded

        status = stage_status(reading.value, request.profile, request.stage_key)
        log.info(
            "chart_rendered",
            backend=self.backend.name,
            crop=request.profile.name,
            stage=request.stage_key,
            orientation=layout.orientation.value,
            vpd=round(reading.value, 3),
            method=reading.method,
            status=status,
            zones=[z.stage_key for z in zones],
            font=font.family if font else None,
            bytes=len(encoded),
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        )
        return RenderedChart(encoded, fmt, reading, status)

    async def _request_font(self, request: ChartRequest) -> Optional[FontHandle]:
        override = request.font_override
        if override is None or isinstance(override, FontHandle):
            return override
        # explicit override: a load failure is fatal to this call
        return await self.fonts.resolve(override, request.font_family)

    # ── drawing ──────────────────────────────────────────────────────────────
    def _draw(self, s: Surface, layout: AxisLayout, request: ChartRequest,
              reading: DeficitReading, font: Optional[FontHandle]) -> List[ZonePolygon]:
        f = self.frame
        s.fill_style = C["background"]
        s.fill_rect(0, 0, f.width, f.height)

        zones = list(trace_profile_zones(request.profile, request.stage_key, layout,
                                         samples=self.samples,
                                         reference_temp=self.reference_temp))
        for zone in zones:
            self._draw_zone(s, zone, font)

        self._draw_grid(s, layout)
        self._draw_axes(s, layout, font)
        self._draw_title(s, request, font)
        self._draw_marker(s, layout, request, reading, font, zones)
        return zones

    def _draw_zone(self, s: Surface, zone: ZonePolygon, font):
        f = self.frame
        s.save()
        s.begin_path()
        s.polygon(zone.points)
        s.fill_style = zone.fill_color
        s.fill()
        s.restore()

        s.fill_style = zone.color
        s.set_font(font, SIZE["zone_label"] if zone.emphasized else SIZE["zone_label_ctx"])
        s.text_align = "right"
        s.fill_text(zone.label, f.width - f.margin_right - 5, zone.label_anchor[1] + 4)

    def _draw_grid(self, s: Surface, layout: AxisLayout):
        f = self.frame
        s.stroke_style = C["grid"]
        s.line_width = 1
        for v in layout.y_ticks:
            y = layout.y.to_pixel(v)
            s.begin_path()
            s.move_to(f.plot_left, y)
            s.line_to(f.plot_right, y)
            s.stroke()
        for v in layout.x_ticks:
            x = layout.x.to_pixel(v)
            s.begin_path()
            s.move_to(x, f.plot_top)
            s.line_to(x, f.plot_bottom)
            s.stroke()

    def _draw_axes(self, s: Surface, layout: AxisLayout, font):
        f = self.frame
        s.stroke_style = C["axis"]
        s.line_width = 2
        s.begin_path()
        s.move_to(f.plot_left, f.plot_top)
        s.line_to(f.plot_left, f.plot_bottom)
        s.line_to(f.plot_right, f.plot_bottom)
        s.stroke()

        s.fill_style = C["text"]
        s.set_font(font, SIZE["tick"])
        s.text_align = "right"
        for v in layout.y_ticks:
            s.fill_text(layout.y_tick(v), f.plot_left - 10, layout.y.to_pixel(v) + 4)
        s.text_align = "center"
        for v in layout.x_ticks:
            s.fill_text(layout.x_tick(v), layout.x.to_pixel(v), f.plot_bottom + 20)

        s.save()
        s.translate(20, f.height / 2)
        s.rotate(-math.pi / 2)
        s.set_font(font, SIZE["axis_title"])
        s.text_align = "center"
        s.fill_text(layout.y_title, 0, 0)
        s.restore()

        s.set_font(font, SIZE["axis_title"])
        s.text_align = "center"
        s.fill_text(layout.x_title, f.width / 2, f.height - 10)

    def _draw_title(self, s: Surface, request: ChartRequest, font):
        profile = request.profile
        if request.stage_key:
            band = profile.stages.get(request.stage_key)
            stage_label = band.label if band else request.stage_key
            title = f"VPD Chart - {profile.name} ({stage_label})"
        else:
            title = f"VPD Chart - {profile.name}"
        s.fill_style = C["text"]
        s.set_font(font, SIZE["title"])
        s.text_align = "center"
        s.fill_text(title, self.frame.width / 2, 25)

    def _marker_position(self, layout: AxisLayout, request: ChartRequest,
                         reading: DeficitReading):
        if layout.orientation is AxisOrientation.TEMP_PRIMARY:
            return request.air_temp, reading.value
        rh = reading.derived_humidity
        if rh is None:
            rh = humidity_for_deficit(request.air_temp, reading.value)
        return rh, request.air_temp

    def _caption(self, layout: AxisLayout, request: ChartRequest,
                 reading: DeficitReading, x_value: float) -> str:
        air = request.air_temp
        if layout.orientation is AxisOrientation.HUMIDITY_PRIMARY:
            where = f"{air:.1f}°C, {x_value:.0f}% RH"
        elif reading.derived_leaf_temp is not None:
            where = f"{air:.1f}°C / {reading.derived_leaf_temp:.1f}°C"
        else:
            where = f"{air:.1f}°C"
        return f"Current: {reading.value:.2f} kPa @ {where}"

    def _draw_marker(self, s: Surface, layout: AxisLayout, request: ChartRequest,
                     reading: DeficitReading, font, zones: List[ZonePolygon]):
        x_value, y_value = self._marker_position(layout, request, reading)
        if not layout.contains(x_value, y_value):
            log.debug("marker_off_chart", x=x_value, y=y_value)
            return
        x, y = layout.to_pixel(x_value, y_value)

        s.fill_style = C["marker"]
        s.begin_path()
        s.arc(x, y, 8, 0, 2 * math.pi)
        s.fill()

        s.fill_style = C["marker_core"]
        s.begin_path()
        s.arc(x, y, 4, 0, 2 * math.pi)
        s.fill()

        f = self.frame
        s.fill_style = C["text"]
        s.set_font(font, SIZE["caption"])
        s.text_align = "left"
        s.fill_text(self._caption(layout, request, reading, x_value),
                    f.margin_left + 10, f.margin_top + 15)

        inside = [z.stage_key for z in zones if point_in_polygon((x, y), z.points)]
        log.debug("marker_zones", stages=inside)


# ── Wiring ───────────────────────────────────────────────────────────────────

def build_composer(settings: Optional[Settings] = None, fetch=None) -> ChartComposer:
    """Select the raster backend once and wire the font cache and readiness token."""
    settings = settings or get_settings()
    configure_structured_logging(settings)
    backend = select_backend(settings.raster_backend)
    cache = FontCache(backend, fetch or make_fetcher(settings.font_dirs,
                                                      settings.font_fetch_timeout_seconds))
    readiness = FontReadiness(cache, settings.default_font)
    return ChartComposer(backend, cache, readiness,
                         samples=settings.zone_samples,
                         reference_temp=settings.reference_temp)


def render_chart_png(request: ChartRequest, composer: Optional[ChartComposer] = None) -> bytes:
    """Blocking helper for scripts: render one chart and return the image bytes."""
    composer = composer or build_composer()
    return asyncio.run(composer.render(request)).image_bytes
