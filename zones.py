"""
zones.py — Stage VPD bands → closed zone polygons in pixel space.

A band [min, max] kPa is bounded by two curves across the chart's secondary
axis. The polygon runs along the high-VPD curve forward and returns along the
low-VPD curve in reverse, which keeps the outline simple (tracing both curves
forward would cross itself into a bowtie).

  temp-primary      bounds → RH at the reference temperature (closed form),
                    each RH swept across temperature → curved RH isolines
  humidity-primary  for every RH sample, bisection for the temperature at
                    which that RH produces max / min VPD
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np
import structlog

from chart_axes import AxisLayout, AxisOrientation
from crops import CropProfile, DeficitRange, stages_to_show
from vpd import deficit_from_humidity, humidity_for_deficit, temperature_for_deficit

log = structlog.get_logger("vpdchart.zones")

ZONE_SAMPLES = 100
REFERENCE_TEMP = 24.0       # °C, where stage bands are pinned to RH lines
EMPHASIZED_ALPHA = 0x99
CONTEXT_ALPHA = 0x55

Point = Tuple[float, float]


@dataclass(frozen=True)
class ZonePolygon:
    stage_key: str
    label: str
    color: str                  # "#RRGGBB"
    points: List[Point]         # pixel space, closed implicitly
    label_anchor: Point         # pixel space
    emphasized: bool

    @property
    def fill_color(self) -> str:
        alpha = EMPHASIZED_ALPHA if self.emphasized else CONTEXT_ALPHA
        return f"{self.color}{alpha:02X}"


# ── Boundary curves (domain space) ────────────────────────────────────────────

def _temp_primary_bounds(band: DeficitRange, layout: AxisLayout,
                         samples: int, reference_temp: float):
    temps = np.linspace(layout.x.domain_min, layout.x.domain_max, samples + 1)
    rh_low = humidity_for_deficit(reference_temp, band.max)    # lower RH → higher VPD
    rh_high = humidity_for_deficit(reference_temp, band.min)
    high = [(t, deficit_from_humidity(t, rh_low)) for t in temps]
    low = [(t, deficit_from_humidity(t, rh_high)) for t in temps]

    mid_t = (layout.x.domain_min + layout.x.domain_max) / 2
    anchor = (mid_t, deficit_from_humidity(mid_t, (rh_low + rh_high) / 2))
    return high, low, anchor


def _humidity_primary_bounds(band: DeficitRange, layout: AxisLayout, samples: int):
    t0, t1 = layout.y.domain_min, layout.y.domain_max
    rhs = np.linspace(layout.x.domain_min, layout.x.domain_max, samples + 1)
    high = [(rh, temperature_for_deficit(band.max, rh, t0, t1)) for rh in rhs]
    low = [(rh, temperature_for_deficit(band.min, rh, t0, t1)) for rh in rhs]

    mid_rh = (layout.x.domain_min + layout.x.domain_max) / 2
    anchor = (mid_rh, temperature_for_deficit(band.midpoint, mid_rh, t0, t1))
    return high, low, anchor


# ── Polygon ───────────────────────────────────────────────────────────────────

def trace_zone(stage_key: str, band: DeficitRange, layout: AxisLayout,
               emphasized: bool = True,
               samples: int = ZONE_SAMPLES,
               reference_temp: float = REFERENCE_TEMP) -> ZonePolygon:
    if layout.orientation is AxisOrientation.TEMP_PRIMARY:
        high, low, anchor = _temp_primary_bounds(band, layout, samples, reference_temp)
    else:
        high, low, anchor = _humidity_primary_bounds(band, layout, samples)

    # high boundary forward, low boundary reversed
    outline = high + low[::-1]

    # clamping vertices to the plot domain == clipping, since both curves are monotone
    points = [layout.to_pixel(layout.x.clamp(x), layout.y.clamp(y)) for x, y in outline]
    anchor_px = layout.to_pixel(*anchor)

    return ZonePolygon(
        stage_key=stage_key,
        label=band.label,
        color=band.color,
        points=points,
        label_anchor=anchor_px,
        emphasized=emphasized,
    )


def trace_profile_zones(profile: CropProfile, stage_key: Optional[str],
                        layout: AxisLayout,
                        samples: int = ZONE_SAMPLES,
                        reference_temp: float = REFERENCE_TEMP) -> Iterator[ZonePolygon]:
    """Zones to draw: the requested stage alone (emphasized) or the growth stages."""
    for key in stages_to_show(profile, stage_key):
        band = profile.stages.get(key)
        if band is None:
            log.debug("zone_skipped", crop=profile.name, stage=key)
            continue
        yield trace_zone(key, band, layout,
                         emphasized=(key == stage_key),
                         samples=samples,
                         reference_temp=reference_temp)


def point_in_polygon(point: Point, polygon: List[Point]) -> bool:
    """Even-odd ray cast; used to check whether a reading lies inside a zone."""
    x, y = point
    inside = False
    n = len(polygon)
    for i in range(n):
        x0, y0 = polygon[i]
        x1, y1 = polygon[(i + 1) % n]
        if (y0 > y) != (y1 > y):
            xc = x0 + (y - y0) * (x1 - x0) / (y1 - y0)
            if x < xc:
                inside = not inside
    return inside
