"""
chart_axes.py — Canvas frame, axis layouts and domain ↔ pixel mapping.

Two layouts only:
  temp-primary      X: air temperature 15–35 °C   Y: VPD 0–2 kPa
  humidity-primary  X: relative humidity 0–100 %  Y: air temperature 15–35 °C
Pixel origin is top-left, so every Y scale is inverted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Tuple

import numpy as np


class AxisOrientation(str, Enum):
    TEMP_PRIMARY = "temp-primary"
    HUMIDITY_PRIMARY = "humidity-primary"


# ── Domains ───────────────────────────────────────────────────────────────────
TEMP_DOMAIN = (15.0, 35.0)      # °C
VPD_DOMAIN = (0.0, 2.0)         # kPa
RH_DOMAIN = (0.0, 100.0)        # %


@dataclass(frozen=True)
class LinearScale:
    """Linear map from [domain_min, domain_max] onto pixel_start + [0, pixel_extent]."""
    domain_min: float
    domain_max: float
    pixel_start: float
    pixel_extent: float
    inverted: bool = False

    def to_pixel(self, value):
        frac = (np.asarray(value, dtype=float) - self.domain_min) / (self.domain_max - self.domain_min)
        if self.inverted:
            frac = 1.0 - frac
        px = self.pixel_start + frac * self.pixel_extent
        return float(px) if np.ndim(px) == 0 else px

    def to_domain(self, pixel):
        frac = (np.asarray(pixel, dtype=float) - self.pixel_start) / self.pixel_extent
        if self.inverted:
            frac = 1.0 - frac
        v = self.domain_min + frac * (self.domain_max - self.domain_min)
        return float(v) if np.ndim(v) == 0 else v

    def contains(self, value: float) -> bool:
        return self.domain_min <= value <= self.domain_max

    def clamp(self, value: float) -> float:
        return min(max(value, self.domain_min), self.domain_max)


@dataclass(frozen=True)
class ChartFrame:
    width: int = 600
    height: int = 400
    margin_top: int = 40
    margin_right: int = 30
    margin_bottom: int = 60
    margin_left: int = 60

    @property
    def plot_width(self) -> int:
        return self.width - self.margin_left - self.margin_right

    @property
    def plot_height(self) -> int:
        return self.height - self.margin_top - self.margin_bottom

    @property
    def plot_left(self) -> int:
        return self.margin_left

    @property
    def plot_right(self) -> int:
        return self.width - self.margin_right

    @property
    def plot_top(self) -> int:
        return self.margin_top

    @property
    def plot_bottom(self) -> int:
        return self.height - self.margin_bottom


@dataclass(frozen=True)
class AxisLayout:
    """Everything the tracer and composer need to know about one orientation."""
    orientation: AxisOrientation
    frame: ChartFrame
    x: LinearScale
    y: LinearScale
    x_step: float
    y_step: float
    x_title: str
    y_title: str
    x_tick: Callable[[float], str]
    y_tick: Callable[[float], str]

    def ticks(self, scale: LinearScale, step: float):
        n = int(round((scale.domain_max - scale.domain_min) / step))
        return [scale.domain_min + i * step for i in range(n + 1)]

    @property
    def x_ticks(self):
        return self.ticks(self.x, self.x_step)

    @property
    def y_ticks(self):
        return self.ticks(self.y, self.y_step)

    def to_pixel(self, x_value: float, y_value: float) -> Tuple[float, float]:
        return self.x.to_pixel(x_value), self.y.to_pixel(y_value)

    def contains(self, x_value: float, y_value: float) -> bool:
        return self.x.contains(x_value) and self.y.contains(y_value)


def _x_scale(domain, frame: ChartFrame) -> LinearScale:
    return LinearScale(domain[0], domain[1], frame.plot_left, frame.plot_width)


def _y_scale(domain, frame: ChartFrame) -> LinearScale:
    return LinearScale(domain[0], domain[1], frame.plot_top, frame.plot_height, inverted=True)


def layout_for(orientation: AxisOrientation, frame: ChartFrame = ChartFrame()) -> AxisLayout:
    orientation = AxisOrientation(orientation)
    if orientation is AxisOrientation.TEMP_PRIMARY:
        return AxisLayout(
            orientation=orientation, frame=frame,
            x=_x_scale(TEMP_DOMAIN, frame), y=_y_scale(VPD_DOMAIN, frame),
            x_step=5.0, y_step=0.5,
            x_title="Air Temperature (°C)", y_title="VPD (kPa)",
            x_tick=lambda v: f"{v:g}°C", y_tick=lambda v: f"{v:.1f}",
        )
    return AxisLayout(
        orientation=orientation, frame=frame,
        x=_x_scale(RH_DOMAIN, frame), y=_y_scale(TEMP_DOMAIN, frame),
        x_step=20.0, y_step=5.0,
        x_title="Relative Humidity (%)", y_title="Air Temperature (°C)",
        x_tick=lambda v: f"{v:g}%", y_tick=lambda v: f"{v:g}°C",
    )
