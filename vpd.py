"""
vpd.py — Vapor-pressure-deficit math
=====================================
Tetens saturation curve and the conversions between air temperature,
relative humidity, leaf temperature and VPD. All pressures in kPa,
temperatures in °C, humidity in % (0–100).

  SVP(T)       = 0.6108 * exp(17.27 * T / (T + 237.3))
  VPD(air, RH) = SVP(air) * (1 - RH/100)
  VPD(air, lf) = SVP(air) - SVP(leaf)

Only one direction has no closed form (temperature for a VPD at a fixed
RH); that one is solved by bounded bisection in temperature_for_deficit().
"""

import math
from dataclasses import dataclass
from typing import Optional

from errors import InvalidMeasurement

# ── Tetens constants ──────────────────────────────────────────────────────────
TETENS_A = 0.6108   # kPa
TETENS_B = 17.27    # dimensionless
TETENS_C = 237.3    # °C

DEFAULT_LEAF_OFFSET = 2.0   # leaf assumed this many °C below air when unknown


def _finite(name: str, value) -> float:
    if value is None:
        raise InvalidMeasurement(name)
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise InvalidMeasurement(name, value) from None
    if not math.isfinite(v):
        raise InvalidMeasurement(name, value)
    return v


# ── Forward model ─────────────────────────────────────────────────────────────

def saturation_pressure(temp: float) -> float:
    """Saturation vapour pressure [kPa] at temp [°C] (Tetens). Raises
    InvalidMeasurement at or below the curve's pole at -237.3 °C."""
    t = _finite("temp", temp)
    # curve is undefined at and below -TETENS_C
    if t + TETENS_C <= 0:
        raise InvalidMeasurement("temp", temp)
    svp = TETENS_A * math.exp((TETENS_B * t) / (t + TETENS_C))
    if svp == 0.0:     # underflow just above the pole
        raise InvalidMeasurement("temp", temp)
    return svp


def deficit_from_humidity(air_temp: float, rh: float) -> float:
    """Air VPD from air temperature and relative humidity."""
    svp = saturation_pressure(_finite("air_temp", air_temp))
    return svp * (1 - _finite("rh", rh) / 100)


def deficit_from_leaf_temp(air_temp: float, leaf_temp: float) -> float:
    """VPD from the air/leaf temperature difference."""
    return (saturation_pressure(_finite("air_temp", air_temp))
            - saturation_pressure(_finite("leaf_temp", leaf_temp)))


def canopy_deficit(air_temp: float, leaf_temp: float, rh: float) -> float:
    """Leaf-surface VPD: SVP at the leaf minus actual vapour pressure of the air."""
    avp = saturation_pressure(_finite("air_temp", air_temp)) * (_finite("rh", rh) / 100)
    return saturation_pressure(_finite("leaf_temp", leaf_temp)) - avp


# ── Inverses ──────────────────────────────────────────────────────────────────

def humidity_for_deficit(air_temp: float, target_deficit: float) -> float:
    """RH [%] that yields target_deficit at air_temp. Clamped to 0–100."""
    svp = saturation_pressure(_finite("air_temp", air_temp))
    avp = svp - _finite("target_deficit", target_deficit)
    rh = (avp / svp) * 100
    return max(0.0, min(100.0, rh))


def temperature_for_deficit(target_deficit: float, rh: float,
                            temp_low: float, temp_high: float,
                            tolerance: float = 0.001,
                            max_iterations: int = 20) -> float:
    """
    Air temperature in [temp_low, temp_high] at which `rh` gives `target_deficit`.

    Bisection on deficit_from_humidity(T, rh), which rises with T. Stops as soon
    as the midpoint deficit is within `tolerance` kPa of the target; otherwise returns the
    last midpoint after `max_iterations` (best effort, never raises for
    non-convergence).
    """
    target = _finite("target_deficit", target_deficit)
    rh = _finite("rh", rh)
    low = _finite("temp_low", temp_low)
    high = _finite("temp_high", temp_high)

    mid = (low + high) / 2
    for _ in range(max_iterations):
        mid = (low + high) / 2
        guess = deficit_from_humidity(mid, rh)
        if abs(guess - target) < tolerance:
            return mid
        if guess < target:
            low = mid
        else:
            high = mid
    return mid


# ── Request-level derivation ─────────────────────────────────────────────────

@dataclass(frozen=True)
class DeficitReading:
    """A VPD value plus whichever companion readings it was derived with."""
    value: float                             # kPa
    method: str                              # "explicit" | "humidity" | "leaf_temp" | "default_leaf"
    derived_humidity: Optional[float] = None   # %
    derived_leaf_temp: Optional[float] = None  # °C


def derive_deficit(air_temp: float,
                   humidity: Optional[float] = None,
                   leaf_temp: Optional[float] = None,
                   deficit: Optional[float] = None) -> DeficitReading:
    """
    Pick one derivation path from the populated hints, highest first:
      explicit deficit > humidity (also when leaf temp is given) >
      leaf temp > default leaf temp (air - 2 °C).
    """
    air = _finite("air_temp", air_temp)
    rh = None if humidity is None else _finite("humidity", humidity)
    leaf = None if leaf_temp is None else _finite("leaf_temp", leaf_temp)

    if deficit is not None:
        return DeficitReading(_finite("deficit", deficit), "explicit", rh, leaf)
    if rh is not None:
        # leaf temp is only echoed back
        return DeficitReading(deficit_from_humidity(air, rh), "humidity", rh, leaf)
    if leaf is not None:
        return DeficitReading(deficit_from_leaf_temp(air, leaf), "leaf_temp", None, leaf)

    leaf = air - DEFAULT_LEAF_OFFSET
    return DeficitReading(deficit_from_leaf_temp(air, leaf), "default_leaf", None, leaf)
