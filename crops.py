"""
Crop profiles.
Optimal VPD bands [kPa] per growth / recovery stage for common crops.
Static configuration: built once at import, never mutated.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from errors import UnknownStage

MAX_PLAUSIBLE_DEFICIT = 3.0     # kPa

GROWTH_STAGES = ("seedling", "veg", "flower")
RECOVERY_STAGES = ("sick-dry", "sick-wet", "sick-pest", "sick-chemical", "sick-unknown")

# Stage colours are shared by every crop so charts stay comparable
STAGE_COLORS = {
    "seedling":      "#4CAF50",
    "veg":           "#2196F3",
    "flower":        "#FF9800",
    "sick-dry":      "#FF5722",
    "sick-wet":      "#9C27B0",
    "sick-pest":     "#795548",
    "sick-chemical": "#607D8B",
    "sick-unknown":  "#9E9E9E",
}


@dataclass(frozen=True)
class DeficitRange:
    """One optimal-VPD band for one stage."""
    min: float      # kPa
    max: float      # kPa
    color: str      # "#RRGGBB"
    label: str

    def __post_init__(self):
        if not (0 <= self.min < self.max <= MAX_PLAUSIBLE_DEFICIT):
            raise ValueError(
                f"Invalid VPD band {self.min}–{self.max} kPa for '{self.label}'")

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2

    def contains(self, deficit: float) -> bool:
        return self.min <= deficit <= self.max


@dataclass(frozen=True)
class CropProfile:
    name: str
    stages: Mapping[str, DeficitRange] = field(default_factory=dict)

    def __post_init__(self):
        # shared across requests
        object.__setattr__(self, "stages", MappingProxyType(dict(self.stages)))

    def stage(self, key: str) -> DeficitRange:
        try:
            return self.stages[key]
        except KeyError:
            raise UnknownStage(key, self.name, self.stages.keys()) from None


def _profile(name: str, bands: Dict[str, tuple]) -> CropProfile:
    """bands: stage key -> (min, max, label)"""
    return CropProfile(name, {
        key: DeficitRange(lo, hi, STAGE_COLORS[key], label)
        for key, (lo, hi, label) in bands.items()
    })


CROP_PROFILES: Dict[str, CropProfile] = {

    "general": _profile("General", {
        "seedling":      (0.4, 0.8, "Seedling"),
        "veg":           (0.8, 1.2, "Vegetative"),
        "flower":        (1.0, 1.5, "Flowering"),
        "sick-dry":      (0.9, 1.3, "Recovery (Dry Stress)"),
        "sick-wet":      (1.2, 1.6, "Recovery (Wet Stress)"),
        "sick-pest":     (0.8, 1.2, "Recovery (Pest)"),
        "sick-chemical": (0.6, 1.0, "Recovery (Chemical)"),
        "sick-unknown":  (0.7, 1.1, "Recovery (Unknown)"),
    }),

    "cannabis": _profile("Cannabis", {
        "seedling":      (0.4, 0.8, "Seedling"),
        "veg":           (0.8, 1.2, "Vegetative"),
        "flower":        (1.2, 1.6, "Flowering"),
        "sick-dry":      (1.0, 1.4, "Recovery (Dry)"),
        "sick-wet":      (1.3, 1.7, "Recovery (Wet)"),
        "sick-pest":     (0.9, 1.3, "Recovery (Pest)"),
        "sick-chemical": (0.7, 1.1, "Recovery (Chem)"),
        "sick-unknown":  (0.8, 1.2, "Recovery"),
    }),

    "tomato": _profile("Tomato", {
        "seedling":      (0.4, 0.7, "Seedling"),
        "veg":           (0.7, 1.1, "Vegetative"),
        "flower":        (0.9, 1.3, "Flowering/Fruiting"),
        "sick-dry":      (0.9, 1.3, "Recovery (Dry)"),
        "sick-wet":      (1.1, 1.5, "Recovery (Wet)"),
        "sick-pest":     (0.8, 1.2, "Recovery (Pest)"),
        "sick-chemical": (0.6, 1.0, "Recovery (Chem)"),
        "sick-unknown":  (0.7, 1.1, "Recovery"),
    }),

    "lettuce": _profile("Lettuce", {
        "seedling":      (0.4, 0.7, "Seedling"),
        "veg":           (0.6, 1.0, "Vegetative"),
        "flower":        (0.7, 1.1, "Bolting"),
        "sick-dry":      (0.8, 1.2, "Recovery (Dry)"),
        "sick-wet":      (1.0, 1.4, "Recovery (Wet)"),
        "sick-pest":     (0.7, 1.1, "Recovery (Pest)"),
        "sick-chemical": (0.5, 0.9, "Recovery (Chem)"),
        "sick-unknown":  (0.6, 1.0, "Recovery"),
    }),

    "orchid": _profile("Orchid", {
        "seedling":      (0.3, 0.6, "Seedling"),
        "veg":           (0.5, 0.9, "Vegetative"),
        "flower":        (0.7, 1.1, "Flowering"),
        "sick-dry":      (0.7, 1.1, "Recovery (Dry)"),
        "sick-wet":      (0.9, 1.3, "Recovery (Wet)"),
        "sick-pest":     (0.6, 1.0, "Recovery (Pest)"),
        "sick-chemical": (0.5, 0.9, "Recovery (Chem)"),
        "sick-unknown":  (0.5, 0.9, "Recovery"),
    }),
}

DEFAULT_CROP = "general"


def normalize_crop_name(name: Optional[str]) -> str:
    return "".join((name or "").lower().split())


def get_crop_profile(name: Optional[str]) -> CropProfile:
    """Profile for a crop name; unknown names fall back to the general profile."""
    return CROP_PROFILES.get(normalize_crop_name(name), CROP_PROFILES[DEFAULT_CROP])


def list_crops() -> Dict[str, dict]:
    return {
        key: {"name": p.name, "stages": list(p.stages.keys())}
        for key, p in CROP_PROFILES.items()
    }


def stages_to_show(profile: CropProfile, stage_key: Optional[str]) -> List[str]:
    """A requested stage alone, otherwise the growth stages the profile defines."""
    if stage_key:
        return [stage_key]
    return [s for s in GROWTH_STAGES if s in profile.stages]


def stage_status(deficit: float, profile: CropProfile, stage_key: Optional[str]) -> str:
    """optimal / too_low / too_high against the stage band; unknown without a stage."""
    if not stage_key:
        return "unknown"
    band = profile.stage(stage_key)
    if band.contains(deficit):
        return "optimal"
    return "too_low" if deficit < band.min else "too_high"
