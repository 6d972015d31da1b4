from __future__ import annotations

import pytest

from chart_axes import AxisOrientation, layout_for
from crops import CropProfile, DeficitRange, get_crop_profile
from vpd import deficit_from_humidity
from zones import point_in_polygon, trace_profile_zones, trace_zone


@pytest.fixture
def flower():
    return get_crop_profile("general").stage("flower")    # 1.0–1.5 kPa


@pytest.mark.parametrize("orientation", list(AxisOrientation))
def test_polygon_has_both_boundaries(flower, orientation) -> None:
    zone = trace_zone("flower", flower, layout_for(orientation))
    assert len(zone.points) == 2 * 101
    zone = trace_zone("flower", flower, layout_for(orientation), samples=20)
    assert len(zone.points) == 42


@pytest.mark.parametrize("orientation", list(AxisOrientation))
def test_vertices_stay_inside_plot_area(flower, orientation) -> None:
    lay = layout_for(orientation)
    f = lay.frame
    for x, y in trace_zone("flower", flower, lay).points:
        assert f.plot_left - 1e-9 <= x <= f.plot_right + 1e-9
        assert f.plot_top - 1e-9 <= y <= f.plot_bottom + 1e-9


def test_temp_primary_outline_is_not_a_bowtie(flower) -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    pts = trace_zone("flower", flower, lay).points
    high, low = pts[:101], pts[101:][::-1]
    assert [p[0] for p in high] == sorted(p[0] for p in high)
    for (hx, hy), (lx, ly) in zip(high, low):
        assert hx == pytest.approx(lx)
        assert hy <= ly        # pixel y grows downward: high VPD sits above low VPD


def test_temp_primary_band_is_exact_at_reference_temperature(flower) -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    pts = trace_zone("flower", flower, lay).points
    # sample 45 of 100 across 15–35 °C is 24 °C
    assert pts[45][1] == pytest.approx(lay.y.to_pixel(1.5))
    assert pts[-46][1] == pytest.approx(lay.y.to_pixel(1.0))


def test_temp_primary_reading_inside_zone(flower) -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    zone = trace_zone("flower", flower, lay)
    assert point_in_polygon(lay.to_pixel(24, 1.25), zone.points)
    assert not point_in_polygon(lay.to_pixel(24, 1.75), zone.points)
    assert not point_in_polygon(lay.to_pixel(24, 0.5), zone.points)


def test_humidity_primary_reading_inside_zone(flower) -> None:
    lay = layout_for(AxisOrientation.HUMIDITY_PRIMARY)
    zone = trace_zone("flower", flower, lay)
    assert abs(deficit_from_humidity(24, 60) - 1.194) < 0.001
    assert point_in_polygon(lay.to_pixel(60, 24), zone.points)
    assert not point_in_polygon(lay.to_pixel(90, 24), zone.points)


def test_fill_color_alpha(flower) -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    assert trace_zone("flower", flower, lay).fill_color == "#FF980099"
    assert trace_zone("flower", flower, lay, emphasized=False).fill_color == "#FF980055"


def test_label_anchor_sits_between_boundaries(flower) -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    zone = trace_zone("flower", flower, lay)
    _, y = zone.label_anchor
    assert lay.y.to_pixel(1.5) < y < lay.y.to_pixel(1.0)


def test_growth_stages_drawn_as_context() -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    zones = list(trace_profile_zones(get_crop_profile("tomato"), None, lay, samples=10))
    assert [z.stage_key for z in zones] == ["seedling", "veg", "flower"]
    assert not any(z.emphasized for z in zones)


def test_requested_stage_is_emphasized_alone() -> None:
    lay = layout_for(AxisOrientation.HUMIDITY_PRIMARY)
    zones = list(trace_profile_zones(get_crop_profile("general"), "sick-dry", lay, samples=10))
    assert len(zones) == 1
    assert zones[0].emphasized
    assert zones[0].label == "Recovery (Dry Stress)"


def test_missing_stage_is_skipped() -> None:
    lay = layout_for(AxisOrientation.TEMP_PRIMARY)
    partial = CropProfile("Partial", {"veg": DeficitRange(0.8, 1.2, "#2196F3", "Vegetative")})
    assert list(trace_profile_zones(partial, "flower", lay)) == []


def test_point_in_polygon_square() -> None:
    square = [(0, 0), (10, 0), (10, 10), (0, 10)]
    assert point_in_polygon((5, 5), square)
    assert not point_in_polygon((15, 5), square)
    assert not point_in_polygon((5, -1), square)
