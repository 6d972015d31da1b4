from __future__ import annotations

import gc
import math

import numpy as np
import pytest

from config import BackendChoice
from errors import EncodingError
from fonts import FontHandle, parse_font
from raster import normalize_format, parse_color, rotation_degrees, select_backend
from raster_agg import AggBackend
from raster_soft import SoftwareBackend

from conftest import open_png, png_size

RED = (1.0, 0.0, 0.0, 1.0)


def _handle(backend, data: bytes) -> FontHandle:
    parsed = parse_font(data, source="test")
    registered = backend.register_font(parsed)
    return FontHandle(key=("test", "default"), family=parsed.family, source="test",
                      metrics=parsed.metrics, registered=registered)


# ── colours and helpers ──────────────────────────────────────────────────────

@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("#FF0000", RED),
        ("#f00", RED),
        ("#0000FF80", (0.0, 0.0, 1.0, 128 / 255)),
        ((0.5, 0.5, 0.5), (0.5, 0.5, 0.5, 1.0)),
    ],
)
def test_parse_color(token, expected) -> None:
    assert parse_color(token) == pytest.approx(expected)


@pytest.mark.parametrize("bad", ["#12345", "red", (1.0, 0.0)])
def test_parse_color_rejects_garbage(bad) -> None:
    with pytest.raises(ValueError):
        parse_color(bad)


@pytest.mark.parametrize(("fmt", "expected"), [("PNG", "png"), ("image/jpeg", "jpeg"), ("jpg", "jpeg"), (None, "png")])
def test_normalize_format(fmt, expected) -> None:
    assert normalize_format(fmt) == expected


def test_rotation_degrees() -> None:
    c, s = math.cos(-math.pi / 2), math.sin(-math.pi / 2)
    assert rotation_degrees((c, s, -s, c, 0, 0)) == pytest.approx(90.0)


def test_select_backend_explicit() -> None:
    assert isinstance(select_backend("software"), SoftwareBackend)
    assert isinstance(select_backend(BackendChoice.agg), AggBackend)


def test_select_backend_auto_prefers_native() -> None:
    assert select_backend().name == "agg"


def test_select_backend_auto_in_sandbox(monkeypatch) -> None:
    monkeypatch.setattr("raster.sys.platform", "emscripten")
    assert select_backend("auto").name == "software"


def test_select_backend_rejects_unknown() -> None:
    with pytest.raises(ValueError):
        select_backend("cairo")


# ── software surface ─────────────────────────────────────────────────────────

def test_fill_rect_covers_pixel_centres(software_backend) -> None:
    s = software_backend.create_surface(20, 10)
    s.fill_style = "#FF0000"
    s.fill_rect(2, 2, 5, 5)
    alpha = s.pixels[:, :, 3]
    assert alpha[2:7, 2:7].all()
    assert alpha.sum() == 25
    assert tuple(s.pixels[3, 3]) == RED


def test_source_over_blending(software_backend) -> None:
    s = software_backend.create_surface(4, 4)
    s.fill_style = "#FFFFFF"
    s.fill_rect(0, 0, 4, 4)
    s.fill_style = "#0000FF80"
    s.fill_rect(0, 0, 4, 4)
    r, g, b, a = s.pixels[1, 1]
    assert r == pytest.approx(1 - 128 / 255, abs=1e-5)
    assert b == pytest.approx(1.0)
    assert a == pytest.approx(1.0)


def test_translate_and_restore(software_backend) -> None:
    s = software_backend.create_surface(10, 10)
    s.save()
    s.fill_style = "#FF0000"
    s.translate(5, 0)
    s.fill_rect(0, 0, 2, 2)
    s.restore()
    assert s.pixels[0, 5, 3] == 1.0 and s.pixels[0, 0, 3] == 0.0

    s.fill_rect(0, 8, 1, 1)
    assert tuple(s.pixels[8, 0]) == (0.0, 0.0, 0.0, 1.0)


def test_restore_on_empty_stack_is_noop(software_backend) -> None:
    s = software_backend.create_surface(2, 2)
    s.restore()
    assert s.fill_style == (0.0, 0.0, 0.0, 1.0)


def test_invalid_text_align(software_backend) -> None:
    s = software_backend.create_surface(2, 2)
    with pytest.raises(ValueError):
        s.text_align = "justify"


def test_stroke_one_pixel_line(software_backend) -> None:
    s = software_backend.create_surface(20, 10)
    s.stroke_style = "#000000"
    s.line_width = 1
    s.begin_path()
    s.move_to(0, 5)
    s.line_to(20, 5)
    s.stroke()
    column = s.pixels[:, 10, 3]
    assert column.sum() == 1


def test_thick_polyline_has_no_gap_at_joint(software_backend) -> None:
    s = software_backend.create_surface(30, 30)
    s.line_width = 4
    s.begin_path()
    s.move_to(5, 5)
    s.line_to(20, 5)
    s.line_to(20, 25)
    s.stroke()
    assert s.pixels[5, 20, 3] == 1.0
    assert s.pixels[6, 21, 3] == 1.0


def test_filled_circle(software_backend) -> None:
    s = software_backend.create_surface(20, 20)
    s.fill_style = "#FF0000"
    s.begin_path()
    s.arc(10, 10, 4, 0, 2 * math.pi)
    s.fill()
    alpha = s.pixels[:, :, 3]
    assert alpha[10, 10] == 1.0
    assert alpha[10, 15] == 0.0
    # area of a radius-4 disc, within the flattening error
    assert abs(alpha.sum() - math.pi * 16) < 6


def test_text_without_font_is_skipped(software_backend) -> None:
    s = software_backend.create_surface(20, 20)
    s.fill_text("Hi", 2, 15)
    assert s.measure_text("Hi") == 0.0
    assert not s.pixels.any()


def test_glyphs_are_filled(software_backend, dejavu_bytes) -> None:
    s = software_backend.create_surface(40, 24)
    s.set_font(_handle(software_backend, dejavu_bytes), 16)
    s.fill_style = "#000000"
    s.fill_text("H", 4, 18)
    alpha = s.pixels[:, :, 3]
    assert alpha.sum() > 20
    assert not alpha[19:, :].any()       # nothing below the baseline for "H"


def test_right_aligned_text_ends_at_anchor(software_backend, dejavu_bytes) -> None:
    s = software_backend.create_surface(60, 24)
    s.set_font(_handle(software_backend, dejavu_bytes), 16)
    assert s.measure_text("HH") == pytest.approx(2 * s.measure_text("H"))
    s.text_align = "right"
    s.fill_text("HH", 40, 18)
    alpha = s.pixels[:, :, 3]
    assert alpha[:, :40].any()
    assert not alpha[:, 41:].any()


def test_backend_font_table_is_weak(software_backend, dejavu_bytes) -> None:
    parsed = parse_font(dejavu_bytes)
    registered = software_backend.register_font(parsed)
    assert software_backend.fonts[parsed.family] is registered
    del registered
    gc.collect()
    assert parsed.family not in software_backend.fonts


@pytest.mark.asyncio
async def test_software_png(software_backend) -> None:
    s = software_backend.create_surface(30, 20)
    s.fill_style = "#00FF00"
    s.fill_rect(0, 0, 10, 10)
    data = await s.encode("png")
    image = open_png(data)
    assert image.size == (30, 20)
    assert image.getpixel((5, 5)) == (0, 255, 0, 255)
    assert image.getpixel((25, 15))[3] == 0


@pytest.mark.asyncio
async def test_software_png_checksums_are_verified(software_backend) -> None:
    data = bytearray(await software_backend.create_surface(8, 8).encode("png"))
    data[29] ^= 0xFF         # first byte of the IHDR CRC
    with pytest.raises((SyntaxError, OSError)):
        open_png(bytes(data))


@pytest.mark.asyncio
async def test_software_rejects_jpeg(software_backend) -> None:
    s = software_backend.create_surface(4, 4)
    with pytest.raises(EncodingError) as info:
        await s.encode("jpeg")
    assert info.value.format == "jpeg"
    assert not software_backend.supports("image/jpeg")


# ── agg surface ──────────────────────────────────────────────────────────────

def test_agg_png(agg_backend) -> None:
    s = agg_backend.create_surface(600, 400)
    s.fill_style = "#FFFFFF"
    s.fill_rect(0, 0, 600, 400)
    s.stroke_style = "#000000"
    s.line_width = 2
    s.begin_path()
    s.move_to(60, 40)
    s.line_to(60, 340)
    s.line_to(570, 340)
    s.stroke()
    data = s.encode("png")
    assert png_size(data) == (600, 400)


def test_agg_jpeg_with_text(agg_backend, dejavu_bytes) -> None:
    s = agg_backend.create_surface(200, 100)
    s.fill_style = "#FFFFFF"
    s.fill_rect(0, 0, 200, 100)
    s.set_font(_handle(agg_backend, dejavu_bytes), 14)
    s.fill_style = "#000000"
    s.save()
    s.translate(20, 50)
    s.rotate(-math.pi / 2)
    s.text_align = "center"
    s.fill_text("VPD (kPa)", 0, 0)
    s.restore()
    data = s.encode("image/jpeg")
    assert data[:2] == b"\xff\xd8"
    assert agg_backend.supports("jpg")


def test_agg_rejects_unknown_format(agg_backend) -> None:
    with pytest.raises(EncodingError):
        agg_backend.create_surface(10, 10).encode("webp")


def test_agg_font_file_written(agg_backend, dejavu_bytes) -> None:
    handle = _handle(agg_backend, dejavu_bytes)
    assert handle.registered.path.is_file()
    assert handle.registered.path.parent == agg_backend.font_dir
    assert np.isclose(handle.registered.at_size(100).get_size(), 72.0)


def test_agg_font_dir_removed_on_close(dejavu_bytes) -> None:
    backend = AggBackend()
    font_path = _handle(backend, dejavu_bytes).registered.path
    assert font_path.is_file()
    backend.close()
    assert not backend.font_dir.exists()
