"""Shared pytest fixtures: raster backends, bundled font bytes, fake font fetchers."""

from __future__ import annotations

import asyncio
import io
from typing import Callable

import pytest
from PIL import Image

from chart_png import ChartComposer
from crops import get_crop_profile
from fonts import FontCache, FontReadiness, bundled_font_path, make_fetcher
from errors import FontLoadFailure
from raster_agg import AggBackend
from raster_soft import SoftwareBackend

DEFAULT_FONT = "bundled:DejaVuSans"


class CountingFetch:
    """Async font source stub that records every fetch."""

    def __init__(self, data: bytes, fail: bool = False, delay: float = 0.0) -> None:
        self.data = data
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []

    async def __call__(self, source: str) -> bytes:
        self.calls.append(source)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise FontLoadFailure(source, "simulated outage")
        return self.data


def open_png(data: bytes) -> Image.Image:
    """Decode PNG bytes with Pillow (CRC and filter checks included) as RGBA."""
    image = Image.open(io.BytesIO(data))
    assert image.format == "PNG"
    image.load()
    return image.convert("RGBA")


def png_size(data: bytes) -> tuple[int, int]:
    return open_png(data).size


@pytest.fixture(scope="session")
def dejavu_bytes() -> bytes:
    return bundled_font_path("DejaVuSans").read_bytes()


@pytest.fixture
def software_backend() -> SoftwareBackend:
    return SoftwareBackend()


@pytest.fixture
def agg_backend():
    backend = AggBackend()
    yield backend
    backend.close()


@pytest.fixture
def general():
    return get_crop_profile("general")


@pytest.fixture
def make_composer() -> Callable[..., ChartComposer]:
    def _make(backend, default_font: str = DEFAULT_FONT, fetch=None) -> ChartComposer:
        cache = FontCache(backend, fetch or make_fetcher())
        return ChartComposer(backend, cache, FontReadiness(cache, default_font))

    return _make
