"""
fonts.py — Font resolution, registration and caching
=====================================================
Sources:
  bundled:<Name>   a TTF shipped with the installation (configured font dirs,
                   then matplotlib's mpl-data/fonts/ttf)
  http(s)://...    fetched with requests

Cache key is (source, family override or "default"). A miss fetches, parses
(fontTools), registers the font with the active raster backend and stores the
handle; a hit returns straight away. Concurrent misses on one key share a
single in-flight task. Failures raise FontLoadFailure and are never cached.
"""

import asyncio
import importlib.util
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, MutableMapping, Optional, Sequence, Tuple

import requests
import structlog
from fontTools.ttLib import TTFont, TTLibError

from errors import FontLoadFailure

log = structlog.get_logger("vpdchart.fonts")

BUNDLED_PREFIX = "bundled:"
DEFAULT_FAMILY_KEY = "default"
FALLBACK_FAMILY = "CustomFont"

CacheKey = Tuple[str, str]
Fetcher = Callable[[str], Awaitable[bytes]]


# ── Parsed font data ──────────────────────────────────────────────────────────

class FontMetrics:
    """Advance widths straight from the font tables; shared by both backends."""

    def __init__(self, ttfont: TTFont):
        self.ttfont = ttfont
        self.units_per_em = ttfont["head"].unitsPerEm
        self.cmap = ttfont.getBestCmap() or {}
        self.hmtx = ttfont["hmtx"]

    def glyph_name(self, ch: str) -> str:
        return self.cmap.get(ord(ch), ".notdef")

    def advance(self, glyph_name: str) -> int:
        try:
            return self.hmtx[glyph_name][0]
        except KeyError:
            return 0

    def text_width(self, text: str, size_px: float) -> float:
        units = sum(self.advance(self.glyph_name(ch)) for ch in text)
        return units * size_px / self.units_per_em


@dataclass
class ParsedFont:
    family: str
    data: bytes
    ttfont: TTFont
    metrics: FontMetrics


@dataclass(frozen=True)
class FontHandle:
    """Resolved font as seen by a Surface: identity, metrics, backend registration."""
    key: CacheKey
    family: str
    source: str
    metrics: FontMetrics
    registered: object


def family_name(ttfont: TTFont) -> Optional[str]:
    """Typographic family (nameID 16) if present, else the legacy family (nameID 1)."""
    names = ttfont["name"] if "name" in ttfont else None
    if names is None:
        return None
    for name_id in (16, 1):
        record = names.getName(name_id, 3, 1, 0x409) or names.getName(name_id, 1, 0, 0)
        if record is not None:
            return record.toUnicode()
    return None


def parse_font(data: bytes, family_override: Optional[str] = None,
               source: str = "<memory>") -> ParsedFont:
    try:
        ttfont = TTFont(io.BytesIO(data), lazy=False)
        metrics = FontMetrics(ttfont)
    except (TTLibError, KeyError, ValueError, AssertionError) as exc:
        raise FontLoadFailure(source, f"not a usable font ({exc})") from exc
    family = family_override or family_name(ttfont) or FALLBACK_FAMILY
    return ParsedFont(family=family, data=data, ttfont=ttfont, metrics=metrics)


# ── Sources ───────────────────────────────────────────────────────────────────

def matplotlib_font_dir() -> Optional[Path]:
    """mpl-data/fonts/ttf, located without importing matplotlib."""
    spec = importlib.util.find_spec("matplotlib")
    if spec is None or not spec.submodule_search_locations:
        return None
    return Path(list(spec.submodule_search_locations)[0]) / "mpl-data" / "fonts" / "ttf"


def bundled_font_path(name: str, font_dirs: Sequence[str] = ()) -> Path:
    filename = name if name.lower().endswith((".ttf", ".otf")) else f"{name}.ttf"
    search: List[Path] = [Path(d) for d in font_dirs]
    mpl_dir = matplotlib_font_dir()
    if mpl_dir is not None:
        search.append(mpl_dir)
    for directory in search:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    raise FontLoadFailure(f"{BUNDLED_PREFIX}{name}",
                          f"{filename} not found in {[str(d) for d in search]}")


def fetch_url(url: str, timeout: float) -> bytes:
    try:
        r = requests.get(url, timeout=timeout)
        r.raise_for_status()
    except requests.RequestException as exc:
        raise FontLoadFailure(url, f"fetch failed: {exc}") from exc
    return r.content


def make_fetcher(font_dirs: Sequence[str] = (), timeout: float = 10.0) -> Fetcher:
    """Default source reader: bundled files from disk, URLs over HTTP, both off-loop."""

    async def fetch(source: str) -> bytes:
        if source.startswith(BUNDLED_PREFIX):
            path = bundled_font_path(source[len(BUNDLED_PREFIX):], font_dirs)
            return await asyncio.to_thread(path.read_bytes)
        if source.startswith(("http://", "https://")):
            return await asyncio.to_thread(fetch_url, source, timeout)
        raise FontLoadFailure(source, "unsupported font source")

    return fetch


# ── Cache ─────────────────────────────────────────────────────────────────────

class FontCache:
    """Process-wide font cache with single-flight resolution per key."""

    def __init__(self, backend, fetch: Optional[Fetcher] = None,
                 entries: Optional[MutableMapping[CacheKey, FontHandle]] = None):
        self.backend = backend
        self._fetch = fetch or make_fetcher()
        self._entries = entries if entries is not None else {}
        self._inflight: Dict[CacheKey, "asyncio.Task[FontHandle]"] = {}

    @staticmethod
    def cache_key(source: str, family_override: Optional[str] = None) -> CacheKey:
        return (source, family_override or DEFAULT_FAMILY_KEY)

    def get(self, source: str, family_override: Optional[str] = None) -> Optional[FontHandle]:
        return self._entries.get(self.cache_key(source, family_override))

    async def resolve(self, source: str, family_override: Optional[str] = None) -> FontHandle:
        key = self.cache_key(source, family_override)
        handle = self._entries.get(key)
        if handle is not None:
            log.debug("font_cache_hit", source=source, family=handle.family)
            return handle

        loop = asyncio.get_running_loop()
        task = self._inflight.get(key)
        if task is None or task.done() or task.get_loop() is not loop:
            log.info("font_cache_miss", source=source)
            task = loop.create_task(self._load(key, source, family_override))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task):
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _load(self, key: CacheKey, source: str,
                    family_override: Optional[str]) -> FontHandle:
        try:
            data = await self._fetch(source)
            parsed = parse_font(data, family_override, source)
            registered = self.backend.register_font(parsed)
        except FontLoadFailure as exc:
            log.warning("font_load_failed", source=source, error=exc.reason)
            raise
        except Exception as exc:
            log.warning("font_load_failed", source=source, error=str(exc))
            raise FontLoadFailure(source, str(exc)) from exc

        handle = FontHandle(key=key, family=parsed.family, source=source,
                            metrics=parsed.metrics, registered=registered)
        self._entries[key] = handle
        log.info("font_cached", source=source, family=handle.family)
        return handle

    def clear(self):
        """Administrative reset; in-flight loads still finish for their waiters."""
        self._entries.clear()
        log.info("font_cache_cleared")

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "entries": [f"{src}:{fam}" for src, fam in self._entries],
        }


# ── Default font readiness ────────────────────────────────────────────────────

class FontReadiness:
    """
    Awaitable token for the default font. start() schedules the load once;
    every render awaits the same task. A failed load resolves to None
    (text is skipped) rather than failing renders.
    """

    def __init__(self, cache: FontCache, source: str):
        self.cache = cache
        self.source = source
        self._task: Optional["asyncio.Task[Optional[FontHandle]]"] = None

    def start(self) -> "asyncio.Task[Optional[FontHandle]]":
        loop = asyncio.get_running_loop()
        task = self._task
        # a task left pending or cancelled by an earlier, now closed loop is restarted
        stale = task is not None and (
            task.cancelled() or (not task.done() and task.get_loop() is not loop))
        if task is None or stale:
            self._task = loop.create_task(self._load())
        return self._task

    async def _load(self) -> Optional[FontHandle]:
        try:
            return await self.cache.resolve(self.source)
        except FontLoadFailure as exc:
            log.error("default_font_unavailable", source=self.source, error=exc.reason)
            return None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> Optional[FontHandle]:
        task = self.start()
        if task.done():
            return task.result()
        return await asyncio.shield(task)
