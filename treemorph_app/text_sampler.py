"""
Text -> 3D point cloud sampler.

A string is drawn off-screen into a QImage (stroke + fill so that thin
script glyphs survive downsampling), the foreground pixels are scanned with
NumPy and mapped into model space. Results are cached per request.

Font handling:
  * candidates are tried in order; a candidate counts as "applied" only when
    QFontInfo reports the requested family back (Qt silently substitutes
    missing families),
  * when no candidate applies the last one is used anyway and the cache
    entry is marked provisional,
  * notify_fonts_ready() bumps a global font generation; provisional entries
    from older generations are dropped and rebuilt on the next request.
    Callers compare font_generation() values to know when to regenerate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PyQt6.QtCore import Qt
from PyQt6.QtGui import (
    QColor,
    QFont,
    QFontDatabase,
    QFontInfo,
    QFontMetricsF,
    QGuiApplication,
    QImage,
    QPainter,
    QPainterPath,
    QPen,
)

from treemorph_app.morph_math import hash01

LOG = logging.getLogger(__name__)

# Background is white, glyphs are black. A pixel is foreground when any RGB
# channel drops below this level and it is mostly opaque.
FOREGROUND_CHANNEL_MAX = 250
FOREGROUND_ALPHA_MIN = 128

BBOX_PADDING_PX = 10
MIN_SAMPLE_COUNT = 100


# ---------------------------------------------------------------------------
# Request description
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FontCandidate:
    family: str
    pixel_size: int = 150
    bold: bool = True

    def describe(self) -> str:
        weight = "bold " if self.bold else ""
        return f'{weight}{self.pixel_size}px "{self.family}"'


DEFAULT_FONT_CANDIDATES: Tuple[FontCandidate, ...] = (
    FontCandidate("Great Vibes", 150, True),
    FontCandidate("Dancing Script", 150, True),
    FontCandidate("Pacifico", 150, True),
    FontCandidate("Great Vibes", 150, False),
    FontCandidate("Dancing Script", 150, False),
    FontCandidate("Pacifico", 150, False),
)
DEFAULT_FALLBACK_FAMILY = "DejaVu Sans"


@dataclass(frozen=True)
class TextRasterRequest:
    """
    Everything that influences the generated point set.

    The dataclass is frozen and hashable so it can be used directly as the
    cache key.
    """

    text: str
    font_candidates: Tuple[FontCandidate, ...] = DEFAULT_FONT_CANDIDATES
    # generic font drawn while none of the candidates is loaded; never counts as applied
    fallback_family: str = DEFAULT_FALLBACK_FAMILY
    canvas_width: int = 2048
    canvas_height: int = 512
    depth: float = 0.5
    point_density: float = 0.6
    # pixels -> model units, and vertical lift so the text sits near the topper
    pixel_scale: float = 0.01
    y_offset: float = 5.0
    stroke_width: float = 4.0
    line_spacing: float = 1.15


@dataclass(frozen=True)
class TextBounds:
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    min_z: float
    max_z: float

    @property
    def center(self) -> Tuple[float, float, float]:
        return (
            0.5 * (self.min_x + self.max_x),
            0.5 * (self.min_y + self.max_y),
            0.5 * (self.min_z + self.max_z),
        )

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def contains(self, x: float, y: float, z: float) -> bool:
        return (
            self.min_x <= x <= self.max_x
            and self.min_y <= y <= self.max_y
            and self.min_z <= z <= self.max_z
        )


# ---------------------------------------------------------------------------
# Cache + font generation
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    points: np.ndarray
    provisional: bool
    generation: int


_TEXT_POINT_CACHE: Dict[Tuple[TextRasterRequest, bool], _CacheEntry] = {}
_FONT_GENERATION = 0


def font_generation() -> int:
    """Current font generation; bumps every time fonts become ready."""
    return _FONT_GENERATION


def notify_fonts_ready() -> int:
    """
    Signal that requested fonts finished loading.

    Bumps the font generation and drops every provisional (fallback font)
    cache entry. Returns the new generation.
    """
    global _FONT_GENERATION
    _FONT_GENERATION += 1
    stale = [key for key, entry in _TEXT_POINT_CACHE.items() if entry.provisional]
    for key in stale:
        del _TEXT_POINT_CACHE[key]
    if stale:
        LOG.info("Dropped %d fallback-font text point sets after fonts loaded", len(stale))
    return _FONT_GENERATION


def clear_text_point_cache() -> None:
    _TEXT_POINT_CACHE.clear()
    LOG.debug("Text point cache cleared")


def load_custom_fonts(fonts_dir: Path) -> List[str]:
    """
    Register every .ttf / .otf file of `fonts_dir` with QFontDatabase.

    Returns the list of newly available families. When at least one family
    was registered the font generation is bumped so that text sampled with
    a fallback font gets regenerated.
    """
    fonts_dir = Path(fonts_dir)
    if not fonts_dir.is_dir() or QGuiApplication.instance() is None:
        return []

    families: List[str] = []
    seen: set[Path] = set()
    for pattern in ("*.ttf", "*.otf"):
        for font_path in sorted(fonts_dir.glob(pattern)):
            if font_path in seen:
                continue
            seen.add(font_path)
            font_id = QFontDatabase.addApplicationFont(str(font_path))
            if font_id < 0:
                # Never crash because one font file is broken
                LOG.warning("Could not load font file %s", font_path)
                continue
            families.extend(QFontDatabase.applicationFontFamilies(font_id))

    if families:
        LOG.info("Loaded font families: %s", ", ".join(sorted(set(families))))
        notify_fonts_ready()
    return families


# ---------------------------------------------------------------------------
# Font resolution
# ---------------------------------------------------------------------------


def build_qfont(candidate: FontCandidate) -> QFont:
    font = QFont(candidate.family)
    font.setPixelSize(max(1, int(candidate.pixel_size)))
    font.setBold(bool(candidate.bold))
    return font


def font_applied(font: QFont, family: str) -> bool:
    """True when Qt resolved `font` to the requested family rather than a substitute."""
    resolved = QFontInfo(font).family()
    return resolved.strip().lower() == family.strip().lower()


def resolve_font(
    candidates: Sequence[FontCandidate],
    fallback_family: str = DEFAULT_FALLBACK_FAMILY,
) -> Tuple[QFont, bool]:
    """
    Return (font, applied) for the first candidate Qt actually applies.

    When none applies, `fallback_family` is returned with applied=False,
    even if Qt has that family: only the requested candidates count.
    Size and weight come from the first candidate.
    """
    for candidate in candidates:
        font = build_qfont(candidate)
        if font_applied(font, candidate.family):
            LOG.debug("Using font %s", candidate.describe())
            return font, True
        LOG.debug("Font %s not applied (resolved to %r)", candidate.describe(), QFontInfo(font).family())
    template = candidates[0] if candidates else FontCandidate(fallback_family)
    fallback = build_qfont(FontCandidate(fallback_family, template.pixel_size, template.bold))
    LOG.warning(
        "None of the requested fonts is available, using fallback %r",
        QFontInfo(fallback).family(),
    )
    return fallback, False


def fonts_available(candidates: Sequence[FontCandidate]) -> bool:
    if QGuiApplication.instance() is None:
        return False
    return any(font_applied(build_qfont(c), c.family) for c in candidates)


# ---------------------------------------------------------------------------
# Rasterization
# ---------------------------------------------------------------------------


def _build_text_path(text: str, font: QFont, line_spacing: float) -> QPainterPath:
    """Glyph path with one centered line per newline, line i at baseline i * step."""
    fm = QFontMetricsF(font)
    step = max(fm.height() * 0.3, fm.height() * float(line_spacing))
    path = QPainterPath()
    for i, line in enumerate(text.splitlines() or [text]):
        if not line:
            continue
        w = fm.horizontalAdvance(line)
        path.addText(-0.5 * w, float(i) * step, font, line)
    return path


def render_text_image(request: TextRasterRequest, font: QFont) -> Optional[QImage]:
    """
    Draw `request.text` centered on a white canvas.

    Strokes and fills the glyph path with the same black color so thin
    segments stay visible. Returns None when nothing can be drawn.
    """
    w = int(request.canvas_width)
    h = int(request.canvas_height)
    if w <= 0 or h <= 0 or not request.text.strip():
        return None

    path = _build_text_path(request.text, font, request.line_spacing)
    br = path.boundingRect()
    if br.width() <= 0.0 or br.height() <= 0.0:
        return None
    path.translate(0.5 * w - br.center().x(), 0.5 * h - br.center().y())

    img = QImage(w, h, QImage.Format.Format_RGBA8888)
    if img.isNull():
        return None
    img.fill(QColor(255, 255, 255))

    painter = QPainter()
    if not painter.begin(img):
        LOG.warning("Could not open a painter on the text raster")
        return None
    try:
        painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)
        black = QColor(0, 0, 0)
        if request.stroke_width > 0.0:
            pen = QPen(black)
            pen.setWidthF(float(request.stroke_width))
            pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
            pen.setCapStyle(Qt.PenCapStyle.RoundCap)
            painter.strokePath(path, pen)
        painter.fillPath(path, black)
    finally:
        painter.end()
    return img


def image_to_rgba(img: QImage) -> np.ndarray:
    """Copy a Format_RGBA8888 QImage into a (h, w, 4) uint8 array."""
    if img.format() != QImage.Format.Format_RGBA8888:
        img = img.convertToFormat(QImage.Format.Format_RGBA8888)
    w = img.width()
    h = img.height()
    buf = img.bits()
    buf.setsize(img.sizeInBytes())
    raw = np.frombuffer(buf, dtype=np.uint8).reshape((h, img.bytesPerLine()))
    return raw[:, : w * 4].reshape((h, w, 4)).copy()


def foreground_mask(rgba: np.ndarray) -> np.ndarray:
    """Boolean (h, w) mask of non-background, sufficiently opaque pixels."""
    rgb = rgba[:, :, :3]
    not_white = (rgb < FOREGROUND_CHANNEL_MAX).any(axis=2)
    return not_white & (rgba[:, :, 3] > FOREGROUND_ALPHA_MIN)


def foreground_bbox(mask: np.ndarray, padding: int = BBOX_PADDING_PX) -> Optional[Tuple[int, int, int, int]]:
    """
    Tight (min_x, min_y, max_x, max_y) box of the mask, padded and clamped to
    the raster. None when the mask is empty.
    """
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))
    h, w = mask.shape
    min_x = max(0, int(cols[0]) - padding)
    max_x = min(w - 1, int(cols[-1]) + padding)
    min_y = max(0, int(rows[0]) - padding)
    max_y = min(h - 1, int(rows[-1]) + padding)
    return min_x, min_y, max_x, max_y


def _sample_grid(mask: np.ndarray, bbox: Tuple[int, int, int, int], step: int) -> Tuple[np.ndarray, np.ndarray]:
    min_x, min_y, max_x, max_y = bbox
    window = mask[min_y : max_y + 1 : step, min_x : max_x + 1 : step]
    ys, xs = np.nonzero(window)
    return xs * step + min_x, ys * step + min_y


def sample_text_mask(mask: np.ndarray, point_density: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return the (xs, ys) pixel coordinates kept from a foreground mask.

    The full mask is scanned once for the bounding box, then only the box is
    sampled at a stride of floor(1 / point_density). If that yields fewer
    than MIN_SAMPLE_COUNT pixels the stride is halved once.
    """
    empty = np.zeros(0, dtype=np.int64)
    bbox = foreground_bbox(mask)
    if bbox is None:
        return empty, empty

    density = float(point_density)
    step = max(1, int(math.floor(1.0 / density))) if density > 0.0 else 1
    xs, ys = _sample_grid(mask, bbox, step)
    if xs.size < MIN_SAMPLE_COUNT:
        smaller = max(1, step // 2)
        LOG.debug("Too few pixels sampled (%d), resampling with step %d", xs.size, smaller)
        xs, ys = _sample_grid(mask, bbox, smaller)
    return xs.astype(np.int64), ys.astype(np.int64)


def pixels_to_points(xs: np.ndarray, ys: np.ndarray, request: TextRasterRequest) -> np.ndarray:
    """
    Map raster pixels to model space: centered, y up, lifted by y_offset.

    z is jittered inside [-depth/2, depth/2] from a hash of (x, y), so one
    pixel always lands on the same z.
    """
    if xs.size == 0:
        return np.zeros((0, 3), dtype=np.float64)
    w = float(request.canvas_width)
    h = float(request.canvas_height)
    scale = float(request.pixel_scale)
    points = np.empty((xs.size, 3), dtype=np.float64)
    points[:, 0] = (xs - w / 2.0) * scale
    points[:, 1] = (h / 2.0 - ys) * scale + float(request.y_offset)
    points[:, 2] = (hash01(xs, ys) - 0.5) * float(request.depth)
    return points


def _rasterize(request: TextRasterRequest, font: QFont) -> np.ndarray:
    img = render_text_image(request, font)
    if img is None:
        LOG.warning("Nothing to rasterize for text %r", request.text)
        return np.zeros((0, 3), dtype=np.float64)

    mask = foreground_mask(image_to_rgba(img))
    xs, ys = sample_text_mask(mask, request.point_density)
    if xs.size == 0:
        LOG.warning("No text pixels found in raster for %r", request.text)
    return pixels_to_points(xs, ys, request)


def generate_text_points(request: TextRasterRequest) -> np.ndarray:
    """
    Return the (N, 3) point set for `request`; an empty (0, 3) array when
    rasterization is impossible or yields no foreground.

    Identical requests under an unchanged font state return identical
    arrays (copies of the cached one).
    """
    if QGuiApplication.instance() is None:
        LOG.warning("No QGuiApplication: cannot rasterize text")
        return np.zeros((0, 3), dtype=np.float64)

    loaded = fonts_available(request.font_candidates)
    key = (request, loaded)
    entry = _TEXT_POINT_CACHE.get(key)
    if entry is not None:
        if entry.provisional and entry.generation != _FONT_GENERATION:
            del _TEXT_POINT_CACHE[key]
        else:
            return entry.points.copy()

    font, applied = resolve_font(request.font_candidates, request.fallback_family)

    points = _rasterize(request, font)
    LOG.debug("Generated %d text positions for %r", len(points), request.text)
    _TEXT_POINT_CACHE[key] = _CacheEntry(
        points=points.copy(),
        provisional=not applied,
        generation=_FONT_GENERATION,
    )
    return points


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


def add_text_thickness(points: np.ndarray, thickness: float = 0.2, layers: int = 3) -> np.ndarray:
    """
    Give a flat point set some volume: every point is repeated `layers`
    times at evenly spaced z offsets spanning [-thickness/2, thickness/2].
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    layers = int(layers)
    if layers <= 1 or points.shape[0] == 0:
        return points.copy()
    offsets = np.linspace(-0.5 * thickness, 0.5 * thickness, layers)
    out = np.repeat(points, layers, axis=0)
    out[:, 2] += np.tile(offsets, points.shape[0])
    return out


def text_bounds(points: np.ndarray, padding: float = 0.0) -> Optional[TextBounds]:
    if points is None or len(points) == 0:
        return None
    lo = points.min(axis=0) - padding
    hi = points.max(axis=0) + padding
    return TextBounds(
        min_x=float(lo[0]),
        max_x=float(hi[0]),
        min_y=float(lo[1]),
        max_y=float(hi[1]),
        min_z=float(lo[2]),
        max_z=float(hi[2]),
    )
