"""
Per-category layout generation.

A layout stores, for every particle of a category, its three fixed targets
(scattered cloud, text silhouette, tree) plus its weight and its live
position. Data is kept struct-of-arrays: one (N, 3) array per target,
addressed by particle index.

Layouts are created once per category and count; when the count changes the
whole layout is regenerated.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from treemorph_app.morph_math import (
    TWO_PI,
    hash01,
    point_on_cone,
    point_on_orbit,
    sample_sphere_volume,
)
from treemorph_app.text_sampler import TextBounds, text_bounds

LOG = logging.getLogger(__name__)

TREE_LAYOUTS = ("cone", "orbit", "scatter")
TEXT_LAYOUTS = ("none", "points", "photo_ring")
DRIFT_MODES = ("sine", "noise")

# Bounds used for photo placement when no text point is available.
DEFAULT_TEXT_BOUNDS = TextBounds(min_x=-10.0, max_x=10.0, min_y=5.0, max_y=9.0, min_z=-0.5, max_z=0.5)
PHOTO_TEXT_PADDING = 0.3
TOPPER_HEIGHT = 10.5

# Offsets added to reused text points (x, y, z spans).
TEXT_REUSE_JITTER = (0.05, 0.05, 0.02)


# ---------------------------------------------------------------------------
# Category description
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryConfig:
    """
    Static description of a particle category.

    blend_gain / blend_base are the k1 / k2 terms of the per-frame blend
    rate: clamp(eased(progress) * k1 + k2, 0, 1) / weight.
    """

    name: str
    count: int
    scatter_radius: float = 15.0
    tree_height: float = 8.0
    tree_base_radius: float = 2.5
    tree_top_radius: float = 0.15
    tree_jitter: Tuple[float, float, float] = (0.3, 0.2, 0.3)
    tree_layout: str = "cone"
    text_layout: str = "none"
    weight: float = 1.0
    blend_gain: float = 0.1
    blend_base: float = 0.05
    drift_mode: str = "noise"
    drift_frequency: float = 0.5
    drift_amplitude: float = 0.1
    text_recede: float = 1.5
    breathing: bool = False
    orbit_speed: float = 0.0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if int(self.count) < 0:
            raise ValueError(f"{self.name}: particle count must be >= 0, got {self.count}")
        if not float(self.weight) > 0.0:
            raise ValueError(f"{self.name}: weight must be > 0, got {self.weight}")
        if not float(self.scatter_radius) > 0.0:
            raise ValueError(f"{self.name}: scatter radius must be > 0, got {self.scatter_radius}")
        if self.tree_layout not in TREE_LAYOUTS:
            raise ValueError(f"{self.name}: unknown tree layout {self.tree_layout!r}")
        if self.text_layout not in TEXT_LAYOUTS:
            raise ValueError(f"{self.name}: unknown text layout {self.text_layout!r}")
        if self.drift_mode not in DRIFT_MODES:
            raise ValueError(f"{self.name}: unknown drift mode {self.drift_mode!r}")

    @property
    def uses_text_points(self) -> bool:
        return self.text_layout != "none"

    def replace_count(self, count: int) -> "CategoryConfig":
        return dataclasses.replace(self, count=int(count))

    def resolved_seed(self) -> int:
        """Explicit seed, or a stable 32-bit seed derived from the category name."""
        if self.seed is not None:
            return int(self.seed) & 0xFFFFFFFF
        digest = hashlib.sha1(self.name.encode("utf-8", "ignore")).hexdigest()[:8]
        return int(digest, 16)


@dataclass(frozen=True)
class MorphableInstance:
    """Read-only view of one particle row."""

    scatter_position: Tuple[float, float, float]
    text_position: Optional[Tuple[float, float, float]]
    tree_position: Tuple[float, float, float]
    current_position: Tuple[float, float, float]
    weight: float


@dataclass
class MorphLayout:
    """
    Struct-of-arrays layout of one category.

    `current` is owned by the MorphDriver; everything else is fixed once
    generated. Rows where `text_mask` is False have no text target.
    """

    scatter: np.ndarray
    text: np.ndarray
    text_mask: np.ndarray
    tree: np.ndarray
    current: np.ndarray
    weight: np.ndarray

    def __len__(self) -> int:
        return int(self.scatter.shape[0])

    @property
    def count(self) -> int:
        return len(self)

    def text_position(self, index: int) -> Optional[Tuple[float, float, float]]:
        if not self.text_mask[index]:
            return None
        x, y, z = self.text[index]
        return float(x), float(y), float(z)

    def instance(self, index: int) -> MorphableInstance:
        def _t(row: np.ndarray) -> Tuple[float, float, float]:
            return float(row[0]), float(row[1]), float(row[2])

        return MorphableInstance(
            scatter_position=_t(self.scatter[index]),
            text_position=self.text_position(index),
            tree_position=_t(self.tree[index]),
            current_position=_t(self.current[index]),
            weight=float(self.weight[index]),
        )

    @classmethod
    def empty(cls) -> "MorphLayout":
        z3 = np.zeros((0, 3), dtype=np.float64)
        return cls(
            scatter=z3,
            text=z3.copy(),
            text_mask=np.zeros(0, dtype=bool),
            tree=z3.copy(),
            current=z3.copy(),
            weight=np.zeros(0, dtype=np.float64),
        )


# ---------------------------------------------------------------------------
# Tree targets
# ---------------------------------------------------------------------------


def cone_positions(category: CategoryConfig, count: int, rng: np.random.Generator) -> np.ndarray:
    """Uniform height fraction + azimuth on the cone, plus a small jitter box."""
    t = rng.random(count)
    angle = rng.random(count) * TWO_PI
    pts = point_on_cone(
        category.tree_height,
        category.tree_base_radius,
        category.tree_top_radius,
        t,
        angle,
    ).reshape(count, 3)
    jitter = np.asarray(category.tree_jitter, dtype=np.float64)
    pts += (rng.random((count, 3)) - 0.5) * jitter
    return pts


def orbit_positions(category: CategoryConfig, count: int) -> np.ndarray:
    """
    Rings around the tree: five height layers, three radii, evenly spread
    azimuth. Used for photos.
    """
    idx = np.arange(count)
    height = category.tree_height * (0.3 + (idx % 5) * 0.15)
    radius = category.tree_base_radius + 2.0 + (idx % 3) * 1.5
    angle = idx / max(1, count) * TWO_PI
    return point_on_orbit((0.0, 0.0, 0.0), radius, height, angle).reshape(count, 3)


# ---------------------------------------------------------------------------
# Text targets
# ---------------------------------------------------------------------------


def text_index_mapping(count: int, n_points: int) -> np.ndarray:
    """
    Proportional map from particle index i in [0, count) to a text point index:
    floor(i / count * N), clamped to [0, N - 1].
    """
    if count <= 0 or n_points <= 0:
        return np.zeros(0, dtype=np.int64)
    idx = np.arange(count, dtype=np.int64)
    mapped = (idx * n_points) // count
    return np.clip(mapped, 0, n_points - 1)


def text_point_positions(count: int, text_points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Assign a text target to each particle.

    When there are fewer points than particles, points get reused and each
    particle receives a small offset hashed from (i, index) so reused
    targets do not coincide exactly.
    """
    text = np.zeros((count, 3), dtype=np.float64)
    n = 0 if text_points is None else int(len(text_points))
    if count == 0 or n == 0:
        return text, np.zeros(count, dtype=bool)

    mapping = text_index_mapping(count, n)
    text[:] = np.asarray(text_points, dtype=np.float64)[mapping]

    if n < count:
        i = np.arange(count, dtype=np.int64)
        for axis, span in enumerate(TEXT_REUSE_JITTER):
            text[:, axis] += (hash01(i, mapping, salt=axis) - 0.5) * span
    return text, np.ones(count, dtype=bool)


def photo_ring_positions(count: int, text_points: Optional[np.ndarray]) -> np.ndarray:
    """
    Place photos around the text and the topper without covering the text.

    Photos sit on several concentric rings at least `clearance` away from
    the text center; anything that still falls inside the padded text box is
    pushed out along its own direction (or an angular fallback direction),
    past the half-diagonal of the box if the clearance alone is not enough.
    """
    bounds = None
    if text_points is not None and len(text_points) > 0:
        bounds = text_bounds(np.asarray(text_points, dtype=np.float64), padding=PHOTO_TEXT_PADDING)
    if bounds is None:
        bounds = DEFAULT_TEXT_BOUNDS

    cx, cy, cz = bounds.center
    clearance = max(bounds.width, bounds.height) * 0.5 + 2.5
    half_diagonal = 0.5 * math.sqrt(bounds.width ** 2 + bounds.height ** 2 + (bounds.max_z - bounds.min_z) ** 2)
    height_range = TOPPER_HEIGHT - bounds.min_y + 1.0

    out = np.zeros((count, 3), dtype=np.float64)
    for i in range(count):
        angle = i / count * TWO_PI
        radius = clearance + (i % 4) * 1.2
        x = cx + math.cos(angle) * radius
        y = cy + ((i % 6) / 6.0 - 0.5) * height_range * 0.8
        z = cz + math.sin(angle) * radius * 0.6

        if bounds.contains(x, y, z):
            dx, dy, dz = x - cx, y - cy, z - cz
            length = math.sqrt(dx * dx + dy * dy + dz * dz)
            if length < 0.01:
                dx, dy, dz = math.cos(angle), 0.0, math.sin(angle)
                length = 1.0
            push = clearance + 0.5
            x = cx + dx / length * push
            y = cy + dy / length * push
            z = cz + dz / length * push
            if bounds.contains(x, y, z):
                # nearly square text: the sphere around the half-diagonal encloses the box
                push = half_diagonal + 0.5
                x = cx + dx / length * push
                y = cy + dy / length * push
                z = cz + dz / length * push

        out[i] = (x, y, z)
    return out


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def generate_layout(
    category: CategoryConfig,
    text_points: Optional[np.ndarray] = None,
    rng: Optional[np.random.Generator] = None,
) -> MorphLayout:
    """
    Build the layout of `category`.

    `text_points` is only read by categories whose text_layout is not
    "none"; an empty point set leaves every text target absent so those
    particles fall back to their receding scatter target.
    """
    count = int(category.count)
    if count == 0:
        return MorphLayout.empty()
    rng = rng if rng is not None else np.random.default_rng(category.resolved_seed())

    scatter = sample_sphere_volume(count, category.scatter_radius, rng)

    if category.tree_layout == "cone":
        tree = cone_positions(category, count, rng)
    elif category.tree_layout == "orbit":
        tree = orbit_positions(category, count)
    else:
        tree = scatter.copy()

    if category.text_layout == "points":
        text, text_mask = text_point_positions(count, text_points)
    elif category.text_layout == "photo_ring":
        text = photo_ring_positions(count, text_points)
        text_mask = np.ones(count, dtype=bool)
    else:
        text = np.zeros((count, 3), dtype=np.float64)
        text_mask = np.zeros(count, dtype=bool)

    LOG.debug(
        "Generated layout %s: %d particles, %d with text targets",
        category.name,
        count,
        int(text_mask.sum()),
    )
    return MorphLayout(
        scatter=scatter,
        text=text,
        text_mask=text_mask,
        tree=tree,
        current=scatter.copy(),
        weight=np.full(count, float(category.weight), dtype=np.float64),
    )
