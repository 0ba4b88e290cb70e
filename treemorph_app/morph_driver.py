"""
Per-frame morph driver.

One driver exists per particle category. Each frame it receives the
transition snapshot and the elapsed time, picks every particle's live target
and moves the particle a fraction of the way there:

    rate    = min(1, clamp(eased(progress) * k1 + k2, 0, 1) / weight)
    current = current + (target - current) * rate

The blend is a convergence step rather than an assignment, so a state flip
mid-transition only changes the target; particles bend towards it from where
they are instead of jumping.

Perturbations (drift, breathing, orbit spin) are pure functions of
(elapsed_time, particle_index).
"""

from __future__ import annotations

import logging

import numpy as np

from treemorph_app.layout_generator import CategoryConfig, MorphLayout
from treemorph_app.morph_math import ease_in_out_cubic, rotate_about_y, smooth_noise
from treemorph_app.morph_state import MorphState, TransitionSnapshot

LOG = logging.getLogger(__name__)

# Distinct phases per axis so the three drift components are decorrelated.
_AXIS_PHASES = (0.0, 37.1, 71.3)

BREATHING_AMPLITUDE = 0.05


# ---------------------------------------------------------------------------
# Pure perturbations
# ---------------------------------------------------------------------------


def drift_offsets(
    elapsed_time: float,
    indices: np.ndarray,
    mode: str,
    frequency: float,
    amplitude: float,
) -> np.ndarray:
    """
    Smooth time-varying offset added to scatter targets.

    "sine": a = t * f + i * 0.01 -> (sin a, cos 1.3a, sin 0.7a) * amplitude
    "noise": layered-sine noise of t * f + i, one phase per axis.
    """
    idx = indices.astype(np.float64)
    out = np.empty((idx.size, 3), dtype=np.float64)
    if mode == "sine":
        a = elapsed_time * frequency + idx * 0.01
        out[:, 0] = np.sin(a)
        out[:, 1] = np.cos(a * 1.3)
        out[:, 2] = np.sin(a * 0.7)
    else:
        s = elapsed_time * frequency + idx
        for axis, phase in enumerate(_AXIS_PHASES):
            out[:, axis] = smooth_noise(s + phase)
    out *= amplitude
    return out


def breathing_offsets(elapsed_time: float, indices: np.ndarray) -> np.ndarray:
    """Low-frequency swell for foliage in the tree state: (b, 0.5 b, b)."""
    b = smooth_noise(elapsed_time + indices.astype(np.float64) * 0.01) * BREATHING_AMPLITUDE
    return np.stack([b, 0.5 * b, b], axis=-1)


def blend_rate(progress: float, gain: float, base: float, weight: np.ndarray) -> np.ndarray:
    """Per-particle fraction of the remaining distance covered this frame."""
    eased = float(ease_in_out_cubic(min(1.0, max(0.0, float(progress)))))
    raw = min(1.0, max(0.0, eased * gain + base))
    return np.minimum(1.0, raw / weight)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class MorphDriver:
    """
    Advance one category's particles every frame.

    The driver is the only writer of `layout.current`; `position_buffer` is
    a float32 copy of it, laid out as contiguous x, y, z triples for the
    renderer.
    """

    def __init__(self, category: CategoryConfig, layout: MorphLayout) -> None:
        self.category = category
        self._layout = layout
        self._indices = np.arange(len(layout), dtype=np.int64)
        self._buffer = np.ascontiguousarray(layout.current, dtype=np.float32).reshape(-1)

    @property
    def layout(self) -> MorphLayout:
        return self._layout

    @property
    def position_buffer(self) -> np.ndarray:
        return self._buffer

    def adopt_layout(self, layout: MorphLayout) -> None:
        """
        Switch to a regenerated layout.

        With an unchanged count the particles keep their live positions, so a
        font refresh does not snap them back to the scatter cloud.
        """
        if len(layout) == len(self._layout):
            layout.current[:] = self._layout.current
        self._layout = layout
        self._indices = np.arange(len(layout), dtype=np.int64)
        self._buffer = np.ascontiguousarray(layout.current, dtype=np.float32).reshape(-1)

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------
    def targets(self, state: MorphState, elapsed_time: float) -> tuple[np.ndarray, np.ndarray]:
        """
        Return (targets, valid) for every particle.

        `valid` is False for rows whose required fixed positions are not
        finite; those particles are left untouched this frame.
        """
        cat = self.category
        lay = self._layout
        idx = self._indices
        valid = np.isfinite(lay.scatter).all(axis=1) & np.isfinite(lay.tree).all(axis=1)

        if state == MorphState.SCATTERED:
            target = lay.scatter + drift_offsets(
                elapsed_time, idx, cat.drift_mode, cat.drift_frequency, cat.drift_amplitude
            )
        elif state == MorphState.TEXT_SHAPE:
            target = lay.scatter * cat.text_recede
            mask = lay.text_mask
            if mask.any():
                target[mask] = lay.text[mask]
                valid &= ~mask | np.isfinite(lay.text).all(axis=1)
        else:
            if cat.tree_layout == "orbit" and cat.orbit_speed:
                target = rotate_about_y(lay.tree, elapsed_time * cat.orbit_speed)
            else:
                target = lay.tree.copy()
            if cat.breathing:
                target += breathing_offsets(elapsed_time, idx)
        return target, valid

    # ------------------------------------------------------------------
    # Frame step
    # ------------------------------------------------------------------
    def step(self, snapshot: TransitionSnapshot, elapsed_time: float) -> None:
        lay = self._layout
        if len(lay) == 0:
            return

        target, valid = self.targets(snapshot.active_state, elapsed_time)
        rate = blend_rate(snapshot.progress, self.category.blend_gain, self.category.blend_base, lay.weight)

        if valid.all():
            lay.current += (target - lay.current) * rate[:, None]
        else:
            rows = np.flatnonzero(valid)
            LOG.debug("%s: skipping %d malformed particles", self.category.name, len(lay) - rows.size)
            lay.current[rows] += (target[rows] - lay.current[rows]) * rate[rows, None]

        np.copyto(self._buffer, lay.current.reshape(-1), casting="same_kind")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def distance_to_target(self, snapshot: TransitionSnapshot, elapsed_time: float) -> np.ndarray:
        """Per-particle distance between live position and current target (NaN when skipped)."""
        target, valid = self.targets(snapshot.active_state, elapsed_time)
        dist = np.linalg.norm(target - self._layout.current, axis=1)
        dist[~valid] = np.nan
        return dist

    def is_settled(
        self,
        snapshot: TransitionSnapshot,
        elapsed_time: float,
        epsilon: float = 1e-3,
    ) -> bool:
        if len(self._layout) == 0:
            return True
        dist = self.distance_to_target(snapshot, elapsed_time)
        finite = dist[np.isfinite(dist)]
        return bool(finite.size == 0 or float(finite.max()) <= float(epsilon))
