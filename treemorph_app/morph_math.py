"""
Shared math helpers for the morphing point cloud.

Everything here is a pure function: easing curves, sphere / cone / orbit
sampling, a cheap smooth noise and the integer hashes used to derive stable
pseudo-random values from pixel coordinates or particle indices.

Array helpers work on NumPy arrays of shape (N, 3) so that whole particle
categories can be processed in one call.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple, Union

import numpy as np

ArrayLike = Union[float, np.ndarray]

TWO_PI = 2.0 * math.pi

# Integer hash constants (spatial hash primes + classic LCG step).
_HASH_PRIME_A = 73856093
_HASH_PRIME_B = 19349663
_LCG_MUL = 1103515245
_LCG_ADD = 12345
_MASK_31 = 0x7FFFFFFF
_MASK_32 = 0xFFFFFFFF


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def lerp(start: ArrayLike, end: ArrayLike, t: ArrayLike) -> ArrayLike:
    return start + (end - start) * t


def ease_in_out_cubic(t: ArrayLike) -> ArrayLike:
    """
    Cubic ease-in-out on [0, 1].

    t < 0.5  -> 4 t^3
    t >= 0.5 -> 1 - (-2t + 2)^3 / 2
    """
    if isinstance(t, np.ndarray):
        return np.where(t < 0.5, 4.0 * t ** 3, 1.0 - (-2.0 * t + 2.0) ** 3 / 2.0)
    if t < 0.5:
        return 4.0 * t * t * t
    return 1.0 - ((-2.0 * t + 2.0) ** 3) / 2.0


def ease_out_elastic(t: float) -> float:
    """Elastic overshoot easing (used for the topper pop-in of the preview)."""
    if t <= 0.0:
        return 0.0
    if t >= 1.0:
        return 1.0
    c4 = TWO_PI / 3.0
    return 2.0 ** (-10.0 * t) * math.sin((t * 10.0 - 0.75) * c4) + 1.0


# ---------------------------------------------------------------------------
# Noise
# ---------------------------------------------------------------------------


def smooth_noise(x: ArrayLike) -> ArrayLike:
    """
    Smooth, bounded 1D noise built from layered sines.

    The result stays inside [-1.5, 1.5] and varies continuously with x,
    which is all the drift / breathing perturbations need.
    """
    return np.sin(x) * np.cos(x * 0.61 + 1.3) + 0.5 * np.sin(x * 2.3 + 0.7) * np.cos(x * 1.7)


# ---------------------------------------------------------------------------
# Deterministic hashes
# ---------------------------------------------------------------------------


def hash01(a: ArrayLike, b: ArrayLike, salt: int = 0) -> ArrayLike:
    """
    Map an integer pair to a stable pseudo-random value in [0, 1].

    Works on Python ints or int arrays; the same (a, b, salt) always gives
    the same value, which keeps cached point sets reproducible.
    """
    a64 = np.asarray(a, dtype=np.int64)
    b64 = np.asarray(b, dtype=np.int64)
    seed = (a64 * _HASH_PRIME_A + b64 * _HASH_PRIME_B + salt) & _MASK_32
    value = ((seed * _LCG_MUL + _LCG_ADD) & _MASK_31) / float(_MASK_31)
    if np.ndim(value) == 0:
        return float(value)
    return value


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


def sample_sphere_volume(
    count: int,
    radius: float,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Sample `count` points uniformly by volume inside a sphere.

    Directions are uniform on the sphere (azimuth uniform, polar angle via
    acos(2v - 1)); the radius uses the cube root of a uniform variable so
    the density does not pile up at the center.
    """
    rng = rng if rng is not None else np.random.default_rng()
    if count <= 0:
        return np.zeros((0, 3), dtype=np.float64)

    theta = rng.random(count) * TWO_PI
    phi = np.arccos(2.0 * rng.random(count) - 1.0)
    r = np.cbrt(rng.random(count)) * float(radius)

    sin_phi = np.sin(phi)
    out = np.empty((count, 3), dtype=np.float64)
    out[:, 0] = r * sin_phi * np.cos(theta)
    out[:, 1] = r * sin_phi * np.sin(theta)
    out[:, 2] = r * np.cos(phi)
    return out


def point_on_cone(
    height: float,
    base_radius: float,
    top_radius: float,
    t: ArrayLike,
    angle: ArrayLike,
) -> np.ndarray:
    """
    Point(s) on the lateral surface of a cone.

    t = 0 is the apex (radius = top_radius, y = height), t = 1 the base
    (radius = base_radius, y = 0). Scalars give shape (3,), arrays (N, 3).
    """
    t_arr = np.asarray(t, dtype=np.float64)
    a_arr = np.asarray(angle, dtype=np.float64)
    radius = lerp(float(top_radius), float(base_radius), t_arr)
    return np.stack(
        [radius * np.cos(a_arr), float(height) * (1.0 - t_arr), radius * np.sin(a_arr)],
        axis=-1,
    )


def point_on_orbit(
    center: Tuple[float, float, float],
    radius: ArrayLike,
    height: ArrayLike,
    angle: ArrayLike,
) -> np.ndarray:
    """Point(s) on a horizontal ring of `radius` lifted by `height` above `center`."""
    a_arr = np.asarray(angle, dtype=np.float64)
    r_arr = np.asarray(radius, dtype=np.float64)
    h_arr = np.asarray(height, dtype=np.float64)
    cx, cy, cz = center
    x = cx + np.cos(a_arr) * r_arr
    y = np.broadcast_to(cy + h_arr, x.shape)
    z = cz + np.sin(a_arr) * r_arr
    return np.stack([x, y, z], axis=-1)


def rotate_about_y(points: np.ndarray, angle: ArrayLike) -> np.ndarray:
    """Rotate (N, 3) points around the vertical axis by `angle` radians."""
    c = np.cos(angle)
    s = np.sin(angle)
    out = np.empty_like(points)
    out[:, 0] = points[:, 0] * c - points[:, 2] * s
    out[:, 1] = points[:, 1]
    out[:, 2] = points[:, 0] * s + points[:, 2] * c
    return out
