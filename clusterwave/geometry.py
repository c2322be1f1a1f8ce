"""
ClusterWave Geometry Kernel
============================
Pure functions for the wavefront geometry.

- Sector containment test relative to a moving direction
- Propagation delay projected along a velocity vector
- Distance helpers over 3-D positions (z is carried but the
  sector and delay math works in the x-y plane)
"""

import math
import numpy as np
from typing import Sequence, Union

VectorLike = Union[np.ndarray, Sequence[float]]

# Relative slack on the boundary-ray cross products, absorbs cos/sin rounding
SECTOR_TOLERANCE = 1e-9


def as_vector(v: VectorLike) -> np.ndarray:
    """Coerce to a float 3-vector, padding missing components with zero"""
    arr = np.asarray(v, dtype=np.float64).reshape(-1)
    if arr.size >= 3:
        return arr[:3].copy()
    out = np.zeros(3, dtype=np.float64)
    out[:arr.size] = arr
    return out


def distance(a: VectorLike, b: VectorLike) -> float:
    """Euclidean distance in 3-D"""
    return float(np.linalg.norm(as_vector(a) - as_vector(b)))


def planar_distance(a: VectorLike, b: VectorLike) -> float:
    """Euclidean distance in the x-y plane"""
    d = as_vector(a) - as_vector(b)
    return math.hypot(d[0], d[1])


def speed(direction: VectorLike) -> float:
    """Planar magnitude of a velocity vector"""
    d = as_vector(direction)
    return math.hypot(d[0], d[1])


def normalize(v: VectorLike) -> np.ndarray:
    """Planar unit vector; zero vector stays zero"""
    d = as_vector(v)
    d[2] = 0.0
    norm = math.hypot(d[0], d[1])
    if norm == 0.0:
        return d
    return d / norm


def is_in_sector(source: VectorLike, destination: VectorLike,
                 direction: VectorLike, radius: float, theta: float) -> bool:
    """
    Test whether destination lies in the sector ahead of source.

    The sector is centred on `direction`, spans `theta` radians in total
    (theta/2 either side) and is limited to `radius`.

    The offset is expressed in the frame (direction, perpendicular) and
    checked against the two boundary rays with cross-product signs. Which
    test applies depends on the orientation of the boundary rays
    (sin(theta) > 0 for sectors narrower than pi). Boundary rays are
    inclusive in both branches (within SECTOR_TOLERANCE of the ray), as is
    a point exactly at `radius`.

    A zero-length direction or theta >= 2*pi degenerates to the full disk.
    """
    src = as_vector(source)
    dst = as_vector(destination)
    vel = as_vector(direction)

    delta_x = dst[0] - src[0]
    delta_y = dst[1] - src[1]

    if delta_x * delta_x + delta_y * delta_y > radius * radius:
        return False

    a = vel[0]
    b = vel[1]
    c = -vel[1]
    d = vel[0]
    absol = a * a + b * b
    if absol == 0.0 or theta >= 2 * math.pi:
        return True

    dx = (a * delta_x + b * delta_y) / absol
    dy = (c * delta_x + d * delta_y) / absol

    # End ray at +theta/2, start ray at -theta/2
    ex = math.cos(theta / 2)
    ey = math.sin(theta / 2)
    sx = math.cos(-theta / 2)
    sy = math.sin(-theta / 2)

    eps = SECTOR_TOLERANCE * math.hypot(dx, dy)
    start_cross = sx * dy - dx * sy
    end_cross = ex * dy - dx * ey

    if sx * ey - ex * sy > 0:
        if start_cross < -eps:
            return False
        if end_cross > eps:
            return False
        return True
    else:
        if start_cross >= -eps:
            return True
        if end_cross <= eps:
            return True
        return False


def propagation_delay(source: VectorLike, destination: VectorLike,
                      direction: VectorLike) -> float:
    """
    Time for a front moving at `direction` to cover the offset.

    Only the component of (destination - source) along the direction
    counts: delay = |along-track distance| / |direction|.
    A zero direction never arrives.
    """
    src = as_vector(source)
    dst = as_vector(destination)
    vel = as_vector(direction)

    a = vel[0]
    b = vel[1]
    velocity_sq = a * a + b * b
    if velocity_sq == 0.0:
        return math.inf

    delta = dst - src
    delta_horizontal = (a * delta[0] + b * delta[1]) / velocity_sq
    return abs(delta_horizontal)
