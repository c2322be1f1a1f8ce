"""
ClusterWave Mobility Models
============================
Position providers for simulated nodes.
"""

from typing import Sequence
import numpy as np

from .geometry import as_vector


class StaticMobility:
    """Node parked at a fixed position"""

    def __init__(self, position: Sequence[float]):
        self._position = as_vector(position)

    def position(self, now: float) -> np.ndarray:
        return self._position.copy()


class ConstantVelocityMobility:
    """
    Straight-line motion at constant velocity.

    position(t) = start + velocity * (t - t0)
    """

    def __init__(self, start: Sequence[float], velocity: Sequence[float],
                 t0: float = 0.0):
        self.start = as_vector(start)
        self.velocity = as_vector(velocity)
        self.t0 = t0

    def position(self, now: float) -> np.ndarray:
        return self.start + self.velocity * (now - self.t0)
